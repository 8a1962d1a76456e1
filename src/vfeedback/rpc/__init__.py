"""Tool-call protocol (JSON-RPC 2.0) and its transports: stdio, SSE, plain HTTP."""
