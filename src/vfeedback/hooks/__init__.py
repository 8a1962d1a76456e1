"""Agent-side hook entry points."""
