"""Visual feedback orchestration: queue page-element edit requests for a coding agent."""

__version__ = "0.1.0"
