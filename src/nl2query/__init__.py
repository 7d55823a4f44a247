"""nl2query: natural language to validated, read-only database queries."""

__version__ = "0.1.0"
