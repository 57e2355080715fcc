"""Agent-facing tool surface."""
