"""mnemo — memory backend adapter and context assembly for coding agents."""

__version__ = "0.1.0"
