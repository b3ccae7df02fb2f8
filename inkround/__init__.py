"""Round orchestration engine for the inkround writing competition."""

__version__ = "0.1.0"
