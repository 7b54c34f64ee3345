"""Role administration and audit trail for the institutional portal."""

__version__ = "0.1.0"
