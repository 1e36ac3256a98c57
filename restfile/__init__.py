"""restfile: run HTTP requests written in plaintext ``.http`` documents."""

__version__ = "0.1.0"
