"""Voice DNA: learn a creator's voice from their posts and write in it."""

__version__ = "0.1.0"
