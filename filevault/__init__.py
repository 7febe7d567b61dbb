"""File and folder storage with ownership, sharing and media previews."""

__version__ = "0.1.0"
