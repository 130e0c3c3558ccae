"""chatline: a text-line chat server with salted-hash accounts."""

__version__ = "1.0.0"
