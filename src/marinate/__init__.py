"""marinate - background marination of freeform notes into suggestions."""

__version__ = "0.1.0"
