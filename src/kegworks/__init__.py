"""kegworks: a source-based package installer."""

__version__ = "0.1.0"
