"""pdd — copy one input block by block to many files, sockets and HTTP endpoints."""

__version__ = "0.1.0"
