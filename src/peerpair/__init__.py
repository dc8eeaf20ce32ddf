"""peerpair - pair two peers by exchanging tokens and comparing a short code."""

__version__ = "0.1.0"
