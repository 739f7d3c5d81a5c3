"""A filtering UDP DNS proxy, with a DNS packet parser, serializer and config loader."""

__version__ = "0.1.0"
__all__ = ["__version__"]