"""Streaming chat orchestration for the Zundamon persona bot."""

__version__ = "0.1.0"

__all__ = ["__version__"]
