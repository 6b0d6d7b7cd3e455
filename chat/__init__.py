# chat/__init__.py
from .responder import ChatResponder

__all__ = ["ChatResponder"]
