from .dispatcher import IDispatcher

__all__ = ["IDispatcher"]
