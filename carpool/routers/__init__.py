from . import slots

__all__ = ["slots"]
