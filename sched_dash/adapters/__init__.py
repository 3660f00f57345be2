from .json_store import JsonRunStore

__all__ = ["JsonRunStore"]
