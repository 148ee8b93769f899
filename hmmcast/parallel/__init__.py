"""Worker pool used to train ensemble members in parallel."""

from .pool import TaskPool

__all__ = ["TaskPool"]
