"""Collaborator interfaces and their in-memory / file-backed implementations."""

from .base import NetworkProvider, ObjectStore  # noqa: F401
from .file import FileNetworkProvider, FileObjectStore  # noqa: F401
from .memory import InMemoryNetworkProvider, InMemoryObjectStore  # noqa: F401

__all__ = [
    "FileNetworkProvider",
    "FileObjectStore",
    "InMemoryNetworkProvider",
    "InMemoryObjectStore",
    "NetworkProvider",
    "ObjectStore",
]
