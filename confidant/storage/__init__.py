"""
Storage - Persistence Backends

The knowledge base writes through to a KeyValueBackend; records are
encoded with the codec module.
"""

from .backend import KeyValueBackend, InMemoryBackend, JsonFileBackend, build_backend

__all__ = [
    "KeyValueBackend",
    "InMemoryBackend",
    "JsonFileBackend",
    "build_backend",
]
