"""Registry adapters: read/write ports plus in-memory and SQL implementations."""

from .memory import InMemoryRegistry
from .ports import RegistryReader, RegistryWriter
from .sql import SqlRegistry

__all__ = [
    "InMemoryRegistry",
    "RegistryReader",
    "RegistryWriter",
    "SqlRegistry",
]
