"""Provider adapters.

This package contains the provider interface and bundled implementations:
- Provider: Abstract base class for provider adapters
- ProviderRegistry: Routes calls by resource type
- InMemoryProvider: Dictionary-backed provider for examples and tests
"""

from .base import OperationKind, Provider, ProviderRegistry, changed_keys
from .memory import InMemoryProvider

__all__ = [
    "OperationKind",
    "Provider",
    "ProviderRegistry",
    "InMemoryProvider",
    "changed_keys",
]
