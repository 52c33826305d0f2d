"""Local session storage under a byte budget.

Responsibilities:
    - Bounded key-value areas (in memory or one file per record)
    - Debounced and immediate session writes
    - Usage stats and oldest-first eviction
    - The identity record that survives resets
"""

from src.storage.areas import FileArea, KeyValueArea, MemoryArea, record_size
from src.storage.budget import (
    IDENTITY_KEY,
    SESSION_PREFIX,
    StorageBudgetManager,
    session_key,
)

__all__ = [
    "IDENTITY_KEY",
    "SESSION_PREFIX",
    "FileArea",
    "KeyValueArea",
    "MemoryArea",
    "StorageBudgetManager",
    "record_size",
    "session_key",
]
