"""Shared state management for MCP server.

FastMCP's Context is per-request, so we need a shared state mechanism
to persist data (ranked orders, the order source) across tool calls.
"""

import threading
from typing import Any


class SharedState:
    """Thread-safe shared state storage for MCP tools.

    Uses threading.RLock for thread-safe access to shared data.
    Implements basic size-based eviction to prevent unbounded memory growth.

    Protected keys (ranked_orders, order_source, etc.) are only evicted as a
    last resort when all keys in the store are protected.
    """

    MAX_ITEMS = 100

    PROTECTED_KEYS = frozenset(
        {
            "ranked_orders",
            "ranked_orders_metadata",
            "order_source",
        }
    )

    def __init__(self):
        self._store: dict[str, Any] = {}
        self._lock = threading.RLock()

    def set(self, key: str, value: Any) -> None:
        """Store a value in shared state.

        If MAX_ITEMS is reached, oldest items are evicted (FIFO).
        Protected keys are only evicted if all keys in the store are protected.
        """
        with self._lock:
            if len(self._store) >= self.MAX_ITEMS and key not in self._store:
                evicted = False
                for k in self._store:
                    if k not in self.PROTECTED_KEYS:
                        del self._store[k]
                        evicted = True
                        break

                if not evicted:
                    first_key = next(iter(self._store))
                    del self._store[first_key]

            self._store[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._store.get(key, default)

    def has(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    def pop(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._store.pop(key, default)

    def clear(self) -> None:
        """Clear all stored state."""
        with self._lock:
            self._store.clear()

    def keys(self) -> list[str]:
        """Get all keys in shared state (copy, not live view)."""
        with self._lock:
            return list(self._store.keys())


_shared_state = SharedState()


def get_shared_state() -> SharedState:
    """Get the global shared state instance."""
    return _shared_state
