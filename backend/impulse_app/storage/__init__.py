"""Data storage layer."""

from impulse_app.storage.state_store import PersistedState, StateStore

__all__ = [
    "PersistedState",
    "StateStore",
]
