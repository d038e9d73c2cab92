"""In-memory implementation of the state repository."""

from __future__ import annotations

from ..contracts import EngineState
from .repository import StateRepository


class InMemoryStateRepository(StateRepository):
    """Store engine state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._state = EngineState()

    async def load_state(self) -> EngineState:
        return self._state.model_copy(deep=True)

    async def save_state(self, state: EngineState) -> None:
        self._state = state.model_copy(deep=True)
