"""Repository abstraction for engine state persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import EngineState


class StateRepository(Protocol):
    """Protocol for engine state persistence backends."""

    async def load_state(self) -> EngineState:
        """Return the persisted definitions, tasks and instances."""

    async def save_state(self, state: EngineState) -> None:
        """Replace the persisted state with ``state``."""
