from __future__ import annotations

from typing import Protocol

STRATEGY_COLLECTION = "yetify_saved_strategies"


class StrategyRepoProtocol(Protocol):
    """Whole-document storage for the saved strategy collection.

    Implementations raise :class:`yetify.domain.errors.StorageError` on any
    backend failure; ``load_document`` returns ``None`` when nothing was stored.
    """

    def load_document(self) -> str | None: ...

    def save_document(self, body: str) -> None: ...
