from yetify.persistence.interfaces.session_repo import (
    PENDING_CONNECTION_PREFIX,
    PENDING_EXECUTION_KEY,
    WALLET_SESSION_PREFIX,
    SessionStoreProtocol,
)
from yetify.persistence.interfaces.strategy_repo import STRATEGY_COLLECTION, StrategyRepoProtocol

__all__ = [
    "StrategyRepoProtocol",
    "SessionStoreProtocol",
    "STRATEGY_COLLECTION",
    "WALLET_SESSION_PREFIX",
    "PENDING_CONNECTION_PREFIX",
    "PENDING_EXECUTION_KEY",
]
