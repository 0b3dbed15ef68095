from yetify.persistence.sqlite.session_repo import SqliteSessionStore
from yetify.persistence.sqlite.strategy_repo import SqliteStrategyRepo

__all__ = ["SqliteStrategyRepo", "SqliteSessionStore"]
