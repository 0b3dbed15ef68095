from __future__ import annotations


class InMemoryStrategyRepo:
    def __init__(self, body: str | None = None) -> None:
        self.body = body
        self.save_count = 0

    def load_document(self) -> str | None:
        return self.body

    def save_document(self, body: str) -> None:
        self.body = body
        self.save_count += 1


class InMemorySessionStore:
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._data if key.startswith(prefix))
