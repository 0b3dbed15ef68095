"""JSON-file backend: one document per file, replaced atomically on save."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from yetify.domain.errors import StorageError


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class JsonFileStrategyRepo:
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load_document(self) -> str | None:
        try:
            return self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(str(exc), operation="load", target=str(self._path)) from exc

    def save_document(self, body: str) -> None:
        try:
            _atomic_write_text(self._path, body)
        except OSError as exc:
            raise StorageError(str(exc), operation="save", target=str(self._path)) from exc


class JsonFileSessionStore:
    """Key/value session storage kept in a single JSON object file."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def _read(self) -> dict[str, str]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StorageError(str(exc), operation="read", target=str(self._path)) from exc
        try:
            parsed = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise StorageError(str(exc), operation="decode", target=str(self._path)) from exc
        if not isinstance(parsed, dict):
            raise StorageError("session file must hold a JSON object", target=str(self._path))
        return {str(k): str(v) for k, v in parsed.items()}

    def _write(self, data: dict[str, str]) -> None:
        try:
            _atomic_write_text(self._path, json.dumps(data, sort_keys=True))
        except OSError as exc:
            raise StorageError(str(exc), operation="write", target=str(self._path)) from exc

    def get(self, key: str) -> str | None:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if data.pop(key, None) is not None:
            self._write(data)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(key for key in self._read() if key.startswith(prefix))
