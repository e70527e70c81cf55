from __future__ import annotations

from typing import Optional, Protocol


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class InMemoryStorage:
    """Per-process storage; lives as long as the browsing session it backs."""

    def __init__(self):
        self._values: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def delete(self, key: str) -> None:
        self._values.pop(key, None)


class DismissalFlags:
    """Session-scoped "don't show this again" flags (tips banner, hints)."""

    def __init__(self, storage: KeyValueStorage, prefix: str = "dismissed:"):
        self.storage = storage
        self.prefix = prefix

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def dismiss(self, name: str) -> None:
        self.storage.set(self._key(name), "true")

    def is_dismissed(self, name: str) -> bool:
        return self.storage.get(self._key(name)) == "true"

    def force_show(self, name: str) -> None:
        self.storage.delete(self._key(name))
