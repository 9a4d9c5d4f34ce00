from __future__ import annotations

import logging


class MemoryStore:
    """Scratch key/value facts the agent writes through ``set_memory``.

    Last write wins. Nothing is persisted; :meth:`clear` runs on session reset.
    """

    def __init__(self) -> None:
        self.facts: dict[str, str] = {}

    def set(self, key: str, value: str) -> None:
        self.facts[key] = value
        logging.getLogger(__name__).debug("memory_set", extra={"key": key})

    def get(self, key: str) -> str | None:
        return self.facts.get(key)

    def get_all(self) -> dict[str, str]:
        return dict(self.facts)

    def clear(self) -> None:
        self.facts.clear()

    def __len__(self) -> int:
        return len(self.facts)
