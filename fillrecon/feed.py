from __future__ import annotations

import json
import logging
import queue
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from fillrecon.engine import ReconciliationEngine


class EventQueue:
    """Single-owner queue in front of the engine.

    Any thread may ``put``; only the owning thread calls ``drain``.
    """

    def __init__(self) -> None:
        self._q: "queue.SimpleQueue[Any]" = queue.SimpleQueue()
        self._log = logging.getLogger("feed")

    def put(self, message: Any) -> None:
        self._q.put(message)

    def empty(self) -> bool:
        return self._q.empty()

    def drain(self, engine: "ReconciliationEngine") -> int:
        count = 0
        while True:
            try:
                message = self._q.get_nowait()
            except queue.Empty:
                break
            engine.absorb_message(message)
            count += 1
        if count:
            self._log.debug("queue_drained", extra={"messages": count})
        return count


def read_jsonl(path: str | Path) -> Iterator[Any]:
    """Yield one decoded object per non-blank line; undecodable lines are yielded as raw text."""
    log = logging.getLogger("feed")
    with Path(path).open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                yield json.loads(text)
            except ValueError:
                log.warning("invalid_json_line", extra={"path": str(path), "line": lineno})
                yield text
