"""Dry-run delivery that prints payloads instead of sending them."""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from typing import Any


def _write_stdout(line: str) -> None:
    sys.stdout.write(line + "\n")


class EchoDelivery:
    """Emit each payload as one JSON line and report success."""

    def __init__(self, emit: Callable[[str], None] | None = None) -> None:
        self._emit = emit or _write_stdout
        self.delivered = 0

    def __call__(self, payload: Any) -> bool:
        self._emit(json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str))
        self.delivered += 1
        return True
