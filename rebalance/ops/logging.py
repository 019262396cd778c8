"""Structured JSON logging of session events."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from rebalance.core.dates import MonthDate


def _utc_now() -> pd.Timestamp:
    return pd.Timestamp.now(tz="UTC")


class JsonEventLogger:
    """Append-only JSON-lines logger for session status changes."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(
        self,
        *,
        level: str,
        event: str,
        session: str | None = None,
        **fields: Any,
    ) -> None:
        """Write a JSON line with timestamp, level, event, and fields."""
        payload: dict[str, Any] = {
            "timestamp": _utc_now().isoformat(),
            "level": str(level).lower(),
            "event": str(event),
        }
        if session is not None:
            payload["session"] = str(session)
        for key, value in fields.items():
            payload[key] = _to_jsonable(value)

        with self.path.open("a", encoding="utf-8") as log_file:
            log_file.write(json.dumps(payload, ensure_ascii=False, sort_keys=True) + "\n")

    def read_events(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if isinstance(value, (Path, MonthDate)):
        return str(value)
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, (str, int, bool)) or value is None:
        return value
    if isinstance(value, dict):
        return {str(key): _to_jsonable(raw) for key, raw in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return str(value)
