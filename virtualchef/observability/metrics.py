"""In-process counters keyed by name and label set, served by ``GET /metrics``."""

from __future__ import annotations

import threading
from collections import Counter

from virtualchef.util.logger import get_logger

logger = get_logger("metrics")

LabelKey = tuple[tuple[str, str], ...]

_COUNTERS: Counter[tuple[str, LabelKey]] = Counter()
_LOCK = threading.Lock()


def _label_key(labels: dict | None) -> LabelKey:
    return tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def emit_counter(name: str, value: int = 1, labels: dict | None = None) -> None:
    key = (name, _label_key(labels))
    with _LOCK:
        _COUNTERS[key] += value
    logger.debug("counter %s%s += %d", name, dict(key[1]), value)


def counter_value(name: str, **labels: str) -> int:
    with _LOCK:
        return _COUNTERS.get((name, _label_key(labels)), 0)


def snapshot() -> dict[str, list[dict]]:
    """Counters grouped by name: ``{"relay_outcome": [{"labels": {...}, "value": 3}, ...]}``."""
    grouped: dict[str, list[dict]] = {}
    with _LOCK:
        items = sorted(_COUNTERS.items())
    for (name, label_key), value in items:
        grouped.setdefault(name, []).append({"labels": dict(label_key), "value": value})
    return grouped


def reset_counters() -> None:
    with _LOCK:
        _COUNTERS.clear()
