from collections import defaultdict
from threading import Lock

_metrics_lock = Lock()
_counters: dict[str, dict[tuple[tuple[str, str], ...], int]] = defaultdict(dict)


def _label_key(labels: dict[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def increment_counter(name: str, value: int = 1, **labels: str) -> None:
    key = _label_key(labels)
    with _metrics_lock:
        _counters[name][key] = _counters[name].get(key, 0) + int(value)


def snapshot_metrics() -> dict[str, list[dict]]:
    with _metrics_lock:
        return {
            name: [{"labels": dict(key), "value": value} for key, value in items.items()]
            for name, items in _counters.items()
        }


def reset_metrics() -> None:
    with _metrics_lock:
        _counters.clear()
