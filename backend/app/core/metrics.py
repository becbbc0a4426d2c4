from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_redemption_applied() -> None:
    _inc("promo_redemptions_applied")


def record_redemption_rejected(state: str) -> None:
    _inc(f"promo_redemptions_rejected:{state}")


def record_event_publish_failure() -> None:
    _inc("promo_event_publish_failures")


def record_event_consumed() -> None:
    _inc("analytics_events_consumed")


def record_event_duplicate() -> None:
    _inc("analytics_events_duplicate")


def record_event_dead_lettered() -> None:
    _inc("analytics_events_dead_lettered")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
