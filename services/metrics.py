from __future__ import annotations

from threading import Lock
from typing import Tuple


_lock = Lock()
_counters: dict[str, dict[Tuple[Tuple[str, str], ...], int]] = {}


def _inc(name: str, labels: dict[str, str] | None = None, value: int = 1) -> None:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        series = _counters.setdefault(name, {})
        series[key] = int(series.get(key, 0)) + int(value)


def increment_http_requests(route: str, status: int) -> None:
    _inc("http_requests_total", {"route": route, "status": str(status)})


def increment_intent_created(provider: str) -> None:
    _inc("payment_intents_created_total", {"provider": provider})


def increment_status_poll(result: str) -> None:
    _inc("payment_status_polls_total", {"result": result})


def increment_intent_outcome(outcome: str) -> None:
    _inc("payment_intent_outcomes_total", {"outcome": outcome})


def increment_callback_event(source: str, applied: bool, ignored_reason: str | None = None) -> None:
    _inc(
        "payment_callback_events_total",
        {
            "source": source,
            "applied": str(applied).lower(),
            "reason": ignored_reason or "",
        },
    )


def increment_webhook_event(provider: str, signature_valid: bool, applied: bool) -> None:
    _inc(
        "webhook_events_total",
        {
            "provider": provider,
            "signature_valid": str(signature_valid).lower(),
            "applied": str(applied).lower(),
        },
    )


def counter_value(name: str, labels: dict[str, str] | None = None) -> int:
    key = tuple(sorted((labels or {}).items()))
    with _lock:
        return int((_counters.get(name) or {}).get(key, 0))


def reset() -> None:
    with _lock:
        _counters.clear()


def render_prometheus() -> str:
    lines: list[str] = []
    with _lock:
        for name, series in sorted(_counters.items()):
            lines.append(f"# TYPE {name} counter")
            for labels, value in sorted(series.items()):
                if labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in labels)
                    lines.append(f"{name}{{{label_str}}} {value}")
                else:
                    lines.append(f"{name} {value}")
    return "\n".join(lines) + ("\n" if lines else "")


def render_gauges(values: dict[str, int]) -> str:
    lines: list[str] = []
    for name, value in sorted(values.items()):
        lines.append(f"# TYPE {name} gauge")
        lines.append(f"{name} {int(value)}")
    return "\n".join(lines) + ("\n" if lines else "")
