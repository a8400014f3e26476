"""Optional in-process counters, logged periodically when enabled."""

from __future__ import annotations

import logging

_log = logging.getLogger("hypr-workspaces")

_METRICS_ENABLED: bool = False
_METRICS_LOG_EVERY: int = 1000


def _fresh() -> dict[str, int]:
    return {
        "events_processed": 0,
        "unsupported_events": 0,
        "bytes_read": 0,
        "hyprctl_calls": 0,
        "hyprctl_errors": 0,
        "dispatch_calls": 0,
        "buffer_size_exceeded": 0,
        "invalid_regex_patterns": 0,
        "rewrite_cache_size": 0,
        "ticks": 0,
        "event_processing_time_ms": 0,
        "max_event_processing_time_ms": 0,
        "config_reloads": 0,
        "notifications_sent": 0,
    }


_METRICS: dict[str, int] = _fresh()


def configure(enabled: bool, log_every: int) -> None:
    """Enable/disable metrics and reset counters (config_reloads survives)."""
    global _METRICS_ENABLED, _METRICS_LOG_EVERY, _METRICS
    reloads = _METRICS.get("config_reloads", 0)
    _METRICS_ENABLED = bool(enabled)
    _METRICS_LOG_EVERY = max(1, int(log_every))
    _METRICS = _fresh()
    _METRICS["config_reloads"] = reloads
    _log.debug("Metrics reset (enabled=%s, every=%s)", _METRICS_ENABLED, _METRICS_LOG_EVERY)


def enabled() -> bool:
    return _METRICS_ENABLED


def inc(key: str, delta: int = 1) -> None:
    if _METRICS_ENABLED:
        _METRICS[key] = _METRICS.get(key, 0) + delta


def set_value(key: str, value: int) -> None:
    if _METRICS_ENABLED:
        _METRICS[key] = value


def record_event_time(took_ms: int) -> None:
    if not _METRICS_ENABLED:
        return
    _METRICS["event_processing_time_ms"] += took_ms
    if took_ms > _METRICS["max_event_processing_time_ms"]:
        _METRICS["max_event_processing_time_ms"] = took_ms


def get(key: str) -> int:
    return _METRICS.get(key, 0)


def _summary() -> tuple[str, tuple[int, ...]]:
    avg_ms = 0
    if _METRICS["events_processed"] > 0:
        avg_ms = _METRICS["event_processing_time_ms"] // max(1, _METRICS["events_processed"])
    fmt = (
        "events=%s unsupported=%s bytes_read=%s hyprctl_calls=%s hyprctl_errors=%s "
        "dispatch_calls=%s buffer_exceeded=%s invalid_regex=%s rewrite_cache=%s ticks=%s "
        "avg_event_ms=%s max_event_ms=%s config_reloads=%s notifications=%s"
    )
    args = (
        _METRICS["events_processed"],
        _METRICS["unsupported_events"],
        _METRICS["bytes_read"],
        _METRICS["hyprctl_calls"],
        _METRICS["hyprctl_errors"],
        _METRICS["dispatch_calls"],
        _METRICS["buffer_size_exceeded"],
        _METRICS["invalid_regex_patterns"],
        _METRICS["rewrite_cache_size"],
        _METRICS["ticks"],
        avg_ms,
        _METRICS["max_event_processing_time_ms"],
        _METRICS["config_reloads"],
        _METRICS["notifications_sent"],
    )
    return fmt, args


def maybe_log() -> None:
    if not _METRICS_ENABLED:
        return
    processed = _METRICS["events_processed"]
    if processed and processed % _METRICS_LOG_EVERY == 0:
        fmt, args = _summary()
        _log.info("Metrics: " + fmt, *args)


def log_final() -> None:
    if not _METRICS_ENABLED:
        return
    fmt, args = _summary()
    _log.info("Final metrics: " + fmt, *args)
