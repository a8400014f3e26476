"""JSON config loading / validation and change watching."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from . import metrics
from .log import (
    DEFAULT_LOG_FORMAT,
    _apply_log_format,
    ensure_file_logging,
    log,
    set_level,
)
from .persistent import declarations_from_config
from .sorting import SortMethod

CONFIG_PATH = os.path.expanduser(
    os.environ.get("HYPRWS_CONFIG", "~/.config/hypr-workspaces.json")
)


@dataclass
class WorkspacesConfig:
    format: str = "{name}"
    format_icons: dict[str, str] = field(default_factory=dict)
    all_outputs: bool = False
    show_special: bool = False
    active_only: bool = False
    sort_by: SortMethod = SortMethod.DEFAULT
    window_separator: str = " "
    window_rewrite: dict[str, str] = field(default_factory=dict)
    window_rewrite_default: str = "?"
    persistent_workspaces: dict[str, Any] = field(default_factory=dict)
    # Daemon
    log_level: str = "INFO"
    log_format: str = DEFAULT_LOG_FORMAT
    log_file: str | None = None
    max_log_file_size_bytes: int = 1048576
    max_log_rotations: int = 5
    socket_timeout_sec: float = 1.0
    socket_buffer_size_bytes: int = 4096
    max_buffer_size_bytes: int = 1048576
    max_reconnect_attempts: int = 0  # 0 = infinite
    notify_on_errors: bool = False
    use_watchdog: bool = False
    config_poll_interval_sec: float = 8.0
    heartbeat_interval_sec: float = 600.0
    enable_metrics: bool = False
    metrics_log_every: int = 1000

    @property
    def with_icon(self) -> bool:
        return "{icon}" in self.format


DEFAULT_CONFIG: dict[str, Any] = {
    "format": "{name}",
    "format-icons": {},
    "all-outputs": False,
    "show-special": False,
    "active-only": False,
    "sort-by": "default",
    "format-window-separator": " ",
    "window-rewrite": {},
    "window-rewrite-default": "?",
    "log_level": "INFO",
    "log_format": DEFAULT_LOG_FORMAT,
    "log_file": None,
    "max_log_file_size_bytes": 1048576,
    "max_log_rotations": 5,
    "socket_timeout_sec": 1.0,
    "socket_buffer_size_bytes": 4096,
    "max_buffer_size_bytes": 1048576,
    "max_reconnect_attempts": 0,
    "notify_on_errors": False,
    "use_watchdog": False,
    "config_poll_interval_sec": 8.0,
    "heartbeat_interval_sec": 600.0,
    "enable_metrics": False,
    "metrics_log_every": 1000,
}


# Helpers: treat values below min as invalid -> use default (not clamped-down)
def _float_min(val: Any, default: float, min_value: float) -> float:
    try:
        x = float(val)
    except (TypeError, ValueError):
        return default
    return default if x < min_value else x


def _int_min(val: Any, default: int, min_value: int) -> int:
    try:
        x = int(val)
    except (TypeError, ValueError):
        return default
    return default if x < min_value else x


def _bool(val: Any, default: bool) -> bool:
    if isinstance(val, bool):
        return val
    if val is not None:
        log.warning("Expected a boolean, got %r; using %s", val, default)
    return default


def _str(val: Any, default: str) -> str:
    return val if isinstance(val, str) else default


def _str_map(val: Any, key: str) -> dict[str, str]:
    if not isinstance(val, dict):
        if val:
            log.warning("%s must be an object, ignoring %r", key, val)
        return {}
    out: dict[str, str] = {}
    for k, v in val.items():
        if isinstance(k, str) and isinstance(v, str):
            out[k] = v
        else:
            log.warning("Invalid %s entry skipped: %r -> %r", key, k, v)
    return out


def parse_config(cfg_raw: dict[str, Any]) -> WorkspacesConfig:
    """Validate a merged raw mapping into a WorkspacesConfig."""
    log_file_val = cfg_raw.get("log_file")
    if not isinstance(log_file_val, str) or not log_file_val.strip():
        log_file_val = None

    return WorkspacesConfig(
        format=_str(cfg_raw.get("format"), "{name}"),
        format_icons=_str_map(cfg_raw.get("format-icons"), "format-icons"),
        all_outputs=_bool(cfg_raw.get("all-outputs"), False),
        show_special=_bool(cfg_raw.get("show-special"), False),
        active_only=_bool(cfg_raw.get("active-only"), False),
        sort_by=SortMethod.parse(cfg_raw.get("sort-by", "default")),
        window_separator=_str(cfg_raw.get("format-window-separator"), " "),
        window_rewrite=_str_map(cfg_raw.get("window-rewrite"), "window-rewrite"),
        window_rewrite_default=_str(cfg_raw.get("window-rewrite-default"), "?"),
        persistent_workspaces=declarations_from_config(cfg_raw),
        log_level=_str(cfg_raw.get("log_level"), "INFO") or "INFO",
        log_format=_str(cfg_raw.get("log_format"), DEFAULT_LOG_FORMAT) or DEFAULT_LOG_FORMAT,
        log_file=log_file_val,
        max_log_file_size_bytes=_int_min(cfg_raw.get("max_log_file_size_bytes"), 1048576, 1024),
        max_log_rotations=_int_min(cfg_raw.get("max_log_rotations"), 5, 1),
        socket_timeout_sec=_float_min(cfg_raw.get("socket_timeout_sec"), 1.0, 0.1),
        socket_buffer_size_bytes=_int_min(cfg_raw.get("socket_buffer_size_bytes"), 4096, 1024),
        max_buffer_size_bytes=_int_min(cfg_raw.get("max_buffer_size_bytes"), 1048576, 4096),
        max_reconnect_attempts=max(0, _int_min(cfg_raw.get("max_reconnect_attempts"), 0, 0)),
        notify_on_errors=_bool(cfg_raw.get("notify_on_errors"), False)
        or os.environ.get("HYPRWS_NOTIFY_ON_ERRORS") == "1",
        use_watchdog=_bool(cfg_raw.get("use_watchdog"), False),
        config_poll_interval_sec=_float_min(cfg_raw.get("config_poll_interval_sec"), 8.0, 0.1),
        heartbeat_interval_sec=_float_min(cfg_raw.get("heartbeat_interval_sec"), 600.0, 1.0),
        enable_metrics=_bool(cfg_raw.get("enable_metrics"), False),
        metrics_log_every=min(1_000_000, _int_min(cfg_raw.get("metrics_log_every"), 1000, 1)),
    )


def load_config(path: str) -> tuple[WorkspacesConfig, float]:
    """
    Load config JSON, shallow-merge with defaults, validate types, apply logging
    and metrics settings. Returns (cfg, mtime).
    """
    cfg_raw = DEFAULT_CONFIG.copy()
    try:
        with open(path, encoding="utf-8") as f:
            user_cfg = json.load(f)
        if isinstance(user_cfg, dict):
            cfg_raw.update(user_cfg)
        else:
            log.error("Config %s must contain a JSON object, using defaults", path)
    except FileNotFoundError:
        pass
    except (OSError, ValueError) as e:
        log.error("Config load error: %s", e)

    cfg = parse_config(cfg_raw)

    # logging level from ENV overrides config
    set_level(os.environ.get("HYPRWS_LOG_LEVEL") or cfg.log_level)
    _apply_log_format(cfg.log_format)
    ensure_file_logging(
        cfg.log_file, cfg.max_log_file_size_bytes, cfg.max_log_rotations, cfg.log_format
    )

    metrics.configure(cfg.enable_metrics, cfg.metrics_log_every)
    metrics.inc("config_reloads")
    return cfg, config_mtime(path)


def config_mtime(path: str) -> float:
    try:
        return os.path.getmtime(path)
    except OSError:
        return 0.0


class _ConfigWatcher(FileSystemEventHandler):
    def __init__(self, path: str, on_change: Callable[[], None]):
        super().__init__()
        self.path = os.path.realpath(path)
        self.on_change = on_change

    def on_modified(self, event):
        try:
            if not event.is_directory and os.path.realpath(event.src_path) == self.path:
                self.on_change()
        except Exception as e:
            log.warning("Watchdog event error: %s", e)

    on_created = on_modified


def start_watchdog(path: str, on_change: Callable[[], None]) -> Observer | None:
    """Watch the config's directory; returns None if the observer cannot start."""
    try:
        observer = Observer()
        observer.schedule(
            _ConfigWatcher(path, on_change), path=os.path.dirname(path) or ".", recursive=False
        )
        observer.start()
        log.info("Watchdog started for %s", path)
        return observer
    except Exception as e:
        log.warning("Watchdog start failed, fallback to polling: %s", e)
        return None


def stop_watchdog(observer: Observer | None) -> None:
    if observer is None:
        return
    try:
        observer.stop()
        observer.join(timeout=2)
    except Exception as e:
        log.warning("Failed to stop watchdog observer: %s", e)
