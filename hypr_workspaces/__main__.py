"""
Daemon: mirror Hyprland workspaces for one output and print one JSON line per change.

Usage: python -m hypr_workspaces [OUTPUT]

Config (JSON) default path: ~/.config/hypr-workspaces.json
Environment:
  HYPRWS_CONFIG             - override config path
  HYPRWS_OUTPUT             - output (monitor) to track; defaults to the focused one
  HYPRWS_LOG_LEVEL          - logging level (DEBUG, INFO, WARNING, ERROR), overrides config
  HYPRWS_NOTIFY_ON_ERRORS=1 - force desktop notifications on critical errors
"""

from __future__ import annotations

import os
import socket
import subprocess
import sys
import time

from . import metrics
from .config import (
    CONFIG_PATH,
    WorkspacesConfig,
    config_mtime,
    load_config,
    start_watchdog,
    stop_watchdog,
)
from .engine import WorkspacesEngine
from .ipc import (
    HyprlandIPC,
    connect_with_backoff,
    enforce_buffer_limit,
    event_socket_path,
    split_lines,
)
from .log import log, notify_error
from .sink import JsonLineSink


def resolve_output(ipc: HyprlandIPC, argv: list[str]) -> str | None:
    """Output from argv, then HYPRWS_OUTPUT, then the focused monitor."""
    if len(argv) > 1 and argv[1].strip():
        return argv[1].strip()
    env_output = os.environ.get("HYPRWS_OUTPUT")
    if env_output:
        return env_output
    monitors = ipc.query("monitors") or []
    for m in monitors:
        if isinstance(m, dict) and m.get("focused"):
            return str(m.get("name") or "") or None
    if monitors and isinstance(monitors[0], dict):
        return str(monitors[0].get("name") or "") or None
    return None


def build_engine(
    ipc: HyprlandIPC, cfg: WorkspacesConfig, output: str, sink: JsonLineSink
) -> WorkspacesEngine:
    engine = WorkspacesEngine(ipc, cfg, output, sink)
    engine.start()
    return engine


def sync_watchdog(observer, use_watchdog: bool, on_change):
    """Start or stop the config observer so it matches use_watchdog."""
    if use_watchdog and observer is None:
        return start_watchdog(CONFIG_PATH, on_change)
    if not use_watchdog and observer is not None:
        stop_watchdog(observer)
        return None
    return observer


def main(argv: list[str] | None = None) -> None:
    """
    Entry point: subscribe to Hyprland events, keep the workspace mirror in sync.
    """
    argv = sys.argv if argv is None else argv

    # hyprctl availability check
    try:
        subprocess.run(
            ["hyprctl", "version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=True,
        )
    except (FileNotFoundError, subprocess.CalledProcessError) as e:
        log.error("hyprctl not found or failed to run: %s", e)
        sys.exit(1)

    sock_path = event_socket_path()
    if sock_path is None:
        log.error("Not in Hyprland session (HYPRLAND_INSTANCE_SIGNATURE/XDG_RUNTIME_DIR missing).")
        sys.exit(1)

    cfg, cfg_mtime = load_config(CONFIG_PATH)
    ipc = HyprlandIPC()
    output = resolve_output(ipc, argv)
    if not output:
        log.error("Could not determine the output to track; pass it as an argument.")
        sys.exit(1)

    log.info(
        "Config loaded from %s: output=%s format=%r sort_by=%s all_outputs=%s "
        "show_special=%s active_only=%s persistent=%s watchdog=%s metrics=%s",
        CONFIG_PATH,
        output,
        cfg.format,
        cfg.sort_by.value,
        cfg.all_outputs,
        cfg.show_special,
        cfg.active_only,
        len(cfg.persistent_workspaces),
        cfg.use_watchdog,
        "on" if metrics.enabled() else "off",
    )

    sink = JsonLineSink(output)
    engine = build_engine(ipc, cfg, output, sink)

    need_reload_flag = False

    def trigger_reload():
        nonlocal need_reload_flag
        need_reload_flag = True

    observer = sync_watchdog(None, cfg.use_watchdog, trigger_reload)

    reconnecting = False
    buf = b""
    now = time.monotonic()
    next_cfg_check = now + cfg.config_poll_interval_sec
    last_event_received = now
    last_no_event_log = now

    while True:
        try:
            s = connect_with_backoff(
                sock_path, cfg.socket_timeout_sec, cfg.max_reconnect_attempts, cfg.notify_on_errors
            )
        except OSError:
            # Give up for this run; systemd (if used) may restart us.
            metrics.log_final()
            break

        if reconnecting:
            # events were missed while disconnected: rebuild from fresh queries
            engine.close()
            engine = build_engine(ipc, cfg, output, sink)
        reconnecting = True
        buf = b""

        try:
            with s:
                while True:
                    now = time.monotonic()

                    # Heartbeat: periodic "no events" log
                    if (
                        now - last_event_received >= cfg.heartbeat_interval_sec
                        and now - last_no_event_log >= cfg.heartbeat_interval_sec
                    ):
                        log.debug(
                            "No events received in last %s seconds", cfg.heartbeat_interval_sec
                        )
                        last_no_event_log = now

                    # Config reload (watchdog or polling)
                    if need_reload_flag or (observer is None and now >= next_cfg_check):
                        need_reload_flag = False
                        mtime = config_mtime(CONFIG_PATH)
                        if mtime != cfg_mtime:
                            log.debug("Config changed (mtime %s -> %s)", cfg_mtime, mtime)
                            cfg, cfg_mtime = load_config(CONFIG_PATH)
                            observer = sync_watchdog(observer, cfg.use_watchdog, trigger_reload)
                            # A fresh engine: rewrite cache and persistent set are per session
                            engine.close()
                            engine = build_engine(ipc, cfg, output, sink)
                            buf = b""
                            log.info("Config reloaded, %s workspaces", len(engine.registry))
                        next_cfg_check = now + cfg.config_poll_interval_sec

                    try:
                        data = s.recv(cfg.socket_buffer_size_bytes)
                    except socket.timeout:
                        continue
                    if not data:
                        raise ConnectionError("Hyprland closed the event socket")

                    metrics.inc("bytes_read", len(data))
                    last_event_received = time.monotonic()
                    buf = enforce_buffer_limit(buf + data, cfg.max_buffer_size_bytes)

                    lines, buf = split_lines(buf)
                    for line in lines:
                        if not ipc.subscribed(line.split(">", 1)[0]):
                            continue
                        start = time.monotonic()
                        ipc.emit(line)
                        took_ms = max(1, int((time.monotonic() - start) * 1000))
                        metrics.record_event_time(took_ms)
                        metrics.maybe_log()
                        if took_ms > 100:
                            log.warning("Slow event %s took %s ms", line.split(">", 1)[0], took_ms)

        except KeyboardInterrupt:
            log.info("Interrupted by user.")
            metrics.log_final()
            break
        except Exception as e:
            log.error("Unhandled error in loop: %s (reconnecting in 1s)", e)
            notify_error(f"hypr-workspaces error: {e}", cfg.notify_on_errors)
            time.sleep(1.0)
            continue

    engine.close()
    stop_watchdog(observer)


if __name__ == "__main__":
    main()
