"""
Hyprland IPC transport: blocking hyprctl queries/dispatches and the socket2
event subscription table.
"""

from __future__ import annotations

import json
import os
import socket
import subprocess
import time
from collections.abc import Callable
from typing import Any

from . import metrics
from .log import log, notify_error

EventHandler = Callable[[str], None]


def normalize_address(addr: str) -> str:
    """Strip the '0x' prefix hyprctl JSON puts on addresses (socket2 omits it)."""
    a = addr.strip()
    return a[2:] if a.startswith("0x") else a


class HyprlandIPC:
    """
    Owns the hyprctl command channel and a subscription table keyed by event kind.
    Handlers registered for a kind receive the raw event line.
    """

    def __init__(self, hyprctl: str = "hyprctl"):
        self.hyprctl = hyprctl
        self._handlers: dict[str, list[EventHandler]] = {}

    # ----------------------------------------------------------------------------------
    # Requests

    def query(self, command: str) -> Any | None:
        """Run 'hyprctl <command> -j' and parse JSON. Returns None on error."""
        metrics.inc("hyprctl_calls")
        try:
            p = subprocess.run([self.hyprctl, command, "-j"], capture_output=True, text=True)
        except FileNotFoundError:
            log.error("hyprctl not found in PATH")
            metrics.inc("hyprctl_errors")
            return None
        except Exception as e:
            log.error("hyprctl failed to run %s: %s", command, e)
            metrics.inc("hyprctl_errors")
            return None
        if p.returncode != 0:
            log.error("hyprctl %s returned %s: %s", command, p.returncode, (p.stderr or "").strip())
            metrics.inc("hyprctl_errors")
            return None
        try:
            return json.loads(p.stdout)
        except ValueError as e:
            log.error("JSON parse error for hyprctl %s: %s", command, e)
            metrics.inc("hyprctl_errors")
            return None

    def dispatch(self, command: str) -> bool:
        """
        Send a 'dispatch <dispatcher> [arg]' command. The argument may contain
        spaces (workspace names), so only the first two separators split.
        """
        metrics.inc("dispatch_calls")
        args = command.split(" ", 2)
        try:
            p = subprocess.run([self.hyprctl, *args], capture_output=True, text=True)
        except (FileNotFoundError, OSError) as e:
            log.error("Failed to dispatch '%s': %s", command, e)
            metrics.inc("hyprctl_errors")
            return False
        out = (p.stdout or "").strip()
        if p.returncode != 0 or (out and out != "ok"):
            log.error("Failed to dispatch '%s': %s", command, out or (p.stderr or "").strip())
            metrics.inc("hyprctl_errors")
            return False
        log.debug("Dispatched '%s'", command)
        return True

    # ----------------------------------------------------------------------------------
    # Subscriptions

    def register(self, kind: str, handler: EventHandler) -> None:
        handlers = self._handlers.setdefault(kind, [])
        if handler not in handlers:
            handlers.append(handler)

    def unregister(self, handler: EventHandler) -> None:
        for kind in list(self._handlers):
            self._handlers[kind] = [h for h in self._handlers[kind] if h != handler]
            if not self._handlers[kind]:
                del self._handlers[kind]

    def subscribed(self, kind: str) -> bool:
        return kind in self._handlers

    def emit(self, line: str) -> bool:
        """Deliver one event line to the handlers of its kind. Returns False if none."""
        kind = line.split(">", 1)[0].strip()
        handlers = self._handlers.get(kind)
        if not handlers:
            log.debug("No subscriber for event %s", kind or "<empty>")
            return False
        for h in list(handlers):
            h(line)
        return True


# --------------------------------------------------------------------------------------
# Socket2 helpers


def event_socket_path() -> str | None:
    sig = os.environ.get("HYPRLAND_INSTANCE_SIGNATURE")
    xdg = os.environ.get("XDG_RUNTIME_DIR")
    if not sig or not xdg:
        return None
    return os.path.join(xdg, "hypr", sig, ".socket2.sock")


def connect_with_backoff(
    sock_path: str, timeout_sec: float, max_attempts: int, notify_on_errors: bool
) -> socket.socket:
    """
    Connect with incremental backoff. If max_attempts > 0 and exceeded, raises OSError.
    """
    attempt = 0
    backoff = 0.5
    while True:
        attempt += 1
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            s.connect(sock_path)
            if timeout_sec and timeout_sec > 0.0:
                s.settimeout(timeout_sec)
            log.info("Connected to Hyprland event socket %s", sock_path)
            return s
        except OSError as e:
            s.close()
            log.warning(
                "Socket connect failed (attempt %s): %s (type: %s)", attempt, e, type(e).__name__
            )
            if max_attempts > 0 and attempt >= max_attempts:
                msg = f"Failed to connect to {sock_path} after {attempt} attempts"
                log.error(msg)
                notify_error(msg, notify_on_errors)
                raise
            time.sleep(backoff)
            backoff = min(backoff * 2, 5.0)


def enforce_buffer_limit(buf: bytes, limit: int) -> bytes:
    """Ensure buffer does not exceed limit; clears and warns if exceeded."""
    if len(buf) > limit:
        log.warning(
            "Event buffer exceeded %s bytes (was %s bytes), clearing to prevent memory issues",
            limit,
            len(buf),
        )
        metrics.inc("buffer_size_exceeded")
        return b""
    return buf


def split_lines(buf: bytes) -> tuple[list[str], bytes]:
    """Split complete lines off the buffer; returns (decoded lines, remainder)."""
    lines: list[str] = []
    while b"\n" in buf:
        line, buf = buf.split(b"\n", 1)
        text = line.decode("utf-8", errors="ignore").strip("\r")
        if text:
            lines.append(text)
    return lines, buf
