"""Logger setup, optional file logging with rotation, desktop notifications."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import time

from . import metrics

LOGGER_NAME = "hypr-workspaces"
DEFAULT_LOG_FORMAT = "[hypr-workspaces] %(levelname)s: %(message)s"


def _make_logger(level_name: str = "INFO", fmt: str = DEFAULT_LOG_FORMAT) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    lvl = getattr(logging, level_name.upper(), logging.INFO)
    if logger.handlers:
        # Update level/format if logger already exists
        logger.setLevel(lvl)
        _apply_log_format(fmt)
        return logger
    logger.setLevel(lvl)
    h = logging.StreamHandler(sys.stderr)
    h.setFormatter(logging.Formatter(fmt))
    logger.addHandler(h)
    return logger


def _apply_log_format(fmt: str) -> None:
    """Apply formatter to all existing handlers with validation and fallback."""
    logger = logging.getLogger(LOGGER_NAME)
    try:
        formatter = logging.Formatter(fmt, validate=True)
    except Exception as e:
        log.warning("Invalid log_format '%s', falling back to default: %s", fmt, e)
        formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    for h in logger.handlers:
        try:
            h.setFormatter(formatter)
        except Exception as e:
            log.warning("Failed to apply formatter to handler: %s", e)


log = _make_logger(os.environ.get("HYPRWS_LOG_LEVEL", "INFO"))


def set_level(level_name: str) -> None:
    log.setLevel(getattr(logging, level_name.upper(), logging.INFO))


def _rotate(log_file: str, max_size: int, max_rotations: int) -> None:
    try:
        size = os.path.getsize(log_file)
    except OSError:
        return
    if size <= max_size:
        return
    log_dir = os.path.dirname(log_file) or "."
    base = os.path.basename(log_file)
    baks = [f for f in os.listdir(log_dir) if f.startswith(base + ".") and f.endswith(".bak")]
    baks.sort(key=lambda fn: os.path.getmtime(os.path.join(log_dir, fn)))
    while len(baks) >= max_rotations:
        oldest = baks.pop(0)
        try:
            os.remove(os.path.join(log_dir, oldest))
            log.debug("Removed old rotated log %s", oldest)
        except OSError as e:
            log.warning("Failed to remove old rotated log %s: %s", oldest, e)
    bak = f"{log_file}.{int(time.time())}.bak"
    os.rename(log_file, bak)
    log.warning("Log file %s exceeded %s bytes (%s), rotated to %s", log_file, max_size, size, bak)


def ensure_file_logging(
    log_file: str | None, max_size: int, max_rotations: int, log_format: str
) -> None:
    if not log_file:
        return
    try:
        log_dir = os.path.dirname(log_file) or "."
        if not os.access(log_dir, os.W_OK):
            log.warning("Log directory %s is not writable, file logging disabled", log_dir)
            return

        if os.path.exists(log_file):
            try:
                _rotate(log_file, max_size, max_rotations)
            except OSError as e:
                log.warning("Failed to rotate log file %s: %s", log_file, e)

        # Avoid duplicate handlers to the same file
        for h in log.handlers:
            if isinstance(h, logging.FileHandler) and getattr(
                h, "baseFilename", None
            ) == os.path.abspath(log_file):
                return
        fh = logging.FileHandler(log_file)
        fh.setFormatter(logging.Formatter(log_format))
        log.addHandler(fh)
        log.info("File logging enabled at %s", log_file)
    except Exception as e:
        log.warning("Failed to set up file logging to %s: %s", log_file, e)


def _has_notify_send() -> bool:
    try:
        subprocess.run(
            ["notify-send", "--version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        return True
    except FileNotFoundError:
        log.warning("notify-send not found, notifications disabled")
        return False
    except Exception as e:
        log.warning("notify-send check failed: %s", e)
        return False


def notify_error(msg: str, enabled: bool) -> None:
    """Send critical desktop notification if enabled; checks notify-send availability."""
    if not enabled or not _has_notify_send():
        return
    try:
        subprocess.run(
            ["notify-send", "-u", "critical", "hypr-workspaces", msg],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
        metrics.inc("notifications_sent")
    except Exception as e:
        log.warning("Failed to send notification: %s", e)
