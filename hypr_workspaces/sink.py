"""Presentation sinks consuming the ordered workspace views of each tick."""

from __future__ import annotations

import json
import sys
from collections.abc import Sequence
from typing import Protocol, TextIO

from .log import log
from .model import WorkspaceView


class PresentationSink(Protocol):
    def render(self, views: Sequence[WorkspaceView]) -> None: ...


class JsonLineSink:
    """
    Writes one JSON object per tick: {"output": ..., "workspaces": [...]}.
    Identical consecutive payloads are written once.
    """

    def __init__(self, output: str, stream: TextIO | None = None):
        self.output = output
        self.stream = stream if stream is not None else sys.stdout
        self._last: str | None = None

    def render(self, views: Sequence[WorkspaceView]) -> None:
        payload = json.dumps(
            {"output": self.output, "workspaces": [v.to_dict() for v in views]},
            ensure_ascii=False,
        )
        if payload == self._last:
            return
        self._last = payload
        try:
            self.stream.write(payload + "\n")
            self.stream.flush()
        except (OSError, ValueError) as e:
            log.error("Failed to write workspaces to sink: %s", e)
