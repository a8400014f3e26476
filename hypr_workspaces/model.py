"""Workspace / window data model mirrored from the compositor."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from dataclasses import asdict, dataclass
from typing import Any

from .ipc import normalize_address
from .log import log
from .sorting import UNNAMED_SPECIAL_ID, SortMethod, sort_workspaces

Rewrite = Callable[[str], str]

# formats already reported as invalid
_bad_formats: set[str] = set()


def _as_int(val: Any, default: int = 0) -> int:
    try:
        return int(val)
    except (TypeError, ValueError):
        return default


class WindowTracker:
    """Insertion-ordered address -> display string map for one workspace."""

    def __init__(self) -> None:
        self._windows: dict[str, str] = {}

    def initialize(
        self, clients: Iterable[dict[str, Any]], workspace_id: int, rewrite: Rewrite
    ) -> None:
        self._windows.clear()
        for client in clients:
            if not isinstance(client, dict):
                continue
            ws = client.get("workspace")
            if not isinstance(ws, dict) or ws.get("id") != workspace_id:
                continue
            address = normalize_address(str(client.get("address") or ""))
            if address:
                self.insert(address, rewrite(str(client.get("class") or "")))

    def insert(self, address: str, window_repr: str) -> bool:
        if not window_repr or address in self._windows:
            return False
        self._windows[address] = window_repr
        return True

    def remove(self, address: str) -> str | None:
        """Remove and return the window's display string; None when absent."""
        return self._windows.pop(address, None)

    def __contains__(self, address: object) -> bool:
        return address in self._windows

    def __len__(self) -> int:
        return len(self._windows)

    def items(self) -> list[tuple[str, str]]:
        return list(self._windows.items())

    def join(self, separator: str) -> str:
        return separator.join(self._windows.values())


@dataclass(frozen=True)
class WorkspaceView:
    id: int
    name: str
    output: str
    active: bool
    visible: bool
    urgent: bool
    special: bool
    persistent: bool
    empty: bool
    label: str
    hidden: bool
    command: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Workspace:
    def __init__(
        self,
        data: dict[str, Any],
        rewrite: Rewrite,
        clients: Iterable[dict[str, Any]] = (),
    ):
        self.id: int = _as_int(data.get("id"))
        self.output: str = str(data.get("monitor") or "")
        self.window_count: int = max(0, _as_int(data.get("windows")))
        self.active = False
        self.visible = False
        self.urgent = False
        self.special = False
        self.persistent = bool(data.get("persistent", False))
        self.icon = ""
        self.label = ""

        name = str(data.get("name") or "")
        if name.startswith("name:"):
            name = name[5:]
        elif name.startswith("special"):
            name = name if self.id == UNNAMED_SPECIAL_ID else name[8:]
            self.special = True
        self.name: str = name

        self.windows = WindowTracker()
        self.windows.initialize(clients, self.id, rewrite)

    def __repr__(self) -> str:
        return f"Workspace(id={self.id}, name={self.name!r}, output={self.output!r})"

    @property
    def empty(self) -> bool:
        return self.window_count == 0

    def set_active(self, value: bool) -> None:
        self.active = value
        if value:
            self.urgent = False

    def rename(self, new_name: str) -> None:
        self.name = new_name

    def matches_name(self, name: str) -> bool:
        """Compare an IPC-reported name, which may carry a 'special:' prefix."""
        return (name.startswith("special:") and name[8:] == self.name) or name == self.name

    def select_icon(self, icons: dict[str, str]) -> str:
        if self.urgent and "urgent" in icons:
            return icons["urgent"]
        if self.active and "active" in icons:
            return icons["active"]
        if self.special and "special" in icons:
            return icons["special"]
        if self.name in icons:
            return icons[self.name]
        if self.visible and "visible" in icons:
            return icons["visible"]
        if self.empty and "empty" in icons:
            return icons["empty"]
        if self.persistent and "persistent" in icons:
            return icons["persistent"]
        if "default" in icons:
            return icons["default"]
        return self.name

    def format_label(self, fmt: str, icon: str, separator: str) -> str:
        self.icon = icon
        try:
            self.label = fmt.format(
                id=self.id, name=self.name, icon=icon, windows=self.windows.join(separator)
            )
        except (KeyError, IndexError, ValueError, AttributeError, TypeError) as e:
            if fmt not in _bad_formats:
                _bad_formats.add(fmt)
                log.error("Invalid format %r for workspace %s: %s", fmt, self.name, e)
            self.label = self.name
        return self.label

    def dispatch_command(self) -> str:
        if self.id > 0:  # normal or numbered persistent
            return f"dispatch workspace {self.id}"
        if not self.special:  # named
            return f"dispatch workspace name:{self.name}"
        if self.id != UNNAMED_SPECIAL_ID:  # named special
            return f"dispatch togglespecialworkspace {self.name}"
        return "dispatch togglespecialworkspace"

    def hidden(self, active_only: bool) -> bool:
        return active_only and not (
            self.active or self.persistent or self.visible or self.special
        )

    def view(self, active_only: bool = False) -> WorkspaceView:
        return WorkspaceView(
            id=self.id,
            name=self.name,
            output=self.output,
            active=self.active,
            visible=self.visible,
            urgent=self.urgent,
            special=self.special,
            persistent=self.persistent,
            empty=self.empty,
            label=self.label,
            hidden=self.hidden(active_only),
            command=self.dispatch_command(),
        )


class Registry:
    """Owns the mirrored workspaces. Order is only changed by sort()."""

    def __init__(self) -> None:
        self._workspaces: list[Workspace] = []

    def __iter__(self) -> Iterator[Workspace]:
        return iter(list(self._workspaces))

    def __len__(self) -> int:
        return len(self._workspaces)

    def names(self) -> list[str]:
        return [ws.name for ws in self._workspaces]

    def find_by_id(self, workspace_id: int) -> Workspace | None:
        return next((ws for ws in self._workspaces if ws.id == workspace_id), None)

    def find_by_name(self, name: str) -> Workspace | None:
        return next((ws for ws in self._workspaces if ws.name == name), None)

    def find_persistent(self, name: str) -> Workspace | None:
        return next(
            (ws for ws in self._workspaces if ws.persistent and ws.matches_name(name)), None
        )

    def find_window(self, address: str) -> Workspace | None:
        return next((ws for ws in self._workspaces if address in ws.windows), None)

    def create(
        self,
        data: dict[str, Any],
        rewrite: Rewrite,
        clients: Iterable[dict[str, Any]] = (),
    ) -> Workspace:
        # replace the existing persistent workspace if it exists, keeping the flag
        existing = self.find_persistent(str(data.get("name") or ""))
        if existing is not None:
            self._workspaces.remove(existing)
            data = {**data, "persistent": True}
            log.debug("Replacing persistent workspace %s", existing.name)

        ws = Workspace(data, rewrite, clients)
        self._workspaces.append(ws)
        log.debug("Created workspace %r (persistent=%s)", ws, ws.persistent)
        return ws

    def remove_by_name(self, name: str) -> Workspace | None:
        ws = next((w for w in self._workspaces if w.matches_name(name)), None)
        if ws is None:
            # happens when a workspace on another monitor is destroyed
            return None
        if ws.persistent:
            # kept; a later create() replaces it
            return None
        self._workspaces.remove(ws)
        log.debug("Removed workspace %r", ws)
        return ws

    def rename(self, workspace_id: int, new_name: str) -> Workspace | None:
        ws = self.find_by_id(workspace_id)
        if ws is not None:
            ws.rename(new_name)
        return ws

    def clear(self) -> None:
        self._workspaces.clear()

    def sort(self, method: SortMethod) -> None:
        self._workspaces = sort_workspaces(self._workspaces, method)
