"""
Workspace state synchronization: decodes socket2 events into registry mutations
and reconciles flags, labels and ordering once per event.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from . import metrics
from .config import WorkspacesConfig
from .ipc import HyprlandIPC, normalize_address
from .log import log
from .model import Registry, Workspace, WorkspaceView
from .persistent import persistent_workspace_data, resolve_persistent_workspaces
from .rewrite import RewriteEngine
from .sink import PresentationSink

EVENT_KINDS = (
    "workspace",
    "createworkspace",
    "destroyworkspace",
    "focusedmon",
    "moveworkspace",
    "renameworkspace",
    "openwindow",
    "closewindow",
    "movewindow",
    "urgent",
)


def parse_event(line: str | bytes) -> tuple[str | None, str]:
    """
    Split a socket2 line 'event>>payload' on the first '>'. The payload may
    itself contain '>' and ','. Returns (None, "") for lines without a name.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="ignore")
    line = line.rstrip("\r\n")
    if ">" not in line:
        return None, ""
    name, payload = line.split(">", 1)
    name = name.strip()
    if not name:
        return None, ""
    if payload.startswith(">"):
        payload = payload[1:]
    return name, payload


def is_double_special(workspace_name: str) -> bool:
    # Hyprland sometimes reports create/destroy of workspaces named
    # 'special:special:<name>' that never actually exist (hyprwm/Hyprland#3424).
    return "special:special:" in workspace_name


def _window_count(data: dict[str, Any]) -> int:
    try:
        return max(0, int(data.get("windows") or 0))
    except (TypeError, ValueError) as e:
        log.error("Failed to update window count: %s", e)
        return 0


class WorkspacesEngine:
    """
    Mirror of the compositor's workspaces for one output.

    Every event is handled and followed by a reconciliation tick under one lock;
    the resulting ordered views are then handed to the sink.
    """

    def __init__(
        self,
        ipc: HyprlandIPC,
        cfg: WorkspacesConfig,
        output: str,
        sink: PresentationSink | None = None,
    ):
        self.ipc = ipc
        self.cfg = cfg
        self.output = output
        self.sink = sink
        self.rewrite = RewriteEngine(cfg.window_rewrite, cfg.window_rewrite_default)
        self.registry = Registry()
        self.active_workspace_name = ""
        self.monitor_id = 0
        self.persistent_names: list[str] = []

        self._to_remove: list[str] = []
        self._to_create: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._handlers: dict[str, Callable[[str], None]] = {
            "workspace": self._on_workspace,
            "createworkspace": self._on_create_workspace,
            "destroyworkspace": self._on_destroy_workspace,
            "focusedmon": self._on_focused_monitor,
            "moveworkspace": self._on_move_workspace,
            "renameworkspace": self._on_rename_workspace,
            "openwindow": self._on_window_opened,
            "closewindow": self._on_window_closed,
            "movewindow": self._on_window_moved,
            "urgent": self._on_urgent,
        }

    # ----------------------------------------------------------------------------------
    # Lifecycle

    def start(self) -> list[WorkspaceView]:
        for kind in EVENT_KINDS:
            self.ipc.register(kind, self.on_event)
        return self.init()

    def init(self) -> list[WorkspaceView]:
        with self._lock:
            active = self.ipc.query("activeworkspace")
            if isinstance(active, dict):
                self.active_workspace_name = str(active.get("name") or "")

            # monitor ID is used to number persistent workspaces
            self.monitor_id = 0
            monitors = self.ipc.query("monitors") or []
            current = next(
                (m for m in monitors if isinstance(m, dict) and m.get("name") == self.output), None
            )
            if current is None:
                log.error("Monitor '%s' does not have an ID? Using 0", self.output)
            else:
                self.monitor_id = int(current.get("id") or 0)

            self.persistent_names = resolve_persistent_workspaces(
                self.cfg.persistent_workspaces, self.output, self.monitor_id
            )
            for name in self.persistent_names:
                self.registry.create(persistent_workspace_data(name, self.output), self.rewrite)

            workspaces = self.ipc.query("workspaces") or []
            clients = self.ipc.query("clients") or []
            for data in workspaces:
                if not isinstance(data, dict):
                    continue
                name = str(data.get("name") or "")
                if self._on_this_output(data) and (
                    self.cfg.show_special or not name.startswith("special")
                ):
                    self.registry.create(data, self.rewrite, clients)

            self._update_window_count()
            views = self.update()
            log.info(
                "Tracking %s workspaces on %s (monitor id %s, %s persistent)",
                len(self.registry),
                self.output,
                self.monitor_id,
                len(self.persistent_names),
            )
        self._render(views)
        return views

    def close(self) -> None:
        self.ipc.unregister(self.on_event)
        # wait for a possibly running event handler
        with self._lock:
            self.registry.clear()
            self._to_remove.clear()
            self._to_create.clear()

    # ----------------------------------------------------------------------------------
    # Events

    def on_event(self, line: str) -> list[WorkspaceView] | None:
        """Handle one socket2 line. Returns the new views, or None if ignored."""
        with self._lock:
            ev, payload = parse_event(line)
            handler = self._handlers.get(ev) if ev else None
            if handler is None:
                log.debug("Unsupported event %s ignored: %s", ev, payload)
                metrics.inc("unsupported_events")
                return None
            log.debug("Event %s: %s", ev, payload)
            handler(payload)
            views = self.update()
            metrics.inc("events_processed")
        self._render(views)
        return views

    def _on_workspace(self, payload: str) -> None:
        self.active_workspace_name = payload

    def _on_create_workspace(self, payload: str) -> None:
        if is_double_special(payload):
            log.debug("Ignoring creation of double special workspace %s", payload)
            return
        workspaces = self.ipc.query("workspaces")
        if not isinstance(workspaces, list):
            return
        for data in workspaces:
            if not isinstance(data, dict):
                continue
            name = str(data.get("name") or "")
            if (
                name == payload
                and self._on_this_output(data)
                and (self.cfg.show_special or not name.startswith("special"))
            ):
                self._to_create.append(data)
                break

    def _on_destroy_workspace(self, payload: str) -> None:
        if is_double_special(payload):
            log.debug("Ignoring removal of double special workspace %s", payload)
            return
        self._to_remove.append(payload)

    def _on_focused_monitor(self, payload: str) -> None:
        self.active_workspace_name = payload.split(",", 1)[-1]

    def _on_move_workspace(self, payload: str) -> None:
        if self.cfg.all_outputs:
            return
        workspace = payload.split(",", 1)[0]
        new_output = payload.split(",", 1)[-1]
        if new_output != self.output:
            self._to_remove.append(workspace)
            return
        workspaces = self.ipc.query("workspaces")
        if not isinstance(workspaces, list):
            return
        for data in workspaces:
            if not isinstance(data, dict):
                continue
            if data.get("name") == workspace and data.get("monitor") == self.output:
                self._to_create.append(data)
                break

    def _on_rename_workspace(self, payload: str) -> None:
        id_str, _, new_name = payload.partition(",")
        try:
            workspace_id = -99 if id_str == "special" else int(id_str)
        except ValueError:
            log.debug("renameworkspace with invalid id %r ignored", id_str)
            return
        ws = self.registry.find_by_id(workspace_id)
        if ws is None:
            return
        if ws.name == self.active_workspace_name:
            self.active_workspace_name = new_name
        self.registry.rename(workspace_id, new_name)

    def _on_window_opened(self, payload: str) -> None:
        self._update_window_count()
        fields = payload.split(",", 3)
        if len(fields) < 3:
            log.debug("openwindow with malformed payload ignored: %s", payload)
            return
        address, workspace_name, window_class = normalize_address(fields[0]), fields[1], fields[2]
        ws = self.registry.find_by_name(workspace_name)
        if ws is not None:
            ws.windows.insert(address, self.rewrite(window_class))

    def _on_window_closed(self, payload: str) -> None:
        self._update_window_count()
        address = normalize_address(payload)
        ws = self.registry.find_window(address)
        if ws is not None:
            ws.windows.remove(address)

    def _on_window_moved(self, payload: str) -> None:
        self._update_window_count()
        raw_address, _, workspace_name = payload.partition(",")
        address = normalize_address(raw_address)

        # Take the window's representation from the old workspace...
        source = self.registry.find_window(address)
        window_repr = source.windows.remove(address) if source is not None else None
        if window_repr is None:
            log.debug("movewindow: window %s not tracked on %s", address, self.output)
            return

        # ...and add it to the new workspace
        target = self.registry.find_by_name(workspace_name)
        if target is not None:
            target.windows.insert(address, window_repr)

    def _on_urgent(self, payload: str) -> None:
        clients = self.ipc.query("clients")
        if not isinstance(clients, list):
            return
        address = normalize_address(payload)
        if not address:
            return
        workspace_id = None
        for client in clients:
            if not isinstance(client, dict):
                continue
            if normalize_address(str(client.get("address") or "")).endswith(address):
                workspace_id = (client.get("workspace") or {}).get("id")
                break
        if workspace_id is None:
            return
        ws = self.registry.find_by_id(workspace_id)
        if ws is not None:
            ws.urgent = True

    # ----------------------------------------------------------------------------------
    # Reconciliation

    def update(self) -> list[WorkspaceView]:
        """Apply queued changes, refresh derived flags/labels, re-sort. Caller holds the lock."""
        for name in self._to_remove:
            self.registry.remove_by_name(name)
        self._to_remove.clear()

        for data in self._to_create:
            self.registry.create(data, self.rewrite)
        self._to_create.clear()

        visible = self._visible_workspaces()
        for ws in self.registry:
            ws.set_active(ws.name == self.active_workspace_name)
            if visible is not None:
                ws.visible = ws.name in visible
            icon = ws.select_icon(self.cfg.format_icons) if self.cfg.with_icon else ""
            ws.format_label(self.cfg.format, icon, self.cfg.window_separator)

        self.registry.sort(self.cfg.sort_by)
        metrics.inc("ticks")
        return self.views()

    def views(self) -> list[WorkspaceView]:
        return [ws.view(self.cfg.active_only) for ws in self.registry]

    def _visible_workspaces(self) -> set[str] | None:
        monitors = self.ipc.query("monitors")
        if not isinstance(monitors, list):
            return None
        visible: set[str] = set()
        for monitor in monitors:
            ws = monitor.get("activeWorkspace") if isinstance(monitor, dict) else None
            if isinstance(ws, dict) and isinstance(ws.get("name"), str):
                visible.add(ws["name"])
        return visible

    def _update_window_count(self) -> None:
        workspaces = self.ipc.query("workspaces")
        if not isinstance(workspaces, list):
            return
        for ws in self.registry:
            data = next(
                (d for d in workspaces if isinstance(d, dict) and d.get("name") == ws.name), None
            )
            ws.window_count = _window_count(data) if data is not None else 0

    def _on_this_output(self, data: dict[str, Any]) -> bool:
        return self.cfg.all_outputs or data.get("monitor") == self.output

    def _render(self, views: list[WorkspaceView]) -> None:
        if self.sink is not None:
            self.sink.render(views)

    # ----------------------------------------------------------------------------------
    # Clicks

    def click(self, ref: WorkspaceView | Workspace) -> bool:
        """Switch to (or toggle) the referenced workspace."""
        command = ref.command if isinstance(ref, WorkspaceView) else ref.dispatch_command()
        if self.ipc.dispatch(command):
            return True
        log.error("Failed to dispatch workspace %s", ref.name)
        return False
