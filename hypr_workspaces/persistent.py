"""Resolve persistent-workspace declarations for one output."""

from __future__ import annotations

from typing import Any

from .log import log
from .sorting import UNNAMED_SPECIAL_ID


def declarations_from_config(raw: dict[str, Any]) -> dict[str, Any]:
    """Pick 'persistent-workspaces', falling back to the deprecated underscore key."""
    legacy = raw.get("persistent_workspaces")
    if isinstance(legacy, dict):
        log.warning(
            "persistent_workspaces is deprecated. "
            "Please change config to use persistent-workspaces."
        )
    current = raw.get("persistent-workspaces")
    if isinstance(current, dict):
        return current
    if isinstance(legacy, dict):
        return legacy
    return {}


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def resolve_persistent_workspaces(
    declarations: dict[str, Any], output: str, monitor_id: int
) -> list[str]:
    """
    Names of the workspaces that must always exist on `output`.

    Each key is either "*", an output name, or a workspace name. Values:
      int          -> create that many workspaces, numbered per monitor
      [int, ...]   -> create those workspaces on this output
      [str, ...]   -> key is a workspace, created on the listed outputs
      anything else (empty list, null, ...) -> key is shown on every output
    """
    names: list[str] = []
    keys = list(declarations)

    for key in keys:
        # "*" only applies when this output has no entry of its own
        can_create = (key == "*" and output not in keys) or key == output
        value = declarations[key]

        if _is_int(value):
            if can_create:
                log.debug("Creating %s persistent workspaces for monitor %s", value, output)
                names.extend(str(monitor_id * value + i + 1) for i in range(value))
        elif isinstance(value, list) and value:
            if can_create:
                for workspace in value:
                    if _is_int(workspace):
                        log.debug("Creating workspace %s on monitor %s", workspace, output)
                        names.append(str(workspace))
            elif any(isinstance(m, str) and m == output for m in value):
                names.append(key)
        else:
            names.append(key)

    return names


def persistent_workspace_data(name: str, output: str) -> dict[str, Any]:
    """Creation record for a persistent workspace that may not exist yet."""
    if name == "special":
        ws_id = UNNAMED_SPECIAL_ID
    else:
        try:
            # numbered persistent workspaces get the name as ID
            ws_id = int(name)
        except ValueError:
            # named ones start at 0 until the compositor reports them
            ws_id = 0
    return {"id": ws_id, "name": name, "monitor": output, "windows": 0, "persistent": True}
