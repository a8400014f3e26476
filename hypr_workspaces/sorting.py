"""Total ordering of workspaces for display."""

from __future__ import annotations

import enum
import functools
import re
from typing import TYPE_CHECKING

from .log import log

if TYPE_CHECKING:
    from .model import Workspace

UNNAMED_SPECIAL_ID = -99

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class SortMethod(enum.Enum):
    ID = "id"
    NAME = "name"
    NUMBER = "number"
    DEFAULT = "default"

    @classmethod
    def parse(cls, value: object) -> SortMethod:
        """Case-insensitive lookup; anything unrecognized falls back to DEFAULT."""
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        log.warning(
            "Invalid string representation for sort-by: %r. Falling back to default sort method.",
            value,
        )
        return cls.DEFAULT


def _default_less(a: Workspace, b: Workspace) -> bool:
    # normal -> named persistent -> named -> special -> named special

    # both normal (includes numbered persistent)
    if a.id > 0 and b.id > 0:
        return a.id < b.id

    # one normal, one special
    if a.special != b.special:
        return b.special

    # one normal, one named
    if (a.id > 0) != (b.id > 0):
        return a.id > 0

    if a.special and b.special:
        if a.id == UNNAMED_SPECIAL_ID or b.id == UNNAMED_SPECIAL_ID:
            return b.id == UNNAMED_SPECIAL_ID
        return a.name < b.name

    return a.name < b.name


def _leading_int(name: str) -> int:
    """Integer prefix of a name, so '2:term' sorts as 2. Raises ValueError if none."""
    m = _LEADING_INT.match(name)
    if m is None:
        raise ValueError(f"no leading number in {name!r}")
    return int(m.group(1))


def workspace_less(a: Workspace, b: Workspace, method: SortMethod) -> bool:
    if method is SortMethod.ID:
        return a.id < b.id
    if method is SortMethod.NAME:
        return a.name < b.name
    if method is SortMethod.NUMBER:
        try:
            return _leading_int(a.name) < _leading_int(b.name)
        except ValueError:
            pass  # no leading number: DEFAULT decides
    return _default_less(a, b)


def sort_workspaces(workspaces: list[Workspace], method: SortMethod) -> list[Workspace]:
    """Return a new, stably sorted list."""

    def cmp(a: Workspace, b: Workspace) -> int:
        if workspace_less(a, b, method):
            return -1
        if workspace_less(b, a, method):
            return 1
        return 0

    return sorted(workspaces, key=functools.cmp_to_key(cmp))
