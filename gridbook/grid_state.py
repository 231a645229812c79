"""
Grid State — cell editing state machine for the grid client.

Pure function: (state, action, grid) → Transition
No side effects. No IO. The caller saves every ``Commit`` the reducer
emits and re-renders from the returned state.

States: Idle, Editing(cell, value), Dragging(start, end).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


Cell = tuple[int, int]   # (row, col)


class GridView(Protocol):
    """What the reducer needs to know about the grid being edited."""
    row_count: int
    col_count: int

    def display_value(self, row: int, col: int) -> str: ...


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Editing:
    cell: Cell
    value: str = ''


@dataclass(frozen=True)
class Dragging:
    start: Cell
    end: Cell

    def contains(self, cell: Cell) -> bool:
        (r1, c1), (r2, c2) = self.start, self.end
        return (min(r1, r2) <= cell[0] <= max(r1, r2)
                and min(c1, c2) <= cell[1] <= max(c1, c2))


GridState = Idle | Editing | Dragging

IDLE = Idle()


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Click:
    cell: Cell


@dataclass(frozen=True)
class Input:
    value: str


@dataclass(frozen=True)
class Key:
    key: str                       # 'Enter', 'Tab', 'Up', 'Down', 'Left', 'Right'
    shift: bool = False
    caret_at_start: bool = True
    caret_at_end: bool = True


@dataclass(frozen=True)
class Escape:
    pass


@dataclass(frozen=True)
class Blur:
    pass


@dataclass(frozen=True)
class MouseDown:
    cell: Cell


@dataclass(frozen=True)
class MouseMove:
    cell: Cell


@dataclass(frozen=True)
class MouseUp:
    pass


@dataclass(frozen=True)
class Commit:
    """A cell value the caller must save."""
    cell: Cell
    value: str


@dataclass(frozen=True)
class Transition:
    state: GridState
    commits: tuple[Commit, ...] = field(default_factory=tuple)


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

def in_bounds(cell: Cell, grid: GridView) -> bool:
    row, col = cell
    return 0 <= row < grid.row_count and 0 <= col < grid.col_count


def start_editing(cell: Cell, grid: GridView) -> Editing:
    return Editing(cell, grid.display_value(*cell))


def _key_offset(action: Key) -> Cell | None:
    """Movement for a navigation key, or None if the key is not handled."""
    step = -1 if action.shift else 1
    if action.key == 'Enter':
        return (step, 0)
    if action.key == 'Tab':
        return (0, step)
    if action.key == 'Up':
        return (-1, 0)
    if action.key == 'Down':
        return (1, 0)
    if action.key == 'Left':
        return (0, -1) if action.caret_at_start else None
    if action.key == 'Right':
        return (0, 1) if action.caret_at_end else None
    return None


def _on_click(state, action, grid):
    if not in_bounds(action.cell, grid):
        return Transition(state)
    if isinstance(state, Editing):
        if state.cell == action.cell:
            return Transition(state)
        commit = Commit(state.cell, state.value)
        return Transition(start_editing(action.cell, grid), (commit,))
    return Transition(start_editing(action.cell, grid))


def _on_input(state, action, grid):
    if isinstance(state, Editing):
        return Transition(Editing(state.cell, action.value))
    return Transition(state)


def _on_key(state, action, grid):
    if not isinstance(state, Editing):
        return Transition(state)
    offset = _key_offset(action)
    if offset is None:
        return Transition(state)

    commit = Commit(state.cell, state.value)
    target = (state.cell[0] + offset[0], state.cell[1] + offset[1])
    if not in_bounds(target, grid):
        return Transition(state, (commit,))
    return Transition(start_editing(target, grid), (commit,))


def _on_escape(state, action, grid):
    if isinstance(state, Editing):
        return Transition(IDLE)
    return Transition(state)


def _on_blur(state, action, grid):
    if isinstance(state, Editing):
        return Transition(IDLE, (Commit(state.cell, state.value),))
    return Transition(state)


def _on_mouse_down(state, action, grid):
    if isinstance(state, Idle) and in_bounds(action.cell, grid):
        return Transition(Dragging(action.cell, action.cell))
    return Transition(state)


def _on_mouse_move(state, action, grid):
    if isinstance(state, Dragging) and in_bounds(action.cell, grid):
        return Transition(Dragging(state.start, action.cell))
    return Transition(state)


def _on_mouse_up(state, action, grid):
    if isinstance(state, Dragging):
        return Transition(IDLE)
    return Transition(state)


_HANDLERS = {
    Click: _on_click,
    Input: _on_input,
    Key: _on_key,
    Escape: _on_escape,
    Blur: _on_blur,
    MouseDown: _on_mouse_down,
    MouseMove: _on_mouse_move,
    MouseUp: _on_mouse_up,
}


def reduce(state: GridState, action, grid: GridView) -> Transition:
    """Apply one UI action to the grid state.

    Unknown actions and actions that make no sense in the current state
    leave the state unchanged and commit nothing.
    """
    handler = _HANDLERS.get(type(action))
    if handler is None:
        return Transition(state)
    return handler(state, action, grid)


# ---------------------------------------------------------------------------
# Row selection
# ---------------------------------------------------------------------------

class RowSelection:
    """Checkbox row selection, independent of the editing state."""

    def __init__(self):
        self._ids: set[str] = set()

    def __contains__(self, entry_id) -> bool:
        return entry_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def toggle(self, entry_id: str, selected: bool):
        if selected:
            self._ids.add(entry_id)
        else:
            self._ids.discard(entry_id)

    def select_all(self, entry_ids):
        self._ids = set(entry_ids)

    def clear(self):
        self._ids.clear()

    def discard(self, entry_ids):
        self._ids.difference_update(entry_ids)

    def retain(self, entry_ids):
        """Drop selected ids that are no longer present in the grid."""
        self._ids.intersection_update(entry_ids)

    def ordered(self, entry_ids) -> list[str]:
        """Selected ids in grid order."""
        return [eid for eid in entry_ids if eid in self._ids]
