from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from stack_duel.game.grid import Board
from stack_duel.game.pieces import TetrominoType


@runtime_checkable
class GameView(Protocol):
    """What the planner reads from a live game."""

    board: Board
    current_kind: Optional[TetrominoType]
    rotation: int
    x: int
    y: int
    hold_kind: Optional[TetrominoType]
    can_hold: bool
    queue: Sequence[TetrominoType]
    combo: int
    b2b: int
    pieces_placed: int

    def pending_garbage_total(self) -> int: ...


@runtime_checkable
class GameActions(Protocol):
    """What the controller is allowed to do to a live game."""

    def hold(self) -> bool: ...

    def set_pose(self, rotation: int, x: int, y: int, as_rotation: bool = False) -> bool: ...

    def is_valid_position(self, x: int, y: int, rotation: int) -> bool: ...

    def lock_piece(self) -> bool: ...

    def spawn_piece(self) -> bool: ...

    def hard_drop_and_spawn(self) -> bool: ...
