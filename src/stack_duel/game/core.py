from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .garbage import GarbageQueue, clamp_int
from .grid import Board, can_place, clone_board, hard_drop_row, new_board
from .pieces import (
    EMPTY,
    GARBAGE,
    SHAPES,
    SPAWN_ROW,
    TetrominoType,
    kicks_for,
    parse_kind,
    spawn_column,
)
from .randomizer import BagRandomizer
from .rules import DEFAULT_RULES, AttackRules, LockOutcome, resolve_lock

logger = logging.getLogger(__name__)

# the garbage walk draws from its own stream so piece order never depends on attack timing
GARBAGE_STREAM_SALT = 0x5F3759DF


class Action(IntEnum):
    LEFT = 0
    RIGHT = 1
    ROTATE_CW = 2
    ROTATE_CCW = 3
    ROTATE_180 = 4
    SOFT_DROP = 5
    HARD_DROP = 6
    HOLD = 7
    NONE = 8


@dataclass
class GameConfig:
    width: int = 10
    height: int = 20
    random_seed: Optional[int] = None
    spawn_y: int = SPAWN_ROW
    queue_size: int = 6
    gravity_ms: float = 1000.0
    lock_delay_ms: float = 500.0
    max_lock_resets: int = 15
    soft_drop_factor: float = 6.0
    garbage_apply_cap: int = 8

    def __post_init__(self) -> None:
        self.width = max(4, int(self.width))
        self.height = max(4, int(self.height))
        self.queue_size = max(1, int(self.queue_size))
        self.gravity_ms = max(1.0, float(self.gravity_ms))
        self.lock_delay_ms = max(0.0, float(self.lock_delay_ms))
        self.max_lock_resets = max(0, int(self.max_lock_resets))
        self.soft_drop_factor = max(1.0, float(self.soft_drop_factor))
        self.garbage_apply_cap = max(1, int(self.garbage_apply_cap))


def cell_marker(value: int) -> Any:
    if value == EMPTY:
        return 0
    if value == GARBAGE:
        return "G"
    kind = parse_kind(int(value))
    return kind.name if kind is not None else "G"


def marker_value(marker: Any) -> int:
    if marker in (None, 0, "", "0", ".", False):
        return EMPTY
    kind = parse_kind(marker)
    return int(kind) if kind is not None else GARBAGE


def _kind_name(kind: Optional[TetrominoType]) -> Optional[str]:
    return kind.name if kind is not None else None


def _sequence(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


class DuelGame:
    """One participant's live board: falling piece, hold, queue, counters and garbage.

    ``update`` drives gravity and lock delay; ``step`` applies single inputs.
    Outgoing attack (after cancelling pending garbage) goes to ``on_attack``.
    """

    def __init__(self, config: Optional[GameConfig] = None, rules: Optional[AttackRules] = None,
                 on_attack: Optional[Callable[[int], None]] = None) -> None:
        self.config = config or GameConfig()
        self.rules = rules or DEFAULT_RULES
        self.on_attack = on_attack
        self.board: Board = new_board(self.config.width, self.config.height)
        self.current_kind: Optional[TetrominoType] = None
        self.rotation = 0
        self.x = 0
        self.y = self.config.spawn_y
        self.hold_kind: Optional[TetrominoType] = None
        self.can_hold = True
        self.queue: List[TetrominoType] = []
        self.game_over = False
        self.last_lock: Optional[LockOutcome] = None
        self.last_attack_sent = 0
        self.reset()

    # ---------- lifecycle ----------
    def reset(self, seed: Optional[int] = None) -> None:
        if seed is not None:
            self.config.random_seed = seed
        seed = self.config.random_seed
        self.rng = random.Random(seed)
        self.garbage_rng = random.Random(None if seed is None else seed ^ GARBAGE_STREAM_SALT)
        self.bag = BagRandomizer(self.rng)
        self.garbage = GarbageQueue(self.config.width, self.garbage_rng)
        self.board = new_board(self.config.width, self.config.height)
        self.queue = []
        self.bag.fill(self.queue, self.config.queue_size)
        self.hold_kind = None
        self.can_hold = True
        self.pieces_placed = 0
        self.attacks_sent = 0
        self.lines_cleared = 0
        self.finesse_errors = 0
        self.combo = -1
        self.b2b = 0
        self.soft_drop = False
        self.game_over = False
        self.last_lock = None
        self.last_attack_sent = 0
        self.spawn_piece()

    def _reset_piece_state(self, kind: TetrominoType) -> None:
        self.current_kind = kind
        self.rotation = 0
        self.x = spawn_column(kind) or 0
        self.y = self.config.spawn_y
        self.lock_timer = 0.0
        self.lock_resets = 0
        self.touching_ground = False
        self.gravity_timer = 0.0
        self.last_action_was_rotation = False
        self.taps = 0
        self.rotation_presses = 0

    def spawn_piece(self) -> bool:
        kind = self.queue.pop(0)
        self.bag.fill(self.queue, self.config.queue_size)
        self._reset_piece_state(kind)
        self.can_hold = True
        if not self.is_valid_position(self.x, self.y, self.rotation):
            self._top_out("spawn of %s blocked" % kind.name)
            return False
        return True

    def _top_out(self, reason: str) -> None:
        self.game_over = True
        logger.info("top out: %s", reason)

    # ---------- queries ----------
    def is_valid_position(self, x: int, y: int, rotation: int) -> bool:
        if self.current_kind is None:
            return False
        return can_place(self.board, self.current_kind, rotation, x, y)

    def pending_garbage_total(self) -> int:
        return self.garbage.total()

    def get_state(self) -> np.ndarray:
        # falling piece overlaid as negative kind values
        state = clone_board(self.board)
        if self.current_kind is not None and not self.game_over:
            for r, c in zip(*np.nonzero(self._shape())):
                y, x = self.y + int(r), self.x + int(c)
                if 0 <= y < self.config.height and 0 <= x < self.config.width:
                    state[y, x] = -int(self.current_kind)
        return state

    def _shape(self) -> np.ndarray:
        return SHAPES[self.current_kind][self.rotation]

    # ---------- manipulation ----------
    def _manipulated(self) -> None:
        if self.touching_ground and self.lock_resets < self.config.max_lock_resets:
            self.lock_timer = 0.0
            self.lock_resets += 1

    def _lock_delay_expired(self) -> bool:
        return self.touching_ground and (
            self.lock_timer >= self.config.lock_delay_ms
            or self.lock_resets >= self.config.max_lock_resets
        )

    def move(self, dx: int) -> bool:
        if self.current_kind is None or not self.is_valid_position(self.x + dx, self.y, self.rotation):
            return False
        self.x += dx
        self.last_action_was_rotation = False
        self.taps += 1
        self._manipulated()
        return True

    def rotate(self, direction: str = "cw") -> bool:
        if self.current_kind is None or self._lock_delay_expired():
            return False
        turn = {"cw": 1, "ccw": 3, "180": 2}.get(direction)
        if turn is None:
            return False
        new_rotation = (self.rotation + turn) % 4
        for dx, dy in kicks_for(self.current_kind, self.rotation, new_rotation):
            if self.is_valid_position(self.x + dx, self.y - dy, new_rotation):
                self.x += dx
                self.y -= dy
                self.rotation = new_rotation
                self.last_action_was_rotation = True
                self.rotation_presses += 1
                self._manipulated()
                return True
        return False

    def set_soft_drop(self, active: bool) -> None:
        self.soft_drop = bool(active)

    def set_pose(self, rotation: int, x: int, y: int, as_rotation: bool = False) -> bool:
        """Teleport the active piece; used to execute a planned placement."""
        if not self.is_valid_position(x, y, rotation % 4):
            return False
        self.rotation = rotation % 4
        self.x = x
        self.y = y
        self.last_action_was_rotation = bool(as_rotation)
        return True

    def hold(self) -> bool:
        if not self.can_hold or self.current_kind is None:
            return False
        if self.hold_kind is None:
            self.hold_kind = self.current_kind
            if not self.spawn_piece():
                return False
        else:
            swapped, self.hold_kind = self.hold_kind, self.current_kind
            self._reset_piece_state(swapped)
            if not self.is_valid_position(self.x, self.y, self.rotation):
                self._top_out("hold swap into blocked spawn")
                return False
        self.can_hold = False
        return True

    # ---------- locking ----------
    def _count_finesse(self) -> None:
        used = self.taps + self.rotation_presses
        if used == 0:
            return
        shift = abs(self.x - (spawn_column(self.current_kind) or 0))
        needed = (0 if self.rotation == 0 else 1) + min(shift, 2)
        if used > needed:
            self.finesse_errors += 1

    def lock_piece(self) -> bool:
        """Lock the active piece where it is; ``False`` signals a top out."""
        if self.current_kind is None:
            return False
        outcome = resolve_lock(
            self.board, self.current_kind, self.rotation, self.x, self.y,
            pre_combo=self.combo, pre_b2b=self.b2b, rules=self.rules,
            spin_allowed=self.last_action_was_rotation,
        )
        if outcome is None:
            self._top_out("lock of %s outside the visible grid" % self.current_kind.name)
            return False

        self._count_finesse()
        self.pieces_placed += 1
        self.board = outcome.board
        self.lines_cleared += outcome.lines_cleared
        self.combo = outcome.post_combo
        self.b2b = outcome.post_b2b
        self.last_lock = outcome
        self.last_attack_sent = 0

        if outcome.lines_cleared > 0:
            attack = self.garbage.cancel(outcome.attack)
            self.attacks_sent += attack
            self.last_attack_sent = attack
            if attack > 0 and self.on_attack is not None:
                self.on_attack(attack)
        elif self.garbage.entries:
            self.board = self.garbage.apply(self.board, self.config.garbage_apply_cap)

        self.current_kind = None
        return True

    def hard_drop_and_spawn(self) -> bool:
        if self.current_kind is None:
            return not self.game_over and self.spawn_piece()
        landing = hard_drop_row(self.board, self.current_kind, self.rotation, self.x, self.y)
        if landing is not None:
            self.y = landing
        if not self.lock_piece():
            return False
        return self.spawn_piece()

    def receive_attack(self, lines: Any) -> int:
        return self.garbage.receive(lines)

    # ---------- time ----------
    def update(self, dt_ms: float) -> bool:
        """Advance gravity and lock delay; ``False`` exactly when the player tops out."""
        if self.game_over:
            return False
        if self.current_kind is None:
            return True
        dt_ms = max(0.0, float(dt_ms))

        was_touching = self.touching_ground
        self.touching_ground = not self.is_valid_position(self.x, self.y + 1, self.rotation)
        if self.touching_ground and not was_touching:
            self.lock_timer = 0.0
            self.gravity_timer = 0.0

        self.gravity_timer += dt_ms

        if self.touching_ground:
            self.lock_timer += dt_ms
            if self._lock_delay_expired():
                if not self.lock_piece():
                    return False
                return self.spawn_piece()
            return True

        interval = self.config.gravity_ms
        if self.soft_drop:
            if math.isinf(self.config.soft_drop_factor):
                while self.is_valid_position(self.x, self.y + 1, self.rotation):
                    self.y += 1
                self.gravity_timer = 0.0
                return True
            interval = self.config.gravity_ms / self.config.soft_drop_factor

        while self.gravity_timer >= interval:
            if not self.is_valid_position(self.x, self.y + 1, self.rotation):
                break
            self.y += 1
            self.gravity_timer -= interval
        return True

    def step(self, action: Action) -> Tuple[np.ndarray, int, bool, dict]:
        if self.game_over:
            return self.get_state(), 0, True, {}

        alive = True
        self.last_attack_sent = 0
        if action == Action.LEFT:
            self.move(-1)
        elif action == Action.RIGHT:
            self.move(1)
        elif action == Action.ROTATE_CW:
            self.rotate("cw")
        elif action == Action.ROTATE_CCW:
            self.rotate("ccw")
        elif action == Action.ROTATE_180:
            self.rotate("180")
        elif action == Action.SOFT_DROP:
            if self.is_valid_position(self.x, self.y + 1, self.rotation):
                self.y += 1
            else:
                alive = self.lock_piece() and self.spawn_piece()
        elif action == Action.HARD_DROP:
            alive = self.hard_drop_and_spawn()
        elif action == Action.HOLD:
            self.hold()
        elif action == Action.NONE:
            pass

        info = {
            "pieces_placed": self.pieces_placed,
            "lines_cleared": self.lines_cleared,
            "attacks_sent": self.attacks_sent,
        }
        return self.get_state(), self.last_attack_sent, not alive or self.game_over, info

    # ---------- synchronization ----------
    def snapshot(self) -> Dict[str, Any]:
        version, internal, gauss = self.rng.getstate()
        g_version, g_internal, g_gauss = self.garbage_rng.getstate()
        return {
            "board": [[cell_marker(int(v)) for v in row] for row in self.board],
            "current_piece": _kind_name(self.current_kind),
            "x": self.x,
            "y": self.y,
            "rotation": self.rotation,
            "hold_piece": _kind_name(self.hold_kind),
            "can_hold": self.can_hold,
            "queue": [k.name for k in self.queue],
            "bag": [k.name for k in self.bag.bag],
            "pieces_placed": self.pieces_placed,
            "attacks_sent": self.attacks_sent,
            "lines_cleared": self.lines_cleared,
            "finesse_errors": self.finesse_errors,
            "combo": self.combo,
            "b2b": self.b2b,
            "pending_garbage": self.garbage.to_list(),
            "garbage_hole": self.garbage.hole,
            "garbage_velocity": self.garbage.velocity,
            "rng_state": [version, list(internal), gauss],
            "garbage_rng_state": [g_version, list(g_internal), g_gauss],
        }

    def restore(self, payload: Mapping[str, Any]) -> None:
        """Load a snapshot, clamping anything out of range instead of rejecting it."""
        if not isinstance(payload, Mapping):
            logger.warning("ignoring snapshot of type %s", type(payload).__name__)
            return
        width, height = self.config.width, self.config.height

        board = new_board(width, height)
        rows = payload.get("board")
        if isinstance(rows, (list, tuple)):
            rows = list(rows)[-height:]
            offset = height - len(rows)
            for r, row in enumerate(rows):
                if not isinstance(row, (list, tuple)):
                    continue
                for c, marker in enumerate(list(row)[:width]):
                    board[offset + r, c] = marker_value(marker)
        self.board = board

        kind = parse_kind(payload.get("current_piece"))
        if kind is not None:
            self._reset_piece_state(kind)
            self.rotation = clamp_int(payload.get("rotation"), 0, 3)
            self.x = clamp_int(payload.get("x"), -3, width, default=spawn_column(kind) or 0)
            self.y = clamp_int(payload.get("y"), self.config.spawn_y - 2, height - 1,
                               default=self.config.spawn_y)
        else:
            self.current_kind = None

        self.hold_kind = parse_kind(payload.get("hold_piece"))
        self.can_hold = bool(payload.get("can_hold", True))
        queue = [parse_kind(k) for k in _sequence(payload.get("queue"))]
        self.queue = [k for k in queue if k is not None]
        bag = [parse_kind(k) for k in _sequence(payload.get("bag"))]
        self.bag.bag = [k for k in bag if k is not None]

        self.pieces_placed = clamp_int(payload.get("pieces_placed"), 0, 10 ** 9)
        self.attacks_sent = clamp_int(payload.get("attacks_sent"), 0, 10 ** 9)
        self.lines_cleared = clamp_int(payload.get("lines_cleared"), 0, 10 ** 9)
        self.finesse_errors = clamp_int(payload.get("finesse_errors"), 0, 10 ** 9)
        self.combo = clamp_int(payload.get("combo"), -1, 10 ** 6, default=-1)
        self.b2b = clamp_int(payload.get("b2b"), 0, 10 ** 6)

        self.garbage.load(_sequence(payload.get("pending_garbage")))
        self.garbage.hole = clamp_int(payload.get("garbage_hole"), 0, width - 1, default=self.garbage.hole)
        self.garbage.velocity = clamp_int(payload.get("garbage_velocity"), -1, 1)
        self._restore_rng(self.rng, payload.get("rng_state"))
        self._restore_rng(self.garbage_rng, payload.get("garbage_rng_state"))

        self.bag.fill(self.queue, self.config.queue_size)
        self.game_over = False
        if self.current_kind is None:
            self.spawn_piece()

    @staticmethod
    def _restore_rng(rng: random.Random, state: Any) -> None:
        if state is None:
            return
        try:
            version, internal, gauss = state
            rng.setstate((int(version), tuple(int(v) for v in internal), gauss))
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning("ignoring malformed generator state: %s", exc)
