from __future__ import annotations

import logging
import random
from typing import Any, Iterable, List, Mapping

from .grid import Board, clone_board, push_garbage_rows
from .rules import GarbageEntry, cancel_garbage

logger = logging.getLogger(__name__)

MAX_ENTRY_LINES = 10

JUMP_CHANCE = 0.01
TURN_CHANCE = 0.20
STOP_CHANCE = 0.08
DOUBLE_STEP_CHANCE = 0.25


def clamp_int(value: Any, low: int, high: int, default: int = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return max(low, min(high, number))


class GarbageQueue:
    """Pending incoming garbage with a seeded drifting hole column.

    The hole walks sideways with a persistent velocity so consecutive
    deliveries tend to line up, occasionally stopping, turning, double
    stepping, or jumping to a random column. Harder attacks make the walk
    noisier.
    """

    def __init__(self, width: int, rng: random.Random) -> None:
        self.width = int(width)
        self.rng = rng
        self.entries: List[GarbageEntry] = []
        self.hole = rng.randrange(self.width)
        self.velocity = 0

    def total(self) -> int:
        return sum(e.lines for e in self.entries)

    def next_hole(self, strength: int = 1) -> int:
        bonus = min(0.25, 0.03 * max(0, strength - 1))

        if self.rng.random() < JUMP_CHANCE + bonus * 0.25:
            self.hole = self.rng.randrange(self.width)
            self.velocity = 0
            return self.hole

        if self.velocity == 0:
            self.velocity = -1 if self.rng.random() < 0.5 else 1
        elif self.rng.random() < STOP_CHANCE * (1 - bonus):
            self.velocity = 0
        elif self.rng.random() < TURN_CHANCE * (1 + bonus):
            self.velocity *= -1

        if self.velocity == 0:
            self.velocity = -1 if self.rng.random() < 0.5 else 1

        step = self.velocity
        if self.rng.random() < DOUBLE_STEP_CHANCE + bonus:
            step *= 2

        nxt = self.hole + step
        if nxt < 0:
            nxt = 0
            self.velocity = 1
        elif nxt >= self.width:
            nxt = self.width - 1
            self.velocity = -1

        self.hole = nxt
        return self.hole

    def receive(self, lines: Any) -> int:
        safe = clamp_int(lines, 0, MAX_ENTRY_LINES)
        if safe == 0:
            return 0
        hole = self.next_hole(safe)
        self.entries.append(GarbageEntry(lines=safe, hole_column=hole))
        logger.debug("queued %d garbage lines, hole at column %d", safe, hole)
        return safe

    def cancel(self, attack: int) -> int:
        """Offset outgoing ``attack`` against pending lines; returns what is left to send."""
        if not self.entries or attack <= 0:
            return attack
        before = self.total()
        self.entries, remaining = cancel_garbage(self.entries, attack)
        logger.debug("cancelled %d garbage lines", before - self.total())
        return remaining

    def apply(self, board: Board, cap: int) -> Board:
        out = clone_board(board)
        remaining_cap = max(0, int(cap))
        while self.entries and remaining_cap > 0:
            head = self.entries[0]
            take = min(head.lines, remaining_cap)
            out = push_garbage_rows(out, take, head.hole_column)
            remaining_cap -= take
            if take >= head.lines:
                self.entries.pop(0)
            else:
                self.entries[0] = GarbageEntry(lines=head.lines - take, hole_column=head.hole_column)
        logger.debug("applied garbage, %d lines still pending", self.total())
        return out

    def to_list(self) -> List[dict]:
        return [{"lines": e.lines, "hole_column": e.hole_column} for e in self.entries]

    def load(self, entries: Iterable[Mapping[str, Any]]) -> None:
        loaded: List[GarbageEntry] = []
        if not isinstance(entries, (list, tuple)):
            entries = []
        for raw in entries:
            if not isinstance(raw, Mapping):
                continue
            lines = clamp_int(raw.get("lines"), 0, MAX_ENTRY_LINES)
            hole = raw.get("hole_column", raw.get("holeColumn", raw.get("hole")))
            hole = clamp_int(hole, 0, self.width - 1)
            if lines > 0:
                loaded.append(GarbageEntry(lines=lines, hole_column=hole))
        self.entries = loaded
