from __future__ import annotations

import random
from typing import List

from .pieces import TetrominoType

BAG_ORDER = (
    TetrominoType.I,
    TetrominoType.O,
    TetrominoType.T,
    TetrominoType.S,
    TetrominoType.Z,
    TetrominoType.J,
    TetrominoType.L,
)


class BagRandomizer:
    """7-bag: every kind once per bag, shuffled by the shared seeded generator."""

    def __init__(self, rng: random.Random) -> None:
        self.rng = rng
        self.bag: List[TetrominoType] = []

    def next_piece(self) -> TetrominoType:
        if not self.bag:
            self.bag = list(BAG_ORDER)
            self.rng.shuffle(self.bag)
        return self.bag.pop()

    def fill(self, queue: List[TetrominoType], size: int) -> None:
        while len(queue) < size:
            queue.append(self.next_piece())
