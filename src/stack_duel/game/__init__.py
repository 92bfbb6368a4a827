"""Rules engine for stack_duel.

Exports the core engine and supporting types:
- TetrominoType: piece kinds, SRS shapes and kicks
- AttackRules: attack, back-to-back and combo tables
- GarbageQueue: pending incoming garbage with the seeded hole walk
- BagRandomizer: 7-bag piece sequencing
- DuelGame: one participant's live board, hold, queue and counters
"""

from .pieces import TetrominoType
from .rules import AttackRules, GarbageEntry, LockOutcome
from .garbage import GarbageQueue
from .randomizer import BagRandomizer
from .core import Action, DuelGame, GameConfig

__all__ = [
    "TetrominoType",
    "AttackRules",
    "GarbageEntry",
    "LockOutcome",
    "GarbageQueue",
    "BagRandomizer",
    "Action",
    "DuelGame",
    "GameConfig",
]
