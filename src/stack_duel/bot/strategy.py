from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from stack_duel.game.pieces import KindLike, TetrominoType, parse_kind

LOOKAHEAD_WINDOW = 5
OPENING_PIECES = 12


class Strategy(str, Enum):
    OPENER = "opener"
    SPIN_BUILD = "spin_build"
    SPIN_CONVERT = "spin_convert"
    DOWNSTACK = "downstack"
    B2B_MIX = "b2b_mix"

    @property
    def spin_oriented(self) -> bool:
        return self in (Strategy.SPIN_BUILD, Strategy.SPIN_CONVERT)


@dataclass
class StrategyInputs:
    danger: float
    pending_garbage: int
    holes: int
    combo: int
    pieces_placed: int
    near_full_rows: int
    spin_slots: int
    current: KindLike
    queue: Sequence[KindLike]
    edge_well_depth: int = 0
    edge_well_holes: int = 0


def kind_imminent(kind: TetrominoType, current: KindLike, queue: Sequence[KindLike],
                  window: int = LOOKAHEAD_WINDOW) -> bool:
    if parse_kind(current) == kind:
        return True
    return any(parse_kind(k) == kind for k in list(queue)[:window])


def select_strategy(inputs: StrategyInputs, previous: Optional[Strategy] = None) -> Strategy:
    low_danger = inputs.danger < 0.6

    # a clean deep edge well with nothing to spin into: keep building around it
    if (inputs.edge_well_depth >= 4 and inputs.edge_well_holes == 0
            and inputs.spin_slots == 0 and low_danger):
        return Strategy.SPIN_BUILD

    if inputs.danger > 1.35 or inputs.pending_garbage >= 5 or inputs.holes >= 4:
        return Strategy.DOWNSTACK
    if inputs.combo >= 0 and (inputs.near_full_rows > 0 or inputs.holes > 0 or inputs.pending_garbage > 0):
        return Strategy.DOWNSTACK
    if inputs.pieces_placed <= OPENING_PIECES:
        return Strategy.OPENER

    t_soon = kind_imminent(TetrominoType.T, inputs.current, inputs.queue)
    i_soon = kind_imminent(TetrominoType.I, inputs.current, inputs.queue)
    if inputs.spin_slots > 0 and t_soon:
        chosen = Strategy.SPIN_CONVERT
    elif (inputs.spin_slots == 0 and t_soon) or not i_soon:
        chosen = Strategy.SPIN_BUILD
    else:
        chosen = Strategy.B2B_MIX

    if (chosen == Strategy.B2B_MIX and previous is not None and previous.spin_oriented
            and low_danger and inputs.holes <= 2):
        return previous
    return chosen
