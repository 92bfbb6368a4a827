from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from stack_duel.game.grid import Board, drop_landing_rows
from stack_duel.game.pieces import KindLike, TetrominoType, box_width, parse_kind
from stack_duel.game.rules import DEFAULT_RULES, AttackRules, resolve_lock

from .analysis import Analysis, AnalysisDelta, analyze_board

# anchors reach this far past either wall so kicked overhangs stay reachable
REACH_MARGIN = 2


@dataclass
class Candidate:
    kind: TetrominoType
    use_hold: bool
    hold_had_piece: bool
    rotation: int
    x: int
    y: int
    board: Board
    lines_cleared: int
    is_spin: bool
    is_all_clear: bool
    attack: int
    b2b_bonus: bool
    post_combo: int
    post_b2b: int
    analysis: Analysis
    delta: AnalysisDelta
    base_score: float = 0.0
    total_score: float = 0.0

    @property
    def is_tetris(self) -> bool:
        return self.lines_cleared == 4

    @property
    def new_holes(self) -> int:
        return max(0, self.delta.holes)

    @property
    def new_cavities(self) -> int:
        return max(0, self.delta.cavities)

    @property
    def new_hole_depth(self) -> int:
        return max(0, self.delta.hole_depth)

    @property
    def treat_as_rotation(self) -> bool:
        # a T that ends turned (or in a spin pocket) must reach its pose by rotating
        return self.kind == TetrominoType.T and (self.rotation != 0 or self.is_spin)


def generate_candidates(board: Board, kind: KindLike, *, use_hold: bool = False,
                        hold_had_piece: bool = False, pre_combo: int = -1, pre_b2b: int = 0,
                        before: Optional[Analysis] = None,
                        score: Optional[Callable[[Candidate], float]] = None,
                        rules: AttackRules = DEFAULT_RULES) -> List[Candidate]:
    """Every resting placement of ``kind`` on ``board``, best first-pass score first.

    Each candidate owns its resulting board. Unknown kinds produce no candidates.
    """
    parsed = parse_kind(kind)
    if parsed is None:
        return []
    if before is None:
        before = analyze_board(board)
    width = board.shape[1]
    span = box_width(parsed)

    out: List[Candidate] = []
    for rotation in range(4):
        for x in range(-REACH_MARGIN, width - span + REACH_MARGIN + 1):
            for y in drop_landing_rows(board, parsed, rotation, x):
                outcome = resolve_lock(board, parsed, rotation, x, y, pre_combo, pre_b2b, rules)
                if outcome is None:
                    continue
                after = analyze_board(outcome.board)
                out.append(Candidate(
                    kind=parsed,
                    use_hold=use_hold,
                    hold_had_piece=hold_had_piece,
                    rotation=rotation,
                    x=x,
                    y=y,
                    board=outcome.board,
                    lines_cleared=outcome.lines_cleared,
                    is_spin=outcome.is_spin,
                    is_all_clear=outcome.is_all_clear,
                    attack=outcome.attack,
                    b2b_bonus=outcome.b2b_bonus,
                    post_combo=outcome.post_combo,
                    post_b2b=outcome.post_b2b,
                    analysis=after,
                    delta=AnalysisDelta.between(before, after),
                ))

    if score is not None:
        for cand in out:
            cand.base_score = score(cand)
            cand.total_score = cand.base_score
        out.sort(key=lambda c: c.base_score, reverse=True)
    return out
