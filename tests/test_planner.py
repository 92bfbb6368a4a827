import random
from dataclasses import dataclass, field, replace
from typing import List, Optional

import numpy as np
import pytest

from stack_duel.bot.analysis import analyze_board
from stack_duel.bot.candidates import generate_candidates
from stack_duel.bot.planner import (
    MAX_MISTAKE_PROBABILITY,
    NO_REPLY_PENALTY,
    OutcomeTag,
    Planner,
    PlannerConfig,
    RecentPatternLog,
    derive_future,
    mistake_probability,
    outcome_tag,
    pattern_bias,
)
from stack_duel.bot.protocols import GameView
from stack_duel.bot.scoring import ScoringContext
from stack_duel.bot.strategy import Strategy
from stack_duel.game.grid import new_board
from stack_duel.game.pieces import GARBAGE, TetrominoType


@dataclass
class FakeView:
    board: np.ndarray = field(default_factory=new_board)
    current_kind: Optional[str] = "I"
    rotation: int = 0
    x: int = 3
    y: int = -1
    hold_kind: Optional[str] = None
    can_hold: bool = True
    queue: List[str] = field(default_factory=lambda: ["O", "S", "Z", "J", "L", "O"])
    combo: int = -1
    b2b: int = 0
    pieces_placed: int = 20
    pending: int = 0

    def pending_garbage_total(self) -> int:
        return self.pending


def tetris_board():
    board = new_board()
    board[16:20, :9] = GARBAGE
    board[15, 0] = GARBAGE
    return board


def tsd_board():
    board = new_board()
    board[19, :] = GARBAGE
    board[19, 4] = 0
    board[18, :] = GARBAGE
    board[18, 3:6] = 0
    board[17, 3] = GARBAGE
    return board


def tetris_heavy_log():
    log = RecentPatternLog(16)
    for tag in [OutcomeTag.TETRIS] * 4 + [OutcomeTag.NONE] * 12:
        log.record(tag)
    return log


def test_pattern_bias_rotates_away_from_tetrises():
    log = tetris_heavy_log()
    tetris = next(c for c in generate_candidates(tetris_board(), "I") if c.is_tetris)
    spin = next(c for c in generate_candidates(tsd_board(), "T") if c.is_spin)
    plain = next(c for c in generate_candidates(new_board(), "L") if c.lines_cleared == 0)
    slot_builder = replace(plain, delta=replace(plain.delta, spin_slots=1))

    for c in (tetris, spin, slot_builder):
        c.total_score = 100.0
    assert tetris.total_score + pattern_bias(tetris, log, 0.5) < 100.0
    assert spin.total_score + pattern_bias(spin, log, 0.5) > 100.0
    assert slot_builder.total_score + pattern_bias(slot_builder, log, 0.5) > 100.0


def test_pattern_bias_off_under_danger():
    log = tetris_heavy_log()
    tetris = next(c for c in generate_candidates(tetris_board(), "I") if c.is_tetris)
    assert pattern_bias(tetris, log, 1.3) == 0.0
    assert pattern_bias(tetris, RecentPatternLog(), 0.1) == 0.0


def test_pattern_log_window():
    log = RecentPatternLog(16)
    for _ in range(20):
        log.record(OutcomeTag.SINGLE)
    assert len(log) == 16
    assert log.count(OutcomeTag.SINGLE) == 16
    assert log.clears() == 16


def test_outcome_tags():
    spin = next(c for c in generate_candidates(tsd_board(), "T") if c.is_spin)
    tetris = next(c for c in generate_candidates(tetris_board(), "I") if c.is_tetris)
    assert outcome_tag(spin) == OutcomeTag.TSPIN
    assert outcome_tag(tetris) == OutcomeTag.TETRIS
    assert outcome_tag(generate_candidates(new_board(), "O")[0]) == OutcomeTag.NONE


def test_derive_future():
    queue = [TetrominoType.I, TetrominoType.O, TetrominoType.T]
    assert derive_future(False, False, queue) == (TetrominoType.I, [TetrominoType.O, TetrominoType.T])
    assert derive_future(True, False, queue) == (TetrominoType.O, [TetrominoType.T])
    assert derive_future(True, True, queue) == (TetrominoType.I, [TetrominoType.O, TetrominoType.T])
    assert derive_future(False, False, []) == (None, [])


def test_mistake_probability():
    assert mistake_probability(0.5, 0.5, 0.1, 0, top_is_clean=True) == 0.0
    assert mistake_probability(1.0, 0.0, 0.0, 0, top_is_clean=False) == MAX_MISTAKE_PROBABILITY
    calm = mistake_probability(0.15, 0.2, 0.0, 0, top_is_clean=False)
    eager = mistake_probability(0.15, 0.9, 0.0, 0, top_is_clean=False)
    pressed = mistake_probability(0.15, 0.2, 2.0, 6, top_is_clean=False)
    assert eager < calm
    assert pressed < calm


def test_config_clamping():
    cfg = PlannerConfig(aggression=5, mistake_chance=-1, deep_k=50, branch=9, opener_plan="???")
    assert cfg.aggression == 1.0
    assert cfg.mistake_chance == 0.0
    assert cfg.deep_k == 10
    assert cfg.branch == 4
    assert cfg.opener_plan == "tspin_pressure"


def test_no_active_piece_means_no_plan():
    planner = Planner(rng=random.Random(0))
    assert planner.plan(FakeView(current_kind=None)) is None
    assert planner.plan(FakeView(current_kind="?")) is None


def test_fake_view_satisfies_protocol():
    assert isinstance(FakeView(), GameView)


def test_planner_takes_the_tetris():
    planner = Planner(PlannerConfig(mistake_chance=0.0, top_k=6, deep_k=2), rng=random.Random(3))
    plan = planner.plan(FakeView(board=tetris_board()))
    assert plan is not None
    assert plan.candidate.is_tetris
    assert not plan.use_hold
    assert plan.kind == TetrominoType.I
    assert plan.rotation in (1, 3)
    assert len(planner.history) == 1
    assert planner.history.entries[-1] == OutcomeTag.TETRIS


def test_planner_never_touches_the_view_board():
    view = FakeView(board=tetris_board(), current_kind="T")
    before = view.board.copy()
    Planner(PlannerConfig(top_k=3, deep_k=1), rng=random.Random(1)).plan(view)
    assert np.array_equal(view.board, before)


def test_plan_marks_turned_t_as_rotation():
    view = FakeView(board=tsd_board(), current_kind="T", queue=["T", "O", "S", "Z", "J", "L"], can_hold=False)
    plan = Planner(PlannerConfig(mistake_chance=0.0, top_k=4, deep_k=1), rng=random.Random(2)).plan(view)
    assert plan.candidate.is_spin
    assert plan.treat_as_rotation


def shaped(ident, *, new_holes=0, new_cavities=0, bump_increase=0, holes=0, bumpiness=0,
           lines=0, spin=False, attack=0, score=0.0):
    base = generate_candidates(new_board(), "L")[0]
    return replace(
        base, x=ident, lines_cleared=lines, is_spin=spin, attack=attack, total_score=score,
        analysis=replace(base.analysis, holes=holes, bumpiness=bumpiness),
        delta=replace(base.delta, holes=new_holes, cavities=new_cavities, bumpiness=bump_increase),
    )


def ids(candidates):
    return [c.x for c in candidates]


def calm_filter(pool, strategy=Strategy.B2B_MIX):
    return Planner(rng=random.Random(0))._prefer_clean(pool, 0.1, 0, strategy)


def test_prefer_clean_keeps_gentle_clean_placements():
    pool = [shaped(0, new_holes=1), shaped(1, bump_increase=2), shaped(2, bump_increase=9)]
    assert ids(calm_filter(pool)) == [1]


def test_prefer_clean_falls_back_to_rough_clean_placements():
    pool = [shaped(0, bump_increase=9), shaped(1, bump_increase=12), shaped(2, new_cavities=1)]
    assert ids(calm_filter(pool)) == [0, 1]


def test_prefer_clean_narrows_to_fewest_holes_then_flattest():
    pool = [shaped(0, holes=2), shaped(1, holes=3), shaped(2, holes=5)]
    assert ids(calm_filter(pool)) == [0, 1]
    pool = [shaped(0, bumpiness=4), shaped(1, bumpiness=10), shaped(2, bumpiness=11)]
    assert ids(calm_filter(pool)) == [0, 1]


def test_prefer_clean_prefers_placements_fitting_the_strategy():
    assert ids(calm_filter([shaped(0), shaped(1, spin=True)], Strategy.SPIN_BUILD)) == [1]
    assert ids(calm_filter([shaped(0), shaped(2)], Strategy.SPIN_BUILD)) == [0, 2]


def test_prefer_clean_without_clean_options():
    pool = [
        shaped(0, new_holes=1, lines=2),
        shaped(1, new_cavities=1, lines=4, attack=4),
        shaped(2, new_holes=2),
    ]
    assert ids(calm_filter(pool)) == [1]
    pool = [shaped(0, new_holes=1), shaped(1, new_cavities=1, lines=1)]
    assert ids(calm_filter(pool)) == [0, 1]


def test_prefer_clean_skipped_under_pressure():
    pool = [shaped(0, new_holes=1), shaped(1)]
    planner = Planner(rng=random.Random(0))
    assert ids(planner._prefer_clean(pool, 1.0, 0, Strategy.B2B_MIX)) == [0, 1]
    assert ids(planner._prefer_clean(pool, 0.1, 3, Strategy.B2B_MIX)) == [0, 1]


class AlwaysErrRng:
    """Always injects a mistake and picks the last allowed rank."""

    def __init__(self):
        self.widths = []

    def random(self):
        return 0.0

    def randrange(self, n):
        self.widths.append(n)
        return n - 1


def test_mistakes_stay_within_top_two_under_pressure():
    rng = AlwaysErrRng()
    planner = Planner(PlannerConfig(mistake_chance=1.0, aggression=0.0), rng=rng)
    ranked = [shaped(i, new_holes=1) for i in range(5)]
    assert planner._pick(ranked, 2.5, 0).x == 1
    assert rng.widths == [2]


def test_mistakes_reach_the_top_three_when_calm():
    rng = AlwaysErrRng()
    planner = Planner(PlannerConfig(mistake_chance=1.0, aggression=0.0), rng=rng)
    ranked = [shaped(i, new_holes=1) for i in range(5)]
    assert planner._pick(ranked, 0.0, 0).x == 2
    assert rng.widths == [3]


def test_clean_top_is_never_swapped_when_calm():
    rng = AlwaysErrRng()
    planner = Planner(PlannerConfig(mistake_chance=1.0, aggression=0.0), rng=rng)
    ranked = [shaped(i) for i in range(5)]
    assert planner._pick(ranked, 0.0, 0).x == 0
    assert rng.widths == []


class LookaheadCounter(Planner):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.deep_flags = []

    def _lookahead(self, cand, queue, ctx, deep):
        self.deep_flags.append(deep)
        return 500.0


def test_only_top_candidates_get_lookahead():
    planner = LookaheadCounter(PlannerConfig(mistake_chance=0.0, top_k=5, deep_k=2),
                               rng=random.Random(0))
    plan = planner.plan(FakeView(can_hold=False))
    assert planner.deep_flags == [True, True, False, False, False]
    assert plan.candidate.total_score > 400.0


class DeadEndPlanner(Planner):
    """Reports no placement for one kind."""

    def __init__(self, blocked, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.blocked = blocked

    def _replies(self, parent, kind, ctx):
        if kind == self.blocked:
            return []
        return super()._replies(parent, kind, ctx)


def first_placement(planner, kind):
    board = new_board()
    before = analyze_board(board)
    ctx = ScoringContext(before=before)
    cand = planner._candidates(board, kind, ctx, before, use_hold=False, hold_had_piece=False)[0]
    return cand, ctx


def test_unplaceable_next_piece_costs_the_no_reply_penalty():
    planner = DeadEndPlanner(TetrominoType.S, rng=random.Random(0))
    cand, ctx = first_placement(planner, TetrominoType.O)
    queue = [TetrominoType.S, TetrominoType.Z]
    assert planner._lookahead(cand, queue, ctx, deep=False) == NO_REPLY_PENALTY
    assert planner._lookahead(cand, queue, ctx, deep=True) == NO_REPLY_PENALTY


def test_third_ply_folds_into_lookahead():
    planner = Planner(PlannerConfig(branch=1), rng=random.Random(0))
    cand, ctx = first_placement(planner, TetrominoType.O)
    queue = [TetrominoType.S, TetrominoType.Z]
    shallow = planner._lookahead(cand, queue, ctx, deep=False)
    deep = planner._lookahead(cand, queue, ctx, deep=True)

    reply = planner._replies(cand, TetrominoType.S, ctx)[0]
    third = planner._replies(reply, TetrominoType.Z, planner._child_context(ctx, cand))[0]
    assert third.base_score != 0.0
    assert deep == pytest.approx(shallow + planner.config.third_ply_weight * third.base_score)


def test_dead_end_third_ply_lowers_the_value():
    planner = DeadEndPlanner(TetrominoType.Z, PlannerConfig(branch=1), rng=random.Random(0))
    cand, ctx = first_placement(planner, TetrominoType.O)
    queue = [TetrominoType.S, TetrominoType.Z]
    shallow = planner._lookahead(cand, queue, ctx, deep=False)
    deep = planner._lookahead(cand, queue, ctx, deep=True)
    assert deep == pytest.approx(shallow + planner.config.third_ply_weight * NO_REPLY_PENALTY)
    assert deep < shallow
