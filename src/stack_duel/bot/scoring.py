from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from stack_duel.game.pieces import TetrominoType

from .analysis import Analysis
from .candidates import Candidate
from .strategy import Strategy

MAX_DANGER = 2.5

# (rows, penalty) pairs; every threshold reached adds its penalty
HEIGHT_VALVES = ((16, 60.0), (17, 120.0), (18, 220.0), (19, 400.0))

SPIN_LINE_BONUS = {1: 6.0, 2: 16.0, 3: 22.0}

OPENER_PLANS = ("safe_stack", "tspin_pressure", "tetris_spike")


def danger_level(max_height: int, holes: int, pending_garbage: int) -> float:
    """How close the stack is to topping out, in ``[0, 2.5]``."""
    raw = (max(0, max_height - 9) / 10.0
           + max(0, holes - 1) / 6.0
           + max(0, pending_garbage) / 12.0)
    return max(0.0, min(MAX_DANGER, raw))


@dataclass
class ScoringContext:
    aggression: float = 0.65
    danger: float = 0.0
    pending_garbage: int = 0
    pre_combo: int = -1
    pre_b2b: int = 0
    strategy: Strategy = Strategy.B2B_MIX
    pieces_placed: int = 0
    near_full_rows: int = 0
    preferred_well: Optional[int] = None
    before: Optional[Analysis] = None
    attack_bias: float = 1.0
    survival_bias: float = 1.0
    opener_plan: str = "tspin_pressure"
    opening_window: int = 12


def opener_bonus(c: Candidate, ctx: ScoringContext) -> float:
    """Keep the preferred well column low while the opening window lasts."""
    if ctx.preferred_well is None or ctx.pieces_placed >= ctx.opening_window:
        return 0.0
    heights = c.analysis.heights
    well = max(0, min(len(heights) - 1, ctx.preferred_well))
    others = [h for col, h in enumerate(heights) if col != well]
    gap = sum(others) / max(1, len(others)) - heights[well]

    bonus = 0.0
    if ctx.opener_plan == "tetris_spike":
        bonus += gap * 2.8
        if c.is_tetris:
            bonus += 58.0
        if c.attack >= 4:
            bonus += 18.0
        if c.is_spin:
            bonus += 8.0
    elif ctx.opener_plan == "tspin_pressure":
        bonus += gap * 1.2 + min(c.analysis.spin_slots, 6) * 5.0
        if c.is_spin:
            bonus += 42.0
        if c.attack >= 2:
            bonus += 10.0
    else:
        bonus += gap * 1.3 - c.analysis.holes * 1.5
        if c.lines_cleared >= 2:
            bonus += 10.0
    return bonus


def _strategy_adjustment(c: Candidate, ctx: ScoringContext) -> float:
    a = c.analysis
    strategy = ctx.strategy
    adj = 0.0
    if strategy == Strategy.DOWNSTACK:
        if c.lines_cleared > 0:
            adj += 8.0 + 4.0 * max(0, c.post_combo) + min(ctx.near_full_rows, 4) * 2.0
        if c.delta.holes < 0:
            adj += -c.delta.holes * 14.0
        adj -= max(0, c.delta.max_height) * 6.0
    elif strategy == Strategy.SPIN_BUILD:
        if c.delta.spin_slots > 0:
            adj += c.delta.spin_slots * 10.0
        if 0 < c.lines_cleared < 4 and not c.is_spin:
            adj -= 6.0
    elif strategy == Strategy.SPIN_CONVERT:
        if c.is_spin:
            adj += 30.0
        elif c.kind == TetrominoType.T and c.delta.spin_slots < 0:
            # T dropped on its own slot without spinning
            adj -= 12.0
    elif strategy == Strategy.OPENER:
        if 0 < c.lines_cleared < 4 and not c.is_spin:
            adj -= 8.0
    elif strategy == Strategy.B2B_MIX:
        if c.is_tetris or c.is_spin:
            adj += 12.0
        elif c.lines_cleared > 0 and ctx.pre_b2b > 0:
            adj -= 8.0
    if strategy.spin_oriented and a.spin_slots > 0 and c.kind != TetrominoType.T:
        adj += 3.0
    return adj


def score_candidate(c: Candidate, ctx: ScoringContext) -> float:
    """First-pass value of one placement; higher is better."""
    aggr = ctx.aggression
    danger = ctx.danger
    sb = ctx.survival_bias
    a = c.analysis
    low_danger = danger < 0.8

    attack_w = (20.0 + aggr * 28.0 + danger * 10.0) * ctx.attack_bias
    clear_w = 3.0 + aggr * 5.0
    spin_w = (12.0 + aggr * 18.0) * ctx.attack_bias
    b2b_w = 4.0 + aggr * 8.0
    combo_w = 2.0 + aggr * 4.0
    tetris_w = 14.0 + aggr * 10.0

    score = c.attack * attack_w + c.lines_cleared * clear_w
    if c.is_spin:
        score += spin_w + SPIN_LINE_BONUS.get(c.lines_cleared, 0.0)
    if c.b2b_bonus:
        score += b2b_w
    elif ctx.pre_b2b > 0 and c.lines_cleared > 0 and c.post_b2b == 0:
        score -= b2b_w * 0.75
    if c.post_combo > 0:
        score += min(6, c.post_combo) * combo_w
    if c.is_all_clear:
        score += 90.0
    if c.is_tetris:
        score += tetris_w

    if low_danger:
        if a.edge_well_depth >= 3 and a.edge_well_holes == 0:
            score += min(a.edge_well_depth, 8) * 1.2
        score += min(a.deepest_well, 6) * 0.5
    score += min(a.spin_slots, 3) * 2.5 * (1.0 - danger / MAX_DANGER)
    if c.delta.spin_slots > 0:
        score += c.delta.spin_slots * 4.0

    if c.lines_cleared > 0 and ctx.pending_garbage > 0:
        cancelled = min(ctx.pending_garbage, c.attack)
        score += cancelled * (6.0 + danger * 4.0)
    elif ctx.pending_garbage > 0:
        score -= 24.0

    score -= a.holes * (10.0 - aggr * 2.0 + danger * 4.0) * sb
    score -= a.hole_depth * (1.1 + danger * 0.25) * sb
    score -= a.cavities * (4.0 + danger) * sb
    score -= a.aggregate_height * (0.35 + (1.0 - aggr) * 0.16 + danger * 0.2) * sb
    score -= a.max_height * (0.9 + danger * 0.85) * sb
    score -= a.bumpiness * (0.24 + danger * 0.12) * sb
    score -= (a.row_transitions * 0.3 + a.col_transitions * 0.25) * sb
    score -= a.well_cells * 0.08 * sb
    score -= a.edge_well_holes * 3.0 * sb
    score -= a.center_well_penalty * 1.5 * sb

    # fresh damage costs far more than damage already on the board
    score -= c.new_holes * (28.0 + danger * 8.0) * sb
    score -= c.new_cavities * 18.0 * sb
    score -= c.new_hole_depth * 3.0 * sb

    score += _strategy_adjustment(c, ctx)

    for rows, penalty in HEIGHT_VALVES:
        if a.max_height >= rows:
            score -= penalty * (1.0 + danger)

    score += opener_bonus(c, ctx)
    return score
