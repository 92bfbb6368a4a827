from __future__ import annotations

import logging
import random
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Deque, List, Optional, Sequence, Tuple

from stack_duel.game.grid import clone_board
from stack_duel.game.pieces import KindLike, TetrominoType, parse_kind
from stack_duel.game.rules import DEFAULT_RULES, AttackRules

from .analysis import analyze_board
from .candidates import Candidate, generate_candidates
from .protocols import GameView
from .scoring import MAX_DANGER, OPENER_PLANS, ScoringContext, danger_level, score_candidate
from .strategy import Strategy, StrategyInputs, select_strategy

logger = logging.getLogger(__name__)

NO_REPLY_PENALTY = -240.0
LOW_DANGER = 0.8
CLEAN_PENDING_LIMIT = 2
GENTLE_BUMP_INCREASE = 4
MAX_MISTAKE_PROBABILITY = 0.2


@dataclass
class PlannerConfig:
    aggression: float = 0.65
    mistake_chance: float = 0.08
    top_k: int = 28
    deep_k: int = 10
    branch: int = 4
    second_ply_weight: float = 0.66
    third_ply_weight: float = 0.35
    history: int = 16
    attack_bias: float = 1.0
    survival_bias: float = 1.0
    opener_plan: str = "tspin_pressure"
    opening_window: int = 12

    def __post_init__(self) -> None:
        self.aggression = max(0.0, min(1.0, float(self.aggression)))
        self.mistake_chance = max(0.0, min(1.0, float(self.mistake_chance)))
        self.top_k = max(1, int(self.top_k))
        self.deep_k = max(0, min(10, int(self.deep_k), self.top_k))
        self.branch = max(1, min(4, int(self.branch)))
        self.second_ply_weight = max(0.0, min(1.0, float(self.second_ply_weight)))
        self.third_ply_weight = max(0.0, min(self.second_ply_weight, float(self.third_ply_weight)))
        self.history = max(1, int(self.history))
        self.attack_bias = max(0.1, float(self.attack_bias))
        self.survival_bias = max(0.1, float(self.survival_bias))
        if self.opener_plan not in OPENER_PLANS:
            self.opener_plan = "tspin_pressure"
        self.opening_window = max(0, int(self.opening_window))


class OutcomeTag(str, Enum):
    NONE = "none"
    SINGLE = "single"
    DOUBLE = "double"
    TRIPLE = "triple"
    TETRIS = "tetris"
    TSPIN = "tspin"


_LINE_TAGS = {1: OutcomeTag.SINGLE, 2: OutcomeTag.DOUBLE, 3: OutcomeTag.TRIPLE, 4: OutcomeTag.TETRIS}


def outcome_tag(candidate: Candidate) -> OutcomeTag:
    if candidate.is_spin:
        return OutcomeTag.TSPIN
    return _LINE_TAGS.get(candidate.lines_cleared, OutcomeTag.NONE)


class RecentPatternLog:
    """Rolling window of the last few chosen outcomes."""

    def __init__(self, size: int = 16) -> None:
        self.entries: Deque[OutcomeTag] = deque(maxlen=max(1, int(size)))

    def __len__(self) -> int:
        return len(self.entries)

    def record(self, tag: OutcomeTag) -> None:
        self.entries.append(tag)

    def count(self, tag: OutcomeTag) -> int:
        return sum(1 for t in self.entries if t == tag)

    def clears(self) -> int:
        return sum(1 for t in self.entries if t != OutcomeTag.NONE)


def pattern_bias(candidate: Candidate, log: RecentPatternLog, danger: float) -> float:
    """Nudge the choice away from repeating one kind of attack."""
    if danger >= 1.3 or len(log) == 0:
        return 0.0
    tetrises = log.count(OutcomeTag.TETRIS)
    spins = log.count(OutcomeTag.TSPIN)
    slot_gain = min(2, max(0, candidate.delta.spin_slots))
    bias = 0.0

    if tetrises >= 4 and tetrises > spins:
        if candidate.is_tetris:
            bias -= 35.0
        if candidate.is_spin:
            bias += 25.0
    if spins == 0 and len(log) >= 4:
        if candidate.is_spin:
            bias += 18.0
        if slot_gain:
            bias += 8.0 + 6.0 * slot_gain
    if len(log) >= 8 and log.clears() < 3 and candidate.attack > 0:
        bias += min(18.0, 6.0 * candidate.attack)
    return bias


def derive_future(use_hold: bool, hold_had_piece: bool,
                  queue: Sequence[TetrominoType]) -> Tuple[Optional[TetrominoType], List[TetrominoType]]:
    """Active piece and remaining queue once the first placement is done."""
    q = list(queue)
    if use_hold and not hold_had_piece:
        # holding into an empty slot consumes the queue head as the placed piece
        return (q[1] if len(q) > 1 else None), q[2:]
    return (q[0] if q else None), q[1:]


def pressure_level(danger: float, pending_garbage: int) -> float:
    return max(0.0, min(1.0, danger / MAX_DANGER + max(0, pending_garbage) / 20.0))


def is_clean(candidate: Candidate) -> bool:
    return (candidate.new_holes == 0 and candidate.new_cavities == 0
            and candidate.delta.bumpiness <= GENTLE_BUMP_INCREASE)


def mistake_probability(base: float, aggression: float, danger: float, pending_garbage: int,
                        top_is_clean: bool) -> float:
    if top_is_clean and danger < LOW_DANGER:
        return 0.0
    p = base * (1.0 - 0.6 * aggression)
    p *= 1.0 - 0.7 * pressure_level(danger, pending_garbage)
    return max(0.0, min(MAX_MISTAKE_PROBABILITY, p))


@dataclass
class Plan:
    candidate: Candidate
    treat_as_rotation: bool
    use_hold: bool

    @property
    def kind(self) -> TetrominoType:
        return self.candidate.kind

    @property
    def rotation(self) -> int:
        return self.candidate.rotation

    @property
    def x(self) -> int:
        return self.candidate.x

    @property
    def y(self) -> int:
        return self.candidate.y


class Planner:
    """Chooses one placement per decision cycle.

    First-pass scores every placement of the active piece (and the hold
    alternative), deepens the best ones with a second and third ply over the
    queue, biases against repetitive outcomes, prefers clean stacking when
    safe, and occasionally picks a near-best move on purpose.
    """

    def __init__(self, config: Optional[PlannerConfig] = None, rng: Optional[random.Random] = None,
                 rules: AttackRules = DEFAULT_RULES) -> None:
        self.config = config or PlannerConfig()
        self.rng = rng or random.Random()
        self.rules = rules
        self.history = RecentPatternLog(self.config.history)
        self.last_strategy: Optional[Strategy] = None
        self.preferred_well: Optional[int] = None

    def plan(self, view: GameView) -> Optional[Plan]:
        kind = parse_kind(view.current_kind)
        if kind is None:
            return None

        board = clone_board(view.board)
        width = board.shape[1]
        if self.preferred_well is None:
            self.preferred_well = self.rng.choice((0, width - 1))

        before = analyze_board(board)
        pending = max(0, int(view.pending_garbage_total()))
        danger = danger_level(before.max_height, before.holes, pending)
        queue = [k for k in (parse_kind(q) for q in view.queue) if k is not None]
        pre_combo = int(view.combo)
        pre_b2b = int(view.b2b)

        strategy = select_strategy(StrategyInputs(
            danger=danger,
            pending_garbage=pending,
            holes=before.holes,
            combo=pre_combo,
            pieces_placed=int(view.pieces_placed),
            near_full_rows=before.near_full_rows,
            spin_slots=before.spin_slots,
            current=kind,
            queue=queue,
            edge_well_depth=before.edge_well_depth,
            edge_well_holes=before.edge_well_holes,
        ), self.last_strategy)
        self.last_strategy = strategy

        ctx = ScoringContext(
            aggression=self.config.aggression,
            danger=danger,
            pending_garbage=pending,
            pre_combo=pre_combo,
            pre_b2b=pre_b2b,
            strategy=strategy,
            pieces_placed=int(view.pieces_placed),
            near_full_rows=before.near_full_rows,
            preferred_well=self.preferred_well,
            before=before,
            attack_bias=self.config.attack_bias,
            survival_bias=self.config.survival_bias,
            opener_plan=self.config.opener_plan,
            opening_window=self.config.opening_window,
        )

        hold_had_piece = parse_kind(view.hold_kind) is not None
        pool = self._candidates(board, kind, ctx, before, use_hold=False, hold_had_piece=hold_had_piece)
        if view.can_hold:
            alt = parse_kind(view.hold_kind) or (queue[0] if queue else None)
            if alt is not None:
                pool += self._candidates(board, alt, ctx, before, use_hold=True,
                                         hold_had_piece=hold_had_piece)
        if not pool:
            logger.debug("no placement for %s", kind.name)
            return None

        pool.sort(key=lambda c: c.base_score, reverse=True)
        for i, cand in enumerate(pool):
            total = cand.base_score
            if i < self.config.top_k:
                total += self._lookahead(cand, queue, ctx, deep=i < self.config.deep_k)
            total += self._own_adjustment(cand, danger)
            total += pattern_bias(cand, self.history, danger)
            cand.total_score = total

        ranked = self._prefer_clean(pool, danger, pending, strategy)
        ranked.sort(key=lambda c: c.total_score, reverse=True)
        choice = self._pick(ranked, danger, pending)
        self.history.record(outcome_tag(choice))

        logger.debug(
            "strategy=%s danger=%.2f pick %s%s rot=%d x=%d y=%d lines=%d attack=%d score=%.1f",
            strategy.value, danger, choice.kind.name, " (hold)" if choice.use_hold else "",
            choice.rotation, choice.x, choice.y, choice.lines_cleared, choice.attack,
            choice.total_score,
        )
        return Plan(candidate=choice, treat_as_rotation=choice.treat_as_rotation,
                    use_hold=choice.use_hold)

    # ---------- search ----------
    def _candidates(self, board, kind: KindLike, ctx: ScoringContext, before, *, use_hold: bool,
                    hold_had_piece: bool) -> List[Candidate]:
        return generate_candidates(
            board, kind, use_hold=use_hold, hold_had_piece=hold_had_piece,
            pre_combo=ctx.pre_combo, pre_b2b=ctx.pre_b2b, before=before,
            score=partial(score_candidate, ctx=ctx), rules=self.rules,
        )

    def _child_context(self, ctx: ScoringContext, parent: Candidate) -> ScoringContext:
        pending = max(0, ctx.pending_garbage - parent.attack) if parent.lines_cleared else ctx.pending_garbage
        a = parent.analysis
        return replace(
            ctx,
            danger=danger_level(a.max_height, a.holes, pending),
            pending_garbage=pending,
            pre_combo=parent.post_combo,
            pre_b2b=parent.post_b2b,
            pieces_placed=ctx.pieces_placed + 1,
            near_full_rows=a.near_full_rows,
            before=a,
        )

    def _replies(self, parent: Candidate, kind: TetrominoType, ctx: ScoringContext) -> List[Candidate]:
        child = self._child_context(ctx, parent)
        return self._candidates(parent.board, kind, child, parent.analysis, use_hold=False,
                                hold_had_piece=False)

    @staticmethod
    def _reply_bonus(reply: Candidate) -> float:
        bonus = reply.attack * 4.0
        if reply.is_tetris:
            bonus += 10.0
        if reply.is_spin:
            bonus += 12.0
        return bonus

    def _lookahead(self, cand: Candidate, queue: Sequence[TetrominoType], ctx: ScoringContext,
                   deep: bool) -> float:
        next_kind, rest = derive_future(cand.use_hold, cand.hold_had_piece, queue)
        if next_kind is None:
            return 0.0
        replies = self._replies(cand, next_kind, ctx)
        if not replies:
            return NO_REPLY_PENALTY

        w2 = self.config.second_ply_weight
        if not deep or not rest:
            return replies[0].base_score * w2 + self._reply_bonus(replies[0])

        # every deep branch carries its third-ply outcome, a dead end included
        child_ctx = self._child_context(ctx, cand)
        w3 = self.config.third_ply_weight

        def branch_value(reply: Candidate) -> float:
            thirds = self._replies(reply, rest[0], child_ctx)
            third = thirds[0].base_score if thirds else NO_REPLY_PENALTY
            return reply.base_score * w2 + self._reply_bonus(reply) + third * w3

        return max(branch_value(reply) for reply in replies[:self.config.branch])

    def _own_adjustment(self, cand: Candidate, danger: float) -> float:
        adj = 0.0
        if cand.is_tetris:
            adj += 10.0 * (0.5 + self.config.aggression)
        if cand.is_spin:
            adj += 14.0
        if cand.b2b_bonus:
            adj += 6.0
        if danger >= LOW_DANGER:
            return adj

        d = cand.delta
        adj -= max(0, d.holes) * 45.0
        adj += max(0, -d.holes) * 20.0
        adj -= max(0, d.hole_depth) * 4.0
        adj -= max(0, d.cavities) * 25.0
        adj += max(0, -d.cavities) * 10.0
        adj -= max(0, d.bumpiness) * 1.5
        adj += max(0, -d.bumpiness) * 0.8
        adj -= max(0, d.max_height) * 3.0
        return adj

    # ---------- selection ----------
    @staticmethod
    def _fits_strategy(cand: Candidate, strategy: Strategy) -> bool:
        if strategy == Strategy.DOWNSTACK:
            return cand.lines_cleared > 0 or cand.delta.holes < 0
        if strategy.spin_oriented:
            return cand.is_spin
        if strategy == Strategy.OPENER:
            return cand.lines_cleared == 0 or cand.is_tetris or cand.is_spin
        return True

    def _prefer_clean(self, pool: List[Candidate], danger: float, pending: int,
                      strategy: Strategy) -> List[Candidate]:
        if danger >= LOW_DANGER or pending > CLEAN_PENDING_LIMIT:
            return list(pool)

        clean = [c for c in pool if c.new_holes == 0 and c.new_cavities == 0]
        if clean:
            stage = [c for c in clean if c.delta.bumpiness <= GENTLE_BUMP_INCREASE] or clean
            fewest = min(c.analysis.holes for c in stage)
            stage = [c for c in stage if c.analysis.holes <= fewest + 1]
            flattest = min(c.analysis.bumpiness for c in stage)
            stage = [c for c in stage if c.analysis.bumpiness <= flattest + 6]
            return [c for c in stage if self._fits_strategy(c, strategy)] or stage

        b2b_attack = [c for c in pool if c.attack > 0 and (c.is_tetris or c.is_spin)]
        return b2b_attack or list(pool)

    def _pick(self, ranked: List[Candidate], danger: float, pending: int) -> Candidate:
        top = ranked[0]
        p = mistake_probability(self.config.mistake_chance, self.config.aggression, danger, pending,
                                is_clean(top))
        if len(ranked) < 2 or p <= 0.0 or self.rng.random() >= p:
            return top
        width = 2 if pressure_level(danger, pending) >= 0.5 else 3
        index = self.rng.randrange(min(width, len(ranked)))
        if index:
            logger.debug("mistake injected (p=%.3f): rank %d instead of best", p, index + 1)
        return ranked[index]
