from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass
from typing import Optional

from stack_duel.game.pieces import TetrominoType, parse_kind
from stack_duel.game.rules import DEFAULT_RULES

from .analysis import analyze_board
from .planner import Plan, Planner, PlannerConfig
from .scoring import MAX_DANGER, danger_level

logger = logging.getLogger(__name__)

STYLES = ("downstack", "tempo", "spike")

# search breadth, lookahead weighting and bias per style
STYLE_TUNING = {
    "downstack": dict(top_k=24, deep_k=8, branch=3, second_ply_weight=0.7, third_ply_weight=0.4,
                      attack_bias=0.9, survival_bias=1.25, opener_plan="safe_stack", opening_window=10),
    "tempo": dict(top_k=28, deep_k=10, branch=4, second_ply_weight=0.67, third_ply_weight=0.35,
                  attack_bias=1.16, survival_bias=1.05, opener_plan="tspin_pressure", opening_window=12),
    "spike": dict(top_k=28, deep_k=10, branch=4, second_ply_weight=0.62, third_ply_weight=0.3,
                  attack_bias=1.45, survival_bias=0.92, opener_plan="tetris_spike", opening_window=14),
}

FIRST_DECISION_DELAY_MS = 110.0
MIN_THINK_MS = 18.0
DANGER_SPEEDUP = 0.35


def _number(value, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return default if math.isnan(number) else number


@dataclass
class BotConfig:
    pps: float = 1.6
    aggression: float = 65.0
    mistake_chance: float = 8.0
    think_jitter_ms: float = 85.0
    style: Optional[str] = None

    def __post_init__(self) -> None:
        self.pps = max(0.4, min(7.0, _number(self.pps, 1.6)))
        self.aggression = max(0.0, min(100.0, _number(self.aggression, 65.0)))
        self.mistake_chance = max(0.0, min(100.0, _number(self.mistake_chance, 8.0)))
        self.think_jitter_ms = max(0.0, min(450.0, _number(self.think_jitter_ms, 85.0)))
        style = str(self.style or "").strip().lower()
        if style not in STYLES:
            if self.aggression >= 74:
                style = "spike"
            elif self.aggression <= 34:
                style = "downstack"
            else:
                style = "tempo"
        self.style = style

    def planner_config(self) -> PlannerConfig:
        return PlannerConfig(
            aggression=self.aggression / 100.0,
            mistake_chance=self.mistake_chance / 100.0,
            **STYLE_TUNING[self.style],
        )


class BotController:
    """Drives one ``DuelGame`` with the planner at a human-like pace.

    ``update`` is called from the match loop with elapsed milliseconds. Once
    the think interval has passed the controller plans and executes a single
    placement, then schedules the next decision.
    """

    def __init__(self, game, config: Optional[BotConfig] = None, rng: Optional[random.Random] = None,
                 planner: Optional[Planner] = None) -> None:
        self.game = game
        self.config = config or BotConfig()
        self.rng = rng or random.Random()
        self.planner = planner or Planner(self.config.planner_config(), rng=self.rng,
                                          rules=getattr(game, "rules", DEFAULT_RULES))
        self.elapsed_ms = 0.0
        self.next_decision_ms = 0.0
        self.decisions = 0
        self.schedule(first=True)

    def current_danger(self) -> float:
        a = analyze_board(self.game.board)
        return danger_level(a.max_height, a.holes, int(self.game.pending_garbage_total()))

    def think_interval(self, first: bool = False) -> float:
        base = 1000.0 / self.config.pps
        base *= 1.0 - DANGER_SPEEDUP * (self.current_danger() / MAX_DANGER)
        jitter = 0.0
        if self.config.think_jitter_ms > 0:
            jitter = self.rng.uniform(-1.0, 1.0) * self.config.think_jitter_ms
        startup = FIRST_DECISION_DELAY_MS if first else 0.0
        return max(MIN_THINK_MS, base + jitter + startup)

    def schedule(self, first: bool = False) -> None:
        self.next_decision_ms = self.think_interval(first)

    def update(self, elapsed_ms: float) -> bool:
        """Advance the think timer; ``False`` only when the game has topped out."""
        if getattr(self.game, "game_over", False):
            return False
        if self.game.current_kind is None:
            return True
        self.elapsed_ms += max(0.0, _number(elapsed_ms, 0.0))
        if self.elapsed_ms < self.next_decision_ms:
            return True
        self.elapsed_ms = 0.0

        plan = self.planner.plan(self.game)
        alive = self.execute(plan)
        self.decisions += 1
        self.schedule()
        if not alive:
            logger.info("bot topped out after %d decisions", self.decisions)
        return alive

    def execute(self, plan: Optional[Plan]) -> bool:
        game = self.game
        if game.current_kind is None:
            return True
        if plan is None:
            return game.hard_drop_and_spawn()

        if plan.use_hold:
            if not game.hold():
                if getattr(game, "game_over", False):
                    return False
                logger.debug("hold refused, dropping instead")
                return game.hard_drop_and_spawn()
            if game.current_kind is None:
                return False

        if parse_kind(game.current_kind) != plan.kind:
            logger.debug("planned %s but holding %s, dropping instead",
                         plan.kind.name, parse_kind(game.current_kind))
            return game.hard_drop_and_spawn()
        if not game.is_valid_position(plan.x, plan.y, plan.rotation):
            logger.debug("planned pose no longer legal, dropping instead")
            return game.hard_drop_and_spawn()

        turned = plan.kind == TetrominoType.T and plan.rotation != game.rotation
        as_rotation = plan.treat_as_rotation or turned
        if not game.set_pose(plan.rotation, plan.x, plan.y, as_rotation):
            return game.hard_drop_and_spawn()
        if not game.lock_piece():
            return False
        return game.spawn_piece()
