"""Heuristic placement bot: board analysis, scoring, strategy and lookahead."""

from .analysis import Analysis, analyze_board
from .candidates import Candidate, generate_candidates
from .controller import BotConfig, BotController
from .planner import Plan, Planner, PlannerConfig
from .protocols import GameActions, GameView
from .scoring import danger_level, score_candidate
from .strategy import Strategy, select_strategy

__all__ = [
    "Analysis",
    "analyze_board",
    "Candidate",
    "generate_candidates",
    "BotConfig",
    "BotController",
    "Plan",
    "Planner",
    "PlannerConfig",
    "GameActions",
    "GameView",
    "danger_level",
    "score_candidate",
    "Strategy",
    "select_strategy",
]
