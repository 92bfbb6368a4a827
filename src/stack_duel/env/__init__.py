"""Gymnasium environments for stack_duel."""

from __future__ import annotations

from gymnasium.envs.registration import register

from .duel_env import DuelPlacementEnv
from .wrappers import ResampleInvalidActionWrapper

# Register the placement environment (hold flag x rotation x anchor column)
register(
    id="StackDuel-v0",
    entry_point="stack_duel.env.duel_env:DuelPlacementEnv",
)

__all__ = ["DuelPlacementEnv", "ResampleInvalidActionWrapper"]
