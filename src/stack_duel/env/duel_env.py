from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

import gymnasium as gym
import numpy as np
from gymnasium import spaces

from stack_duel.game import DuelGame, GameConfig, TetrominoType
from stack_duel.game.grid import hard_drop_row, place
from stack_duel.game.pieces import parse_kind

COUNTER_CAP = 20
PENDING_CAP = 40


def _compute_action_mask(game: DuelGame) -> np.ndarray:
    """Boolean mask of shape (2, 4, W + 4): hold flag, rotation, anchor x + 2."""
    width = game.config.width
    mask = np.zeros((2, 4, width + 4), dtype=np.bool_)
    if game.game_over or game.current_kind is None:
        return mask

    options = [(0, game.current_kind)]
    if game.can_hold:
        alt = game.hold_kind if game.hold_kind is not None else (game.queue[0] if game.queue else None)
        if alt is not None:
            options.append((1, alt))

    for hold_flag, kind in options:
        for rotation in range(4):
            for x in range(-2, width + 2):
                y = hard_drop_row(game.board, kind, rotation, x, game.config.spawn_y)
                if y is not None and place(game.board, kind, rotation, x, y) is not None:
                    mask[hold_flag, rotation, x + 2] = True
    return mask


class DuelPlacementEnv(gym.Env):
    """Single-player placement environment over the duel rules engine.

    One step hard-drops the active piece (or the hold alternative) at a chosen
    rotation and column. Reward is the attack sent plus a small per-line term;
    topping out ends the episode with a penalty. Incoming garbage can be
    injected at random to emulate an opponent.
    """

    metadata = {"render_modes": []}

    def __init__(self, config: Optional[GameConfig] = None, *,
                 garbage_chance: float = 0.0,
                 max_garbage_lines: int = 4,
                 line_reward: float = 0.1,
                 invalid_action_penalty: float = -0.1,
                 terminal_penalty: float = 10.0,
                 max_pieces: int = 1000) -> None:
        super().__init__()
        self.game = DuelGame(config)
        self.garbage_chance = max(0.0, min(1.0, float(garbage_chance)))
        self.max_garbage_lines = max(1, min(10, int(max_garbage_lines)))
        self.line_reward = float(line_reward)
        self.invalid_action_penalty = float(invalid_action_penalty)
        self.terminal_penalty = float(terminal_penalty)
        self.max_pieces = max(1, int(max_pieces))

        width = self.game.config.width
        height = self.game.config.height
        kinds = len(TetrominoType) + 1

        self.observation_space = spaces.Dict(
            {
                "grid": spaces.Box(low=0, high=1, shape=(height, width), dtype=np.int8),
                # kind values, 0 when empty
                "current": spaces.Discrete(kinds),
                "hold": spaces.Discrete(kinds),
                "queue": spaces.Box(low=0, high=kinds - 1, shape=(self.game.config.queue_size,), dtype=np.int8),
                "pending_garbage": spaces.Discrete(PENDING_CAP + 1),
                # combo shifted by one so "no streak" is 0
                "combo": spaces.Discrete(COUNTER_CAP + 1),
                "b2b": spaces.Discrete(COUNTER_CAP + 1),
            }
        )
        self.n_columns = width + 4
        self.action_space = spaces.Discrete(2 * 4 * self.n_columns)
        self._steps = 0

    # ---------- action encoding ----------
    def encode_action(self, use_hold: bool, rotation: int, x: int) -> int:
        return (int(bool(use_hold)) * 4 + rotation % 4) * self.n_columns + (x + 2)

    def decode_action(self, action: int) -> Tuple[bool, int, int]:
        index = int(action)
        if not 0 <= index < self.action_space.n:
            raise ValueError("action %d outside Discrete(%d)" % (index, self.action_space.n))
        column = index % self.n_columns
        index //= self.n_columns
        return bool(index // 4), index % 4, column - 2

    def get_action_mask(self) -> np.ndarray:
        return _compute_action_mask(self.game).reshape(-1)

    # ---------- gym api ----------
    def _get_obs(self) -> Dict[str, Any]:
        game = self.game
        queue = np.zeros((game.config.queue_size,), dtype=np.int8)
        for i, kind in enumerate(game.queue[:game.config.queue_size]):
            queue[i] = int(kind)
        return {
            "grid": (game.board != 0).astype(np.int8),
            "current": int(game.current_kind or 0),
            "hold": int(game.hold_kind or 0),
            "queue": queue,
            "pending_garbage": min(PENDING_CAP, game.pending_garbage_total()),
            "combo": max(0, min(COUNTER_CAP, game.combo + 1)),
            "b2b": max(0, min(COUNTER_CAP, game.b2b)),
        }

    def _get_info(self) -> Dict[str, Any]:
        return {
            "action_mask": self.get_action_mask(),
            "pieces_placed": self.game.pieces_placed,
            "lines_cleared": self.game.lines_cleared,
            "attacks_sent": self.game.attacks_sent,
            "finesse_errors": self.game.finesse_errors,
        }

    def reset(self, *, seed: Optional[int] = None,
              options: Optional[dict] = None) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        super().reset(seed=seed)
        self.game.reset(seed)
        self._steps = 0
        return self._get_obs(), self._get_info()

    def _drop(self, use_hold: bool, rotation: int, x: int) -> bool:
        game = self.game
        if use_hold and not game.hold():
            return False
        kind = parse_kind(game.current_kind)
        if kind is None:
            return False
        y = hard_drop_row(game.board, kind, rotation, x, game.config.spawn_y)
        if y is None or not game.set_pose(rotation, x, y):
            return game.hard_drop_and_spawn()
        if not game.lock_piece():
            return False
        return game.spawn_piece()

    def step(self, action: int):
        use_hold, rotation, x = self.decode_action(action)
        mask = _compute_action_mask(self.game)
        components: Dict[str, float] = {}
        lines_before = self.game.lines_cleared
        attacks_before = self.game.attacks_sent

        if mask[int(use_hold), rotation, x + 2]:
            self._drop(use_hold, rotation, x)
            components["attack"] = float(self.game.attacks_sent - attacks_before)
            components["lines"] = self.line_reward * float(self.game.lines_cleared - lines_before)
            if not self.game.game_over and self.garbage_chance > 0.0:
                if self.np_random.random() < self.garbage_chance:
                    lines = int(self.np_random.integers(1, self.max_garbage_lines + 1))
                    self.game.receive_attack(lines)
        else:
            components["invalid"] = self.invalid_action_penalty

        self._steps += 1
        terminated = bool(self.game.game_over)
        truncated = not terminated and self.game.pieces_placed >= self.max_pieces
        if terminated:
            components["terminal"] = -self.terminal_penalty

        info = self._get_info()
        info["reward_components"] = components
        return self._get_obs(), float(sum(components.values())), terminated, truncated, info

    def close(self) -> None:
        pass
