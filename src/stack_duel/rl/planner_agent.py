from __future__ import annotations

import argparse
import logging
import random
from typing import Optional

import gymnasium as gym
import numpy as np

import stack_duel.env  # ensure registration
from stack_duel.bot import BotConfig, Planner
from stack_duel.env.wrappers import ResampleInvalidActionWrapper

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"


def build_env(garbage_chance: float = 0.0, max_pieces: int = 1000) -> gym.Env:
    env = gym.make("StackDuel-v0", garbage_chance=garbage_chance, max_pieces=max_pieces)
    return ResampleInvalidActionWrapper(env)


def planner_action(env: gym.Env, planner: Planner, rng: random.Random) -> int:
    base = env.unwrapped
    plan = planner.plan(base.game)
    mask = env.get_action_mask()
    if plan is not None:
        action = base.encode_action(plan.use_hold, plan.rotation, plan.x)
        if 0 <= action < mask.shape[0] and mask[action]:
            return action
        logger.debug("planned placement not reachable by a straight drop, sampling instead")
    return random_action(mask, rng)


def random_action(mask: np.ndarray, rng: random.Random) -> int:
    valid = np.flatnonzero(mask)
    if valid.size == 0:
        return 0
    return int(valid[rng.randrange(valid.size)])


def run(policy: str = "planner", steps: int = 500, seed: Optional[int] = None,
        aggression: float = 65.0, garbage_chance: float = 0.0) -> dict:
    env = build_env(garbage_chance=garbage_chance)
    rng = random.Random(seed)
    planner = Planner(BotConfig(aggression=aggression).planner_config(), rng=rng)

    obs, info = env.reset(seed=seed)
    totals = {"reward": 0.0, "episodes": 0, "pieces": 0, "lines": 0, "attack": 0}
    for _ in range(steps):
        if policy == "planner":
            action = planner_action(env, planner, rng)
        else:
            action = random_action(info["action_mask"], rng)
        obs, reward, terminated, truncated, info = env.step(action)
        totals["reward"] += float(reward)
        if terminated or truncated:
            totals["episodes"] += 1
            _accumulate(totals, info)
            logger.info("episode %d over after %d pieces (%s)", totals["episodes"],
                        info["pieces_placed"], "top out" if terminated else "truncated")
            obs, info = env.reset()
    _accumulate(totals, info)
    env.close()
    return totals


def _accumulate(totals: dict, info: dict) -> None:
    totals["pieces"] += int(info["pieces_placed"])
    totals["lines"] += int(info["lines_cleared"])
    totals["attack"] += int(info["attacks_sent"])


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Play StackDuel-v0 with the placement planner.")
    p.add_argument("--policy", choices=["planner", "random"], default="planner")
    p.add_argument("--steps", type=int, default=500)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--aggression", type=float, default=65.0)
    p.add_argument("--garbage-chance", type=float, default=0.0)
    p.add_argument("--verbose", action="store_true")
    return p


def main() -> None:
    args = build_parser().parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)
    totals = run(policy=args.policy, steps=args.steps, seed=args.seed,
                 aggression=args.aggression, garbage_chance=args.garbage_chance)
    logger.info(
        "%s policy: reward %.2f over %d finished episodes, %d pieces, %d lines, %d attack",
        args.policy, totals["reward"], totals["episodes"], totals["pieces"], totals["lines"],
        totals["attack"],
    )


if __name__ == "__main__":  # pragma: no cover
    main()
