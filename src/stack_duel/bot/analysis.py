from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from stack_duel.game.grid import Board, column_heights
from stack_duel.game.pieces import EMPTY


@dataclass(frozen=True)
class Analysis:
    """Feature snapshot of one board. Recomputed per board, never updated in place."""

    heights: Tuple[int, ...]
    holes: int
    hole_depth: int
    bumpiness: int
    aggregate_height: int
    max_height: int
    row_transitions: int
    col_transitions: int
    well_cells: int
    deepest_well: int
    cavities: int
    spin_slots: int
    edge_well_depth: int
    edge_well_holes: int
    center_well_penalty: int
    near_full_rows: int


@dataclass(frozen=True)
class AnalysisDelta:
    holes: int
    hole_depth: int
    cavities: int
    bumpiness: int
    max_height: int
    aggregate_height: int
    spin_slots: int

    @classmethod
    def between(cls, before: Analysis, after: Analysis) -> "AnalysisDelta":
        return cls(
            holes=after.holes - before.holes,
            hole_depth=after.hole_depth - before.hole_depth,
            cavities=after.cavities - before.cavities,
            bumpiness=after.bumpiness - before.bumpiness,
            max_height=after.max_height - before.max_height,
            aggregate_height=after.aggregate_height - before.aggregate_height,
            spin_slots=after.spin_slots - before.spin_slots,
        )


def _walls(filled: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    height = filled.shape[0]
    wall = np.ones((height, 1), dtype=bool)
    left = np.hstack((wall, filled[:, :-1]))
    right = np.hstack((filled[:, 1:], wall))
    return left, right


def _holes(filled: np.ndarray) -> Tuple[int, int, np.ndarray]:
    above = np.cumsum(filled, axis=0)
    hole_mask = ~filled & (above > 0)
    per_column = hole_mask.sum(axis=0)
    return int(per_column.sum()), int(above[hole_mask].sum()), per_column


def _transitions(filled: np.ndarray) -> Tuple[int, int]:
    width = filled.shape[1]
    rows = filled[filled.any(axis=1)]
    wall = np.ones((rows.shape[0], 1), dtype=bool)
    padded = np.hstack((wall, rows, wall))
    row_t = int(np.count_nonzero(padded[:, 1:] != padded[:, :-1]))
    # open sky above, solid floor below
    padded = np.vstack((np.zeros((1, width), dtype=bool), filled, np.ones((1, width), dtype=bool)))
    col_t = int(np.count_nonzero(padded[1:] != padded[:-1]))
    return row_t, col_t


def _wells(filled: np.ndarray) -> Tuple[int, int]:
    left, right = _walls(filled)
    well_mask = ~filled & left & right
    run = np.zeros(filled.shape[1], dtype=np.int32)
    total = 0
    deepest = 0
    for row in well_mask:
        run = np.where(row, run + 1, 0)
        total += int(run.sum())
        deepest = max(deepest, int(run.max()))
    return total, deepest


def _cavities(filled: np.ndarray) -> int:
    left, right = _walls(filled)
    mask = ~filled[1:] & filled[:-1] & left[1:] & right[1:]
    return int(np.count_nonzero(mask))


def _spin_slots(filled: np.ndarray) -> int:
    """3x3 windows shaped like a T-spin pocket: empty center, roof, support, 3 corners, open side."""
    solid = np.pad(filled, 1, constant_values=True)
    roofs = solid.copy()
    roofs[0, :] = False  # nothing above the grid can act as a roof
    corners = (solid[:-2, :-2].astype(np.int8) + solid[:-2, 2:] + solid[2:, :-2] + solid[2:, 2:])
    roof = roofs[:-2, 1:-1]
    support = solid[2:, 1:-1]
    side_open = ~solid[1:-1, :-2] | ~solid[1:-1, 2:]
    mask = ~filled & (corners >= 3) & roof & support & side_open
    return int(np.count_nonzero(mask))


def analyze_board(board: Board) -> Analysis:
    filled = np.asarray(board) != EMPTY
    width = filled.shape[1]
    heights = column_heights(board)
    holes, hole_depth, column_holes = _holes(filled)
    bumpiness = int(np.abs(np.diff(heights)).sum())
    row_t, col_t = _transitions(filled)
    well_cells, deepest_well = _wells(filled)

    edge_well_depth = max(0, int(heights[1] - heights[0]), int(heights[width - 2] - heights[width - 1]))
    edge_well_holes = int(column_holes[0] + column_holes[width - 1])

    center_well_penalty = 0
    for col in range(1, width - 1):
        depth = int(min(heights[col - 1], heights[col + 1]) - heights[col])
        if depth >= 2:
            center_well_penalty += depth

    row_fill = filled.sum(axis=1)
    near_full = int(np.count_nonzero((row_fill >= width - 2) & (row_fill < width)))

    return Analysis(
        heights=tuple(int(h) for h in heights),
        holes=holes,
        hole_depth=hole_depth,
        bumpiness=bumpiness,
        aggregate_height=int(heights.sum()),
        max_height=int(heights.max()) if width else 0,
        row_transitions=row_t,
        col_transitions=col_t,
        well_cells=well_cells,
        deepest_well=deepest_well,
        cavities=_cavities(filled),
        spin_slots=_spin_slots(filled),
        edge_well_depth=edge_well_depth,
        edge_well_holes=edge_well_holes,
        center_well_penalty=center_well_penalty,
        near_full_rows=near_full,
    )
