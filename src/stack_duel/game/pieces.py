from __future__ import annotations

from enum import IntEnum
from typing import Dict, List, Optional, Tuple, Union

import numpy as np


class TetrominoType(IntEnum):
    I = 1
    O = 2
    T = 3
    S = 4
    Z = 5
    J = 6
    L = 7


EMPTY = 0
GARBAGE = 8

Shape = np.ndarray
Kick = Tuple[int, int]
KindLike = Union[TetrominoType, int, str, None]

SPAWN_ROW = -1


def _rot90(shape: Shape, k: int) -> Shape:
    k = k % 4
    if k == 0:
        return shape
    return np.rot90(shape, k, axes=(1, 0))  # rotate clockwise when k>0


# SRS bounding boxes in spawn orientation
BASE_SHAPES = {
    TetrominoType.I: np.array([[0, 0, 0, 0], [1, 1, 1, 1], [0, 0, 0, 0], [0, 0, 0, 0]], dtype=np.int8),
    TetrominoType.O: np.array([[1, 1], [1, 1]], dtype=np.int8),
    TetrominoType.T: np.array([[0, 1, 0], [1, 1, 1], [0, 0, 0]], dtype=np.int8),
    TetrominoType.S: np.array([[0, 1, 1], [1, 1, 0], [0, 0, 0]], dtype=np.int8),
    TetrominoType.Z: np.array([[1, 1, 0], [0, 1, 1], [0, 0, 0]], dtype=np.int8),
    TetrominoType.J: np.array([[1, 0, 0], [1, 1, 1], [0, 0, 0]], dtype=np.int8),
    TetrominoType.L: np.array([[0, 0, 1], [1, 1, 1], [0, 0, 0]], dtype=np.int8),
}

SHAPES: Dict[TetrominoType, Tuple[Shape, ...]] = {
    kind: tuple(np.ascontiguousarray(_rot90(base, r)) for r in range(4))
    for kind, base in BASE_SHAPES.items()
}

SPAWN_COLUMNS = {
    TetrominoType.I: 3,
    TetrominoType.O: 4,
    TetrominoType.T: 3,
    TetrominoType.S: 3,
    TetrominoType.Z: 3,
    TetrominoType.J: 3,
    TetrominoType.L: 3,
}

# Offsets are (dx, dy) with y pointing up; apply as (x + dx, y - dy).
JLSTZ_KICKS: Dict[Tuple[int, int], List[Kick]] = {
    (0, 1): [(0, 0), (-1, 0), (-1, 1), (0, -2), (-1, -2)],
    (1, 0): [(0, 0), (1, 0), (1, -1), (0, 2), (1, 2)],
    (1, 2): [(0, 0), (1, 0), (1, -1), (0, 2), (1, 2)],
    (2, 1): [(0, 0), (-1, 0), (-1, 1), (0, -2), (-1, -2)],
    (2, 3): [(0, 0), (1, 0), (1, 1), (0, -2), (1, -2)],
    (3, 2): [(0, 0), (-1, 0), (-1, -1), (0, 2), (-1, 2)],
    (3, 0): [(0, 0), (-1, 0), (-1, -1), (0, 2), (-1, 2)],
    (0, 3): [(0, 0), (1, 0), (1, 1), (0, -2), (1, -2)],
}

I_KICKS: Dict[Tuple[int, int], List[Kick]] = {
    (0, 1): [(0, 0), (-2, 0), (1, 0), (-2, -1), (1, 2)],
    (1, 0): [(0, 0), (2, 0), (-1, 0), (2, 1), (-1, -2)],
    (1, 2): [(0, 0), (-1, 0), (2, 0), (-1, 2), (2, -1)],
    (2, 1): [(0, 0), (1, 0), (-2, 0), (1, -2), (-2, 1)],
    (2, 3): [(0, 0), (2, 0), (-1, 0), (2, 1), (-1, -2)],
    (3, 2): [(0, 0), (-2, 0), (1, 0), (-2, -1), (1, 2)],
    (3, 0): [(0, 0), (1, 0), (-2, 0), (1, -2), (-2, 1)],
    (0, 3): [(0, 0), (-1, 0), (2, 0), (-1, 2), (2, -1)],
}

HALF_TURN_KICKS: Dict[Tuple[int, int], List[Kick]] = {
    (0, 2): [(0, 0), (0, 1), (1, 1), (-1, 1), (1, 0), (-1, 0)],
    (2, 0): [(0, 0), (0, -1), (-1, -1), (1, -1), (-1, 0), (1, 0)],
    (1, 3): [(0, 0), (1, 0), (1, 2), (1, 1), (0, 2), (0, 1)],
    (3, 1): [(0, 0), (-1, 0), (-1, 2), (-1, 1), (0, 2), (0, 1)],
}

_LETTERS = {kind.name: kind for kind in TetrominoType}


def parse_kind(value: KindLike) -> Optional[TetrominoType]:
    """Normalize a kind given as enum, int value or letter; ``None`` if unknown."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, TetrominoType):
        return value
    if isinstance(value, str):
        return _LETTERS.get(value.strip().upper())
    try:
        return TetrominoType(int(value))
    except (TypeError, ValueError, OverflowError):
        return None


def shape_for(kind: KindLike, rotation: int) -> Optional[Shape]:
    parsed = parse_kind(kind)
    if parsed is None:
        return None
    return SHAPES[parsed][rotation % 4]


def kicks_for(kind: KindLike, from_rotation: int, to_rotation: int) -> List[Kick]:
    parsed = parse_kind(kind)
    key = (from_rotation % 4, to_rotation % 4)
    if parsed is None or parsed == TetrominoType.O:
        return [(0, 0)]
    if (key[1] - key[0]) % 4 == 2:
        return list(HALF_TURN_KICKS.get(key, [(0, 0)]))
    table = I_KICKS if parsed == TetrominoType.I else JLSTZ_KICKS
    return list(table.get(key, [(0, 0)]))


def spawn_column(kind: KindLike) -> Optional[int]:
    parsed = parse_kind(kind)
    if parsed is None:
        return None
    return SPAWN_COLUMNS[parsed]


def box_width(kind: KindLike) -> int:
    shape = shape_for(kind, 0)
    return 0 if shape is None else int(shape.shape[1])
