from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

import numpy as np

from .pieces import EMPTY, GARBAGE, SPAWN_ROW, KindLike, TetrominoType, parse_kind, shape_for


Coordinate = Tuple[int, int]
Board = np.ndarray


def new_board(width: int = 10, height: int = 20) -> Board:
    return np.zeros((int(height), int(width)), dtype=np.int8)


def clone_board(board: Board) -> Board:
    """Return an independently owned copy; simulation steps never share arrays."""
    return np.array(board, dtype=np.int8, copy=True)


def shape_cells(kind: KindLike, rotation: int, x: int, y: int) -> Optional[List[Coordinate]]:
    shape = shape_for(kind, rotation)
    if shape is None:
        return None
    rows, cols = np.nonzero(shape)
    return [(x + int(c), y + int(r)) for r, c in zip(rows, cols)]


def cells_fit(board: Board, cells: Iterable[Coordinate]) -> bool:
    height, width = board.shape
    for cx, cy in cells:
        if cx < 0 or cx >= width or cy >= height:
            return False
        # rows above the grid belong to the spawn margin and are always open
        if cy >= 0 and board[cy, cx] != EMPTY:
            return False
    return True


def can_place(board: Board, kind: KindLike, rotation: int, x: int, y: int) -> bool:
    cells = shape_cells(kind, rotation, x, y)
    if cells is None:
        return False
    return cells_fit(board, cells)


def drop_landing_rows(board: Board, kind: KindLike, rotation: int, x: int,
                      start_row: int = SPAWN_ROW) -> List[int]:
    """Every row at which the piece fits and cannot fall one step further.

    Scans the whole column range below ``start_row`` so pockets under
    overhangs show up alongside the plain hard-drop row.
    """
    if shape_for(kind, rotation) is None:
        return []
    height = board.shape[0]
    rows: List[int] = []
    fits_below = can_place(board, kind, rotation, x, start_row)
    for y in range(start_row, height):
        fits_here = fits_below
        fits_below = can_place(board, kind, rotation, x, y + 1)
        if fits_here and not fits_below:
            rows.append(y)
    return rows


def hard_drop_row(board: Board, kind: KindLike, rotation: int, x: int, y: int) -> Optional[int]:
    if not can_place(board, kind, rotation, x, y):
        return None
    while can_place(board, kind, rotation, x, y + 1):
        y += 1
    return y


def place(board: Board, kind: KindLike, rotation: int, x: int, y: int) -> Optional[Board]:
    """Stamp a piece into a copy of ``board``; ``None`` if the placement is illegal."""
    parsed = parse_kind(kind)
    cells = shape_cells(parsed, rotation, x, y)
    if parsed is None or cells is None:
        return None
    height, width = board.shape
    for cx, cy in cells:
        if cy < 0 or cy >= height or cx < 0 or cx >= width:
            return None
        if board[cy, cx] != EMPTY:
            return None
    out = clone_board(board)
    for cx, cy in cells:
        out[cy, cx] = int(parsed)
    return out


def clear_full_lines(board: Board) -> Tuple[Board, int]:
    full_rows = np.all(board != EMPTY, axis=1)
    num = int(np.count_nonzero(full_rows))
    if num == 0:
        return clone_board(board), 0
    kept = board[~full_rows]
    new_rows = np.zeros((num, board.shape[1]), dtype=np.int8)
    return np.vstack((new_rows, kept)).astype(np.int8), num


def is_all_clear(board: Board) -> bool:
    return not np.any(board != EMPTY)


def is_tspin(pre_clear_board: Board, kind: KindLike, x: int, y: int, lines_cleared: int) -> bool:
    """Three-corner test around the T's 3x3 box; out-of-bounds corners count as filled."""
    if parse_kind(kind) != TetrominoType.T or lines_cleared <= 0:
        return False
    height, width = pre_clear_board.shape
    filled = 0
    for cx, cy in ((x, y), (x + 2, y), (x, y + 2), (x + 2, y + 2)):
        if cx < 0 or cx >= width or cy < 0 or cy >= height:
            filled += 1
        elif pre_clear_board[cy, cx] != EMPTY:
            filled += 1
    return filled >= 3


def push_garbage_rows(board: Board, rows: int, hole_column: int) -> Board:
    height, width = board.shape
    rows = max(0, min(int(rows), height))
    if rows == 0:
        return clone_board(board)
    garbage = np.full((rows, width), GARBAGE, dtype=np.int8)
    garbage[:, max(0, min(width - 1, int(hole_column)))] = EMPTY
    return np.vstack((board[rows:], garbage)).astype(np.int8)


def column_heights(board: Board) -> np.ndarray:
    height = board.shape[0]
    filled = board != EMPTY
    has_block = filled.any(axis=0)
    first = np.argmax(filled, axis=0)
    return np.where(has_block, height - first, 0).astype(np.int32)
