from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .grid import Board, clear_full_lines, is_all_clear, is_tspin, place
from .pieces import KindLike, TetrominoType, parse_kind


@dataclass
class AttackRules:
    clear_attack: Dict[int, int] = field(default_factory=lambda: {1: 0, 2: 0, 3: 1, 4: 4})
    tspin_attack: Dict[int, int] = field(default_factory=lambda: {1: 2, 2: 4, 3: 6})
    all_clear_attack: int = 8
    all_clear_tetris_attack: int = 10
    b2b_bonus: int = 1
    combo_bonus: int = 1
    combo_bonus_threshold: int = 4

    def base_attack(self, lines: int, is_spin: bool, is_all_clear: bool, kind: KindLike) -> int:
        if lines <= 0:
            return 0
        if is_all_clear:
            return self.all_clear_tetris_attack if lines == 4 else self.all_clear_attack
        if is_spin and parse_kind(kind) == TetrominoType.T:
            return self.tspin_attack.get(lines, 0)
        if is_spin:
            return lines
        return self.clear_attack.get(lines, 0)


DEFAULT_RULES = AttackRules()


@dataclass(frozen=True)
class ClearResult:
    attack: int
    b2b_bonus: bool
    post_combo: int
    post_b2b: int


@dataclass(frozen=True)
class GarbageEntry:
    lines: int
    hole_column: int


@dataclass
class LockOutcome:
    board: Board
    lines_cleared: int
    is_spin: bool
    is_all_clear: bool
    attack: int
    b2b_bonus: bool
    post_combo: int
    post_b2b: int


def resolve_clear(lines: int, is_spin: bool, is_all_clear: bool, kind: KindLike,
                  pre_combo: int, pre_b2b: int, rules: AttackRules = DEFAULT_RULES) -> ClearResult:
    """Attack and streak counters produced by one lock."""
    if lines <= 0:
        return ClearResult(attack=0, b2b_bonus=False, post_combo=-1, post_b2b=0)

    attack = rules.base_attack(lines, is_spin, is_all_clear, kind)

    qualifies = lines == 4 or is_spin
    chain_active = pre_b2b > 0
    post_b2b = 0
    b2b_bonus = False
    if qualifies:
        if chain_active:
            post_b2b = pre_b2b + 1
            attack += rules.b2b_bonus
            b2b_bonus = True
        else:
            post_b2b = 1

    post_combo = pre_combo + 1
    if post_combo >= rules.combo_bonus_threshold:
        attack += rules.combo_bonus

    return ClearResult(attack=attack, b2b_bonus=b2b_bonus, post_combo=post_combo, post_b2b=post_b2b)


def cancel_garbage(entries: Sequence[GarbageEntry], attack: int) -> Tuple[List[GarbageEntry], int]:
    """Cancel pending garbage front to back; returns (remaining entries, remaining attack)."""
    total = sum(e.lines for e in entries)
    if total == 0:
        return list(entries), attack
    if attack >= total:
        return [], attack - total

    remaining = attack
    kept: List[GarbageEntry] = []
    for entry in entries:
        if remaining >= entry.lines:
            remaining -= entry.lines
            continue
        if remaining > 0:
            kept.append(GarbageEntry(lines=entry.lines - remaining, hole_column=entry.hole_column))
            remaining = 0
            continue
        kept.append(entry)
    return kept, 0


def resolve_lock(board: Board, kind: KindLike, rotation: int, x: int, y: int,
                 pre_combo: int = -1, pre_b2b: int = 0, rules: AttackRules = DEFAULT_RULES,
                 spin_allowed: bool = True) -> Optional[LockOutcome]:
    """Place, clear and score a piece on a copy of ``board``; ``None`` if illegal."""
    stamped = place(board, kind, rotation, x, y)
    if stamped is None:
        return None
    cleared, lines = clear_full_lines(stamped)
    spin = spin_allowed and is_tspin(stamped, kind, x, y, lines)
    all_clear = lines > 0 and is_all_clear(cleared)
    result = resolve_clear(lines, spin, all_clear, kind, pre_combo, pre_b2b, rules)
    return LockOutcome(
        board=cleared,
        lines_cleared=lines,
        is_spin=spin,
        is_all_clear=all_clear,
        attack=result.attack,
        b2b_bonus=result.b2b_bonus,
        post_combo=result.post_combo,
        post_b2b=result.post_b2b,
    )
