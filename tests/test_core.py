import json

import numpy as np

from stack_duel.game import Action, DuelGame, GameConfig, TetrominoType
from stack_duel.game.grid import hard_drop_row
from stack_duel.game.pieces import GARBAGE, spawn_column


def make_game(seed=7, **kwargs):
    return DuelGame(GameConfig(random_seed=seed), **kwargs)


def tetris_ready(game):
    game.board[16:20, 1:] = GARBAGE
    game.board[15, 5] = GARBAGE
    game.current_kind = TetrominoType.I


def test_spawn_fills_queue_from_one_bag():
    game = make_game()
    assert len(game.queue) == 6
    assert game.x == spawn_column(game.current_kind)
    assert game.y == -1
    assert {game.current_kind, *game.queue} == set(TetrominoType)


def test_same_seed_same_sequence():
    a, b = make_game(3), make_game(3)
    assert a.current_kind == b.current_kind
    assert a.queue == b.queue


def test_hold_swaps_once_per_piece():
    game = make_game()
    first = game.current_kind
    upcoming = game.queue[0]
    assert game.hold()
    assert game.hold_kind == first
    assert game.current_kind == upcoming
    assert not game.can_hold
    assert not game.hold()


def test_move_stops_at_wall():
    game = make_game()
    game.current_kind = TetrominoType.T
    game.x = 3
    assert game.move(-1) and game.move(-1) and game.move(-1)
    assert not game.move(-1)
    assert game.x == 0


def test_rotate_with_kicks():
    game = make_game()
    game.current_kind = TetrominoType.T
    assert game.rotate("cw")
    assert game.rotation == 1
    assert game.last_action_was_rotation
    assert game.rotate("180")
    assert game.rotation == 3
    assert not game.rotate("sideways")


def test_hard_drop_places_four_cells():
    game = make_game()
    assert game.hard_drop_and_spawn()
    assert game.pieces_placed == 1
    assert np.count_nonzero(game.board) == 4
    assert len(game.queue) == 6


def test_blocked_lock_tops_out():
    game = make_game()
    game.board[:, :] = GARBAGE
    assert not game.hard_drop_and_spawn()
    assert game.game_over


def test_gravity_moves_one_row_per_interval():
    game = make_game()
    assert game.update(1000)
    assert game.y == 0


def test_lock_delay():
    game = make_game()
    game.y = hard_drop_row(game.board, game.current_kind, game.rotation, game.x, game.y)
    assert game.update(100)
    assert game.pieces_placed == 0
    assert game.update(450)
    assert game.pieces_placed == 1


def test_update_reports_top_out():
    game = make_game()
    game.board[0:3, :] = GARBAGE
    assert not game.update(1000)
    assert game.game_over


def test_clearless_lock_applies_pending_garbage():
    game = make_game()
    assert game.receive_attack(3) == 3
    assert game.hard_drop_and_spawn()
    assert np.count_nonzero(game.board == GARBAGE) == 27
    assert game.pending_garbage_total() == 0


def test_tetris_sends_attack():
    sent = []
    game = make_game(on_attack=sent.append)
    tetris_ready(game)
    assert game.set_pose(1, -2, 16)
    assert game.lock_piece()
    assert sent == [4]
    assert game.attacks_sent == 4
    assert game.b2b == 1
    assert game.combo == 0


def test_clear_cancels_pending_garbage_first():
    sent = []
    game = make_game(on_attack=sent.append)
    game.receive_attack(3)
    tetris_ready(game)
    game.set_pose(1, -2, 16)
    game.lock_piece()
    assert sent == [1]
    assert game.pending_garbage_total() == 0


def test_spin_needs_a_rotation():
    for as_rotation, attack in ((False, 0), (True, 4)):
        game = make_game()
        game.board[19, :] = GARBAGE
        game.board[19, 4] = 0
        game.board[18, :] = GARBAGE
        game.board[18, 3:6] = 0
        game.board[17, 3] = GARBAGE
        game.current_kind = TetrominoType.T
        assert game.set_pose(2, 3, 17, as_rotation=as_rotation)
        assert game.lock_piece()
        assert game.last_lock.lines_cleared == 2
        assert game.last_lock.is_spin is as_rotation
        assert game.last_lock.attack == attack


def test_finesse_counts_wasted_taps():
    game = make_game()
    assert game.move(-1) and game.move(1)
    game.hard_drop_and_spawn()
    assert game.finesse_errors == 1


def test_state_overlays_falling_piece():
    game = make_game()
    game.current_kind = TetrominoType.T
    game.x, game.y, game.rotation = 3, 0, 0
    state = game.get_state()
    assert state[0, 4] == -int(TetrominoType.T)
    assert np.all(state[1, 3:6] == -int(TetrominoType.T))
    assert not game.board.any()


def test_step_hard_drop():
    game = make_game()
    _, attack, done, info = game.step(Action.HARD_DROP)
    assert attack == 0
    assert not done
    assert info["pieces_placed"] == 1


def test_snapshot_restore_continues_identically():
    a = make_game(11)
    a.hard_drop_and_spawn()
    a.receive_attack(2)
    a.hard_drop_and_spawn()
    snap = json.loads(json.dumps(a.snapshot()))

    b = make_game(99)
    b.restore(snap)
    assert b.current_kind == a.current_kind
    assert b.queue == a.queue
    assert np.array_equal(b.board, a.board)
    for _ in range(5):
        a.receive_attack(1)
        b.receive_attack(1)
        assert a.hard_drop_and_spawn() == b.hard_drop_and_spawn()
        assert a.current_kind == b.current_kind
        assert np.array_equal(a.board, b.board)


def test_restore_clamps_malformed_payload():
    game = make_game()
    game.restore({
        "board": [["G"] * 12, "bad", ["T", 0, "?"]],
        "current_piece": "T",
        "rotation": 9,
        "combo": -10,
        "b2b": "many",
        "pending_garbage": [{"lines": 99, "hole_column": -4}],
        "rng_state": "garbage",
    })
    assert game.board.shape == (20, 10)
    assert np.all(game.board[17] == GARBAGE)
    assert not game.board[18].any()
    assert game.board[19, 0] == TetrominoType.T
    assert game.board[19, 2] == GARBAGE
    assert game.rotation == 3
    assert game.combo == -1
    assert game.b2b == 0
    assert game.garbage.to_list() == [{"lines": 10, "hole_column": 0}]
    assert len(game.queue) == 6


def test_restore_ignores_non_list_sequences():
    game = make_game()
    game.restore({"current_piece": "T", "queue": 5, "bag": "IJL", "pending_garbage": 3})
    assert game.current_kind == TetrominoType.T
    assert len(game.queue) == 6
    assert game.pending_garbage_total() == 0


def test_restore_clamps_non_finite_numbers():
    game = make_game()
    game.restore(json.loads(
        '{"current_piece": "S", "pieces_placed": Infinity, "combo": -Infinity,'
        ' "x": NaN, "board": [[Infinity, 0]]}'
    ))
    assert game.pieces_placed == 0
    assert game.combo == -1
    assert game.x == spawn_column(TetrominoType.S)
    assert game.board[19, 0] == GARBAGE
    assert game.board[19, 1] == 0


def test_restore_ignores_out_of_range_generator_state():
    game = make_game()
    expected = game.rng.getstate()
    game.restore({"current_piece": "O", "queue": list("IJLSZT"), "rng_state": [3, [-1] * 625, None]})
    assert game.rng.getstate() == expected


def test_restore_without_active_piece_spawns_one():
    game = make_game()
    game.restore({"queue": ["L", "J", "S", "Z", "O", "I"]})
    assert game.current_kind == TetrominoType.L
    assert not game.game_over
    assert len(game.queue) == 6
    assert game.update(16.0)


def test_restore_ignores_non_mapping():
    game = make_game()
    before = game.snapshot()
    game.restore(["not", "a", "snapshot"])
    assert game.snapshot() == before
