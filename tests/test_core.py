import pytest

from arena_api.core import (
    EMPTY_BOARD,
    WINNING_LINES,
    GameResult,
    IllegalMove,
    Mark,
    Outcome,
    Position,
    TicTacToeGame,
    TurnViolation,
    board_from_rows,
    empty_cells,
    find_winner,
    is_empty,
    is_full,
    is_in_bounds,
    is_legal_move,
    outcome_for,
    place_mark,
)

DRAW_SEQUENCE = [
    (Position(0, 0), Mark.X),
    (Position(0, 1), Mark.O),
    (Position(0, 2), Mark.X),
    (Position(1, 1), Mark.O),
    (Position(1, 0), Mark.X),
    (Position(2, 0), Mark.O),
    (Position(2, 1), Mark.X),
    (Position(1, 2), Mark.O),
    (Position(2, 2), Mark.X),
]


def test_bounds_and_emptiness():
    board = board_from_rows(["X..", "...", "..O"])
    assert is_in_bounds(Position(2, 2))
    assert not is_in_bounds(Position(3, 0))
    assert not is_in_bounds(Position(0, -1))
    assert not is_empty(board, Position(0, 0))
    assert not is_empty(board, Position(5, 5))
    assert is_empty(board, Position(1, 1))
    assert is_legal_move(board, Position(1, 1))
    assert not is_legal_move(board, Position(2, 2))
    assert not is_legal_move(board, Position(-1, 1))


def test_is_full():
    assert not is_full(EMPTY_BOARD)
    assert is_full(board_from_rows(["XOX", "XOO", "OXX"]))
    assert not is_full(board_from_rows(["XOX", "XOO", "OX."]))


def test_empty_cells_row_major():
    board = board_from_rows(["X.O", ".X.", "O.."])
    assert empty_cells(board) == [Position(0, 1), Position(1, 0), Position(1, 2), Position(2, 1), Position(2, 2)]


def test_place_mark_returns_new_board():
    board = place_mark(EMPTY_BOARD, Position(1, 2), Mark.O)
    assert board[1][2] is Mark.O
    assert EMPTY_BOARD[1][2] is Mark.EMPTY


def test_fresh_engine_x_moves_first():
    state = TicTacToeGame().get_game_state()
    assert state.board == EMPTY_BOARD
    assert state.current_player is Mark.X
    assert state.result is GameResult.IN_PROGRESS
    assert state.winner is None


def test_turn_flips_after_each_non_terminal_move():
    game = TicTacToeGame()
    assert game.apply_move(Position(0, 0), Mark.X) is GameResult.IN_PROGRESS
    assert game.get_game_state().current_player is Mark.O
    assert game.apply_move(Position(1, 1), Mark.O) is GameResult.IN_PROGRESS
    assert game.get_game_state().current_player is Mark.X


def test_turn_does_not_flip_after_win():
    game = TicTacToeGame()
    for position, mark in [((0, 0), Mark.X), ((1, 0), Mark.O), ((0, 1), Mark.X), ((1, 1), Mark.O)]:
        game.apply_move(position, mark)
    assert game.apply_move(Position(0, 2), Mark.X) is GameResult.WIN
    assert game.get_game_state().current_player is Mark.X


def test_wrong_player_is_turn_violation_and_state_unchanged():
    game = TicTacToeGame()
    before = game.get_game_state()
    with pytest.raises(TurnViolation):
        game.apply_move(Position(0, 0), Mark.O)
    assert game.get_game_state() == before


def test_plain_string_marks_are_accepted():
    game = TicTacToeGame()
    with pytest.raises(TurnViolation, match="It is X's turn, not O's"):
        game.apply_move((0, 0), "O")
    assert game.apply_move((0, 0), "X") is GameResult.IN_PROGRESS
    assert game.get_game_state().board[0][0] is Mark.X


@pytest.mark.parametrize("position", [Position(3, 0), Position(0, 3), Position(-1, 2)])
def test_out_of_bounds_is_illegal_and_state_unchanged(position):
    game = TicTacToeGame()
    before = game.get_game_state()
    with pytest.raises(IllegalMove):
        game.apply_move(position, Mark.X)
    assert game.get_game_state() == before


def test_occupied_cell_is_illegal_and_state_unchanged():
    game = TicTacToeGame()
    game.apply_move(Position(1, 1), Mark.X)
    before = game.get_game_state()
    with pytest.raises(IllegalMove):
        game.apply_move(Position(1, 1), Mark.O)
    assert game.get_game_state() == before


def test_no_moves_after_terminal_result():
    game = TicTacToeGame()
    for position, mark in [((0, 0), Mark.X), ((1, 0), Mark.O), ((0, 1), Mark.X), ((1, 1), Mark.O), ((0, 2), Mark.X)]:
        game.apply_move(position, mark)
    before = game.get_game_state()
    with pytest.raises(IllegalMove):
        game.apply_move(Position(2, 2), Mark.X)
    with pytest.raises(IllegalMove):
        game.apply_move(Position(2, 2), Mark.O)
    assert game.get_game_state() == before


@pytest.mark.parametrize("line", WINNING_LINES)
@pytest.mark.parametrize("mark", [Mark.X, Mark.O])
def test_every_winning_line_is_detected(line, mark):
    board = EMPTY_BOARD
    for position in line:
        board = place_mark(board, position, mark)
    game = TicTacToeGame()
    game.board = board

    winner = game.check_winner()
    assert winner is not None
    assert winner.player is mark
    assert winner.combination == line
    assert game.is_game_over()


def test_first_line_in_table_order_is_reported():
    # Row 0 and column 0 are both complete.
    board = board_from_rows(["XXX", "XOO", "XOO"])
    winner = find_winner(board)
    assert winner.combination == WINNING_LINES[0]


def test_full_board_without_line_is_draw():
    game = TicTacToeGame()
    results = [game.apply_move(position, mark) for position, mark in DRAW_SEQUENCE]
    assert results[:-1] == [GameResult.IN_PROGRESS] * 8
    assert results[-1] is GameResult.DRAW
    state = game.get_game_state()
    assert state.result is GameResult.DRAW
    assert state.winner is None


def test_snapshots_are_stable():
    game = TicTacToeGame()
    game.apply_move(Position(0, 0), Mark.X)
    first = game.get_game_state()
    assert game.get_game_state() == first

    game.apply_move(Position(2, 2), Mark.O)
    assert first.board[2][2] is Mark.EMPTY
    assert first.current_player is Mark.O
    assert game.get_game_state().board[2][2] is Mark.O


def test_snapshot_board_cannot_be_mutated():
    state = TicTacToeGame().get_game_state()
    with pytest.raises(TypeError):
        state.board[0][0] = Mark.X


def test_serialized_board_is_a_copy():
    game = TicTacToeGame()
    game.apply_move(Position(0, 0), Mark.X)
    serialized = game.serialize_board()
    assert serialized[0] == ["X", None, None]
    serialized[1][1] = "O"
    assert game.get_game_state().board[1][1] is Mark.EMPTY


def test_reset_returns_to_initial_state():
    game = TicTacToeGame()
    for position, mark in DRAW_SEQUENCE:
        game.apply_move(position, mark)
    game.reset()
    assert game.get_game_state() == TicTacToeGame().get_game_state()
    assert game.apply_move(Position(1, 1), Mark.X) is GameResult.IN_PROGRESS


def test_reachable_boards_keep_mark_balance():
    seen = set()

    def explore(board, to_move):
        if board in seen:
            return
        seen.add(board)
        flat = [cell for row in board for cell in row]
        x_count, o_count = flat.count(Mark.X), flat.count(Mark.O)
        assert x_count == o_count or x_count == o_count + 1
        if find_winner(board) is not None or is_full(board):
            return
        for move in empty_cells(board):
            explore(place_mark(board, move, to_move), to_move.opponent())

    explore(EMPTY_BOARD, Mark.X)
    assert len(seen) == 5478


def test_outcome_for_human():
    game = TicTacToeGame()
    assert outcome_for(game.get_game_state(), Mark.X) is None

    for position, mark in [((0, 0), Mark.X), ((1, 0), Mark.O), ((0, 1), Mark.X), ((1, 1), Mark.O), ((0, 2), Mark.X)]:
        game.apply_move(position, mark)
    assert outcome_for(game.get_game_state(), Mark.X) is Outcome.WIN
    assert outcome_for(game.get_game_state(), Mark.O) is Outcome.LOSS

    game.reset()
    for position, mark in DRAW_SEQUENCE:
        game.apply_move(position, mark)
    assert outcome_for(game.get_game_state(), Mark.X) is Outcome.DRAW


def test_opponent_of_empty_is_an_error():
    assert Mark.X.opponent() is Mark.O
    with pytest.raises(ValueError):
        Mark.EMPTY.opponent()
