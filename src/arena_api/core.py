from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Optional, Tuple

BOARD_SIZE = 3


class Mark(str, Enum):
    """Cell value. EMPTY is a real mark, never None."""

    X = "X"
    O = "O"
    EMPTY = ""

    def opponent(self) -> "Mark":
        if self is Mark.EMPTY:
            raise ValueError("EMPTY has no opponent")
        return Mark.O if self is Mark.X else Mark.X


class Position(NamedTuple):
    row: int
    col: int


Board = Tuple[Tuple[Mark, Mark, Mark], Tuple[Mark, Mark, Mark], Tuple[Mark, Mark, Mark]]

EMPTY_BOARD: Board = tuple(tuple(Mark.EMPTY for _ in range(BOARD_SIZE)) for _ in range(BOARD_SIZE))

WINNING_LINES: Tuple[Tuple[Position, Position, Position], ...] = (
    # Rows
    (Position(0, 0), Position(0, 1), Position(0, 2)),
    (Position(1, 0), Position(1, 1), Position(1, 2)),
    (Position(2, 0), Position(2, 1), Position(2, 2)),
    # Columns
    (Position(0, 0), Position(1, 0), Position(2, 0)),
    (Position(0, 1), Position(1, 1), Position(2, 1)),
    (Position(0, 2), Position(1, 2), Position(2, 2)),
    # Diagonals
    (Position(0, 0), Position(1, 1), Position(2, 2)),
    (Position(0, 2), Position(1, 1), Position(2, 0)),
)


class GameResult(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    WIN = "WIN"
    DRAW = "DRAW"


class Outcome(str, Enum):
    """Result of a finished game as seen by the human player."""

    WIN = "WIN"
    LOSS = "LOSS"
    DRAW = "DRAW"


@dataclass(frozen=True)
class Winner:
    player: Mark
    combination: Tuple[Position, Position, Position]


@dataclass(frozen=True)
class GameState:
    """Immutable snapshot of an engine."""

    board: Board
    current_player: Mark
    result: GameResult
    winner: Optional[Winner]


class EngineError(Exception):
    """Base class for rejected engine operations."""


class IllegalMove(EngineError):
    """Position out of bounds, already occupied, or the game is over."""


class TurnViolation(EngineError):
    """A move was submitted for the player who does not hold the turn."""


class NoLegalMoveAvailable(Exception):
    """A strategy was asked to move on a full board."""


# PUBLIC_INTERFACE
def is_in_bounds(position: Position) -> bool:
    row, col = position
    return 0 <= row < BOARD_SIZE and 0 <= col < BOARD_SIZE


# PUBLIC_INTERFACE
def is_empty(board: Board, position: Position) -> bool:
    if not is_in_bounds(position):
        return False
    return board[position[0]][position[1]] is Mark.EMPTY


# PUBLIC_INTERFACE
def is_legal_move(board: Board, position: Position) -> bool:
    return is_in_bounds(position) and is_empty(board, position)


# PUBLIC_INTERFACE
def is_full(board: Board) -> bool:
    return all(cell is not Mark.EMPTY for row in board for cell in row)


# PUBLIC_INTERFACE
def empty_cells(board: Board) -> List[Position]:
    """Empty positions in row-major order."""
    return [
        Position(row, col)
        for row in range(BOARD_SIZE)
        for col in range(BOARD_SIZE)
        if board[row][col] is Mark.EMPTY
    ]


# PUBLIC_INTERFACE
def place_mark(board: Board, position: Position, mark: Mark) -> Board:
    """Return a new board with `mark` written at `position`."""
    return tuple(
        tuple(mark if (row, col) == tuple(position) else board[row][col] for col in range(BOARD_SIZE))
        for row in range(BOARD_SIZE)
    )


# PUBLIC_INTERFACE
def find_winner(board: Board) -> Optional[Winner]:
    """First completed line in table order, or None."""
    for line in WINNING_LINES:
        first = board[line[0].row][line[0].col]
        if first is Mark.EMPTY:
            continue
        if all(board[pos.row][pos.col] is first for pos in line):
            return Winner(player=first, combination=line)
    return None


# PUBLIC_INTERFACE
def board_from_rows(rows: List[str]) -> Board:
    """Build a board from three strings such as ``"XO."`` (``.`` or space is empty)."""
    if len(rows) != BOARD_SIZE or any(len(r) != BOARD_SIZE for r in rows):
        raise ValueError("board must be 3 rows of 3 cells")
    lookup = {"X": Mark.X, "O": Mark.O, ".": Mark.EMPTY, " ": Mark.EMPTY}
    return tuple(tuple(lookup[ch] for ch in r) for r in rows)


class TicTacToeGame:
    """Core game logic for Tic Tac Toe.

    Owns the board and the current player. X always moves first.
    """

    def __init__(self):
        self.board: Board = EMPTY_BOARD
        self.current: Mark = Mark.X

    # PUBLIC_INTERFACE
    def apply_move(self, position: Position, player: Mark) -> GameResult:
        """Place `player`'s mark at `position` and return the new result.

        Raises TurnViolation or IllegalMove without touching the state.
        """
        position = Position(*position)
        player = Mark(player)
        if self.is_game_over():
            raise IllegalMove("Game is already over")
        if player is not self.current:
            raise TurnViolation(f"It is {self.current.value}'s turn, not {player.value}'s")
        if not is_in_bounds(position):
            raise IllegalMove(f"Position ({position.row}, {position.col}) is out of bounds")
        if not is_empty(self.board, position):
            raise IllegalMove(f"Cell ({position.row}, {position.col}) is already occupied")

        self.board = place_mark(self.board, position, player)

        if find_winner(self.board) is not None:
            return GameResult.WIN
        if is_full(self.board):
            return GameResult.DRAW

        self.current = self.current.opponent()
        return GameResult.IN_PROGRESS

    # PUBLIC_INTERFACE
    def check_winner(self) -> Optional[Winner]:
        return find_winner(self.board)

    # PUBLIC_INTERFACE
    def is_game_over(self) -> bool:
        return self.check_winner() is not None or is_full(self.board)

    # PUBLIC_INTERFACE
    def get_game_state(self) -> GameState:
        winner = self.check_winner()
        if winner is not None:
            result = GameResult.WIN
        elif is_full(self.board):
            result = GameResult.DRAW
        else:
            result = GameResult.IN_PROGRESS
        return GameState(board=self.board, current_player=self.current, result=result, winner=winner)

    # PUBLIC_INTERFACE
    def reset(self) -> None:
        self.board = EMPTY_BOARD
        self.current = Mark.X

    # PUBLIC_INTERFACE
    def serialize_board(self) -> List[List[Optional[str]]]:
        return serialize_board(self.board)


# PUBLIC_INTERFACE
def serialize_board(board: Board) -> List[List[Optional[str]]]:
    """JSON-friendly copy of a board: "X", "O" or None per cell."""
    return [[cell.value if cell is not Mark.EMPTY else None for cell in row] for row in board]


# PUBLIC_INTERFACE
def outcome_for(state: GameState, human_mark: Mark) -> Optional[Outcome]:
    """Translate an engine result into the human's perspective.

    Returns None while the game is still in progress.
    """
    if state.result is GameResult.DRAW:
        return Outcome.DRAW
    if state.result is GameResult.WIN:
        return Outcome.WIN if state.winner.player is human_mark else Outcome.LOSS
    return None
