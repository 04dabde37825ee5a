"""Computer opponents.

Three strategies share a few free functions instead of a base class. Every
strategy is built for one mark and answers ``decide_move(board)`` without
touching the board it is given.
"""

import logging
import random
from enum import Enum
from functools import lru_cache
from typing import Callable, Dict, List, Optional, Protocol

from .core import (
    WINNING_LINES,
    Board,
    Mark,
    NoLegalMoveAvailable,
    Position,
    empty_cells,
    find_winner,
    is_empty,
    is_full,
    place_mark,
)

logger = logging.getLogger(__name__)

CENTER = Position(1, 1)
CORNERS = (Position(0, 0), Position(0, 2), Position(2, 0), Position(2, 2))

SMART_MOVE_PROBABILITY = 0.3

WIN_SCORE = 10
LOSS_SCORE = -10
DRAW_SCORE = 0


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class Strategy(Protocol):
    mark: Mark

    def decide_move(self, board: Board) -> Position:
        ...


# PUBLIC_INTERFACE
def find_line_completion(board: Board, mark: Mark) -> Optional[Position]:
    """Empty cell of the first line holding two `mark`s and one empty cell."""
    for line in WINNING_LINES:
        cells = [board[pos.row][pos.col] for pos in line]
        if cells.count(mark) == 2 and cells.count(Mark.EMPTY) == 1:
            return line[cells.index(Mark.EMPTY)]
    return None


# PUBLIC_INTERFACE
def random_legal_move(board: Board, rng: random.Random) -> Position:
    """Uniform choice among the current empty cells."""
    moves = empty_cells(board)
    if not moves:
        raise NoLegalMoveAvailable("No empty cells left on the board")
    return rng.choice(moves)


# PUBLIC_INTERFACE
def smart_move(board: Board, mark: Mark, rng: random.Random) -> Optional[Position]:
    """Priority chain: win, block, center, a random corner, any cell."""
    winning = find_line_completion(board, mark)
    if winning is not None:
        return winning

    blocking = find_line_completion(board, mark.opponent())
    if blocking is not None:
        return blocking

    if is_empty(board, CENTER):
        return CENTER

    corners = [corner for corner in CORNERS if is_empty(board, corner)]
    if corners:
        return rng.choice(corners)

    moves = empty_cells(board)
    if moves:
        return rng.choice(moves)
    return None


def _check_mark(mark: Mark) -> Mark:
    mark = Mark(mark)
    if mark is Mark.EMPTY:
        raise ValueError("AI cannot play the EMPTY mark")
    return mark


def _require_open_cell(board: Board) -> None:
    if is_full(board):
        raise NoLegalMoveAvailable("Strategy asked to move on a full board")


class EasyStrategy:
    """Plays the smart move 30% of the time, a random move otherwise."""

    def __init__(self, mark: Mark, rng: Optional[random.Random] = None):
        self.mark = _check_mark(mark)
        self.rng = rng or random.Random()

    # PUBLIC_INTERFACE
    def decide_move(self, board: Board) -> Position:
        _require_open_cell(board)
        if self.rng.random() < SMART_MOVE_PROBABILITY:
            move = smart_move(board, self.mark, self.rng)
            if move is not None:
                return move
        return random_legal_move(board, self.rng)


class MediumStrategy:
    """Deterministic priority chain with random corner and fallback picks."""

    def __init__(self, mark: Mark, rng: Optional[random.Random] = None):
        self.mark = _check_mark(mark)
        self.rng = rng or random.Random()

    # PUBLIC_INTERFACE
    def decide_move(self, board: Board) -> Position:
        _require_open_cell(board)
        move = smart_move(board, self.mark, self.rng)
        if move is None:
            return random_legal_move(board, self.rng)
        return move


@lru_cache(maxsize=None)
def _minimax(board: Board, depth: int, maximizing: bool, ai_mark: Mark) -> int:
    winner = find_winner(board)
    if winner is not None:
        if winner.player is ai_mark:
            return WIN_SCORE - depth  # faster wins score higher
        return LOSS_SCORE + depth  # slower losses score higher
    if is_full(board):
        return DRAW_SCORE

    to_move = ai_mark if maximizing else ai_mark.opponent()
    scores = [
        _minimax(place_mark(board, move, to_move), depth + 1, not maximizing, ai_mark)
        for move in empty_cells(board)
    ]
    return max(scores) if maximizing else min(scores)


# PUBLIC_INTERFACE
def minimax(board: Board, depth: int, maximizing: bool, ai_mark: Mark) -> int:
    """Exhaustive minimax score of `board` from `ai_mark`'s point of view.

    A win for the AI scores ``10 - depth``, a loss ``-10 + depth`` and a
    full board without a line 0.
    """
    return _minimax(board, depth, maximizing, _check_mark(ai_mark))


class HardStrategy:
    """Exhaustive minimax. Never loses."""

    def __init__(self, mark: Mark):
        self.mark = _check_mark(mark)

    # PUBLIC_INTERFACE
    def decide_move(self, board: Board) -> Position:
        _require_open_cell(board)
        best_score: Optional[int] = None
        best_move: Optional[Position] = None

        for move in empty_cells(board):
            score = _minimax(place_mark(board, move, self.mark), 0, False, self.mark)
            if best_score is None or score > best_score:
                best_score = score
                best_move = move

        logger.debug("Hard AI (%s) picked %s with score %s", self.mark.value, best_move, best_score)
        return best_move


_STRATEGIES: Dict[Difficulty, Callable[..., Strategy]] = {
    Difficulty.EASY: EasyStrategy,
    Difficulty.MEDIUM: MediumStrategy,
    Difficulty.HARD: HardStrategy,
}


# PUBLIC_INTERFACE
def create_strategy(difficulty: Difficulty, mark: Mark, rng: Optional[random.Random] = None) -> Strategy:
    """Build the opponent for `difficulty` playing `mark`."""
    strategy_cls = _STRATEGIES[Difficulty(difficulty)]
    if strategy_cls is HardStrategy:
        return strategy_cls(mark)
    return strategy_cls(mark, rng)


# PUBLIC_INTERFACE
def available_difficulties() -> List[Difficulty]:
    return list(_STRATEGIES)
