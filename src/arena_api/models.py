from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional, Literal
from datetime import datetime

from .ai import Difficulty
from .core import Outcome


# PUBLIC_INTERFACE
class AvatarPreset(BaseModel):
    """A selectable profile picture."""
    id: str = Field(..., description="Avatar ID, e.g. avatar-01.")
    name: str = Field(..., description="Display name.")
    url: str = Field(..., description="Relative URL of the image.")
    category: Optional[str] = Field(None, description="Grouping used by the picker.")


# PUBLIC_INTERFACE
class ProfileCreateRequest(BaseModel):
    """Request model for creating a local player profile."""
    name: str = Field(..., min_length=2, max_length=20, description="Player name (2-20 chars, trimmed).")
    avatar_id: str = Field(..., description="One of the avatar preset IDs.")
    preferred_difficulty: Difficulty = Field(Difficulty.MEDIUM, description="Default AI level for new games.")

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value


# PUBLIC_INTERFACE
class ProfileUpdateRequest(BaseModel):
    """Partial profile update; omitted fields keep their value."""
    name: Optional[str] = Field(None, min_length=2, max_length=20, description="New player name.")
    avatar_id: Optional[str] = Field(None, description="New avatar preset ID.")
    preferred_difficulty: Optional[Difficulty] = Field(None, description="New default AI level.")

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value


# PUBLIC_INTERFACE
class UserProfile(BaseModel):
    """Stored player profile."""
    id: str = Field(..., description="Profile ID.")
    name: str
    avatar_id: str
    created_at: datetime
    updated_at: datetime
    preferred_difficulty: Difficulty
    version: int


# PUBLIC_INTERFACE
class TokenResponse(BaseModel):
    """Returned authentication token after creating a profile."""
    access_token: str = Field(..., description="JWT access token for future requests.")
    token_type: str = Field(default="bearer", description="Type of the token.")
    profile: UserProfile


# PUBLIC_INTERFACE
class GameStartRequest(BaseModel):
    """Request model to start a new game against the AI."""
    difficulty: Optional[Difficulty] = Field(None, description="AI level; defaults to the profile's preferred difficulty.")


# PUBLIC_INTERFACE
class WinnerInfo(BaseModel):
    player: Literal["X", "O"]
    combination: List[List[int]] = Field(..., description="The three [row, col] cells of the winning line.")


# PUBLIC_INTERFACE
class GameStartResponse(BaseModel):
    game_id: int
    difficulty: Difficulty
    human_mark: str
    ai_mark: str
    board: List[List[Optional[str]]]
    next_turn: str


# PUBLIC_INTERFACE
class MoveRequest(BaseModel):
    """Request model for making a move."""
    game_id: int = Field(..., description="Game session ID.")
    row: int = Field(..., ge=0, le=2, description="Row in board (0-2).")
    col: int = Field(..., ge=0, le=2, description="Col in board (0-2).")


# PUBLIC_INTERFACE
class MoveResponse(BaseModel):
    """Response after a move; includes new state and messages."""
    board: List[List[Optional[str]]]
    status: Literal["continue", "won", "lost", "draw", "invalid"]
    message: Optional[str] = None
    error: Optional[str] = Field(None, description="IllegalMove or TurnViolation when status is invalid.")
    winner: Optional[WinnerInfo] = None
    next_turn: Optional[str] = None
    ai_move: Optional[List[int]] = Field(None, description="[row, col] of the AI reply, if one was made.")
    outcome: Optional[Outcome] = Field(None, description="Result from the human's perspective once the game is over.")
    promo_code: Optional[str] = None
    notification_text: Optional[str] = Field(None, description="Text the client may forward to the notification relay.")
    unlocked_achievements: List[str] = Field(default_factory=list)


# PUBLIC_INTERFACE
class GameStats(BaseModel):
    wins: int = 0
    losses: int = 0
    draws: int = 0
    win_rate: float = 0.0


# PUBLIC_INTERFACE
class GameStatistics(BaseModel):
    total_games: int = 0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    win_rate: float = Field(0.0, description="Percentage of games won, rounded to 2 decimals.")
    current_streak: int = 0
    best_streak: int = 0
    games_by_difficulty: Dict[Difficulty, GameStats] = Field(
        default_factory=lambda: {difficulty: GameStats() for difficulty in Difficulty}
    )
    last_played: Optional[datetime] = None
    version: int = 1


# PUBLIC_INTERFACE
class GameHistoryItem(BaseModel):
    id: str
    result: Outcome
    difficulty: Difficulty
    duration: Optional[int] = Field(None, description="Game length in seconds.")
    timestamp: datetime
    promo_code: Optional[str] = None


# PUBLIC_INTERFACE
class GameHistoryResponse(BaseModel):
    history: List[GameHistoryItem]


# PUBLIC_INTERFACE
class Achievement(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    unlocked_at: Optional[datetime] = None
    progress: int = 0
    max_progress: int


# PUBLIC_INTERFACE
class AchievementsResponse(BaseModel):
    achievements: List[Achievement]


# PUBLIC_INTERFACE
class TelegramSendRequest(BaseModel):
    """Body accepted by the notification relay."""
    message: Optional[str] = Field(None, description="Text to send (1-1000 chars after sanitizing).")
    code: Optional[str] = Field(None, description="Promo code; when present a win message is sent instead.")


# PUBLIC_INTERFACE
class TelegramSendResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    message_id: Optional[int] = None
    error: Optional[str] = None
