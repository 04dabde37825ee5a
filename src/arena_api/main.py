import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import jwt
import uvicorn
from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer

from . import config
from .ai import Difficulty, available_difficulties, create_strategy
from .core import (
    EngineError,
    GameResult,
    GameState,
    Mark,
    Outcome,
    Position,
    TicTacToeGame,
    outcome_for,
)
from .models import (
    AchievementsResponse,
    AvatarPreset,
    GameHistoryResponse,
    GameStartRequest,
    GameStartResponse,
    GameStatistics,
    MoveRequest,
    MoveResponse,
    ProfileCreateRequest,
    ProfileUpdateRequest,
    TelegramSendRequest,
    TelegramSendResponse,
    TokenResponse,
    UserProfile,
    WinnerInfo,
)
from .notifications import (
    NotifierConfigError,
    RateLimiter,
    RateLimitResult,
    TelegramNotifier,
    lose_message,
    sanitize_string,
    validate_message,
    validate_relay_promo_code,
    win_message,
)
from .promo import generate_promo_code
from .storage import AVATARS, InvalidAvatar, PlayerRecords

logger = logging.getLogger(__name__)

HUMAN = Mark(config.HUMAN_MARK)
AI = Mark(config.AI_MARK)

# In-memory state; games are not kept across restarts.
records = PlayerRecords()
sessions_db: Dict[int, dict] = {}  # game_id: {game, strategy, profile_id, difficulty, started, ...}
game_id_counter = 1
relay_rate_limiter = RateLimiter()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="profile")

app = FastAPI(
    title="Tic Tac Toe vs AI API",
    description="Backend for playing Tic Tac Toe against a computer opponent. Handles profiles, games, statistics, achievements and win notifications.",
    version="0.1.0",
    openapi_tags=[
        {"name": "profile", "description": "Local player profile and token"},
        {"name": "game", "description": "Start/play Tic Tac Toe games against the AI"},
        {"name": "stats", "description": "Statistics, game history and achievements"},
        {"name": "notify", "description": "Rate-limited Telegram relay"},
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


##---- Utility Functions ----##
# PUBLIC_INTERFACE
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token with optional expiry."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


async def get_current_profile(token: str = Depends(oauth2_scheme)) -> UserProfile:
    """Decode JWT and load the profile. Raises on error."""
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Could not validate credentials")
    profile_id = payload.get("sub")
    profile = records.profiles.get_profile(profile_id) if profile_id else None
    if profile is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return profile


def get_notifier() -> TelegramNotifier:
    return TelegramNotifier.from_env()


def _get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def _get_game(game_id: int, profile: UserProfile) -> dict:
    game_rec = sessions_db.get(game_id)
    if game_rec is None:
        raise HTTPException(status_code=404, detail="Game not found")
    if game_rec["profile_id"] != profile.id:
        raise HTTPException(status_code=403, detail="You are not a player in this game.")
    return game_rec


def _winner_info(state: GameState) -> Optional[WinnerInfo]:
    if state.winner is None:
        return None
    return WinnerInfo(
        player=state.winner.player.value,
        combination=[[pos.row, pos.col] for pos in state.winner.combination],
    )


def _finish_if_over(game_rec: dict, state: GameState) -> None:
    """Record a finished game exactly once."""
    outcome = outcome_for(state, HUMAN)
    if outcome is None or game_rec["recorded"]:
        return
    promo_code = generate_promo_code() if outcome is Outcome.WIN else None
    duration = int(time.monotonic() - game_rec["started"])
    unlocked = records.record_game_outcome(
        game_rec["profile_id"], outcome, game_rec["difficulty"], duration=duration, promo_code=promo_code
    )
    game_rec.update(recorded=True, outcome=outcome, promo_code=promo_code, unlocked=unlocked)
    logger.info(
        "Game %s finished: %s on %s after %ss", game_rec["id"], outcome.value, game_rec["difficulty"].value, duration
    )


def _build_response(game_rec: dict, ai_move: Optional[Position] = None) -> MoveResponse:
    game: TicTacToeGame = game_rec["game"]
    state = game.get_game_state()
    outcome = game_rec["outcome"] if game_rec["recorded"] else None
    ai_text = f"AI played at row={ai_move.row}, col={ai_move.col}" if ai_move else None

    if state.result is GameResult.IN_PROGRESS:
        status = "continue"
        message = "Continue playing." + (f" {ai_text}" if ai_text else "")
        notification_text = None
    elif outcome is Outcome.WIN:
        status = "won"
        message = f"You win! Promo code: {game_rec['promo_code']}"
        notification_text = win_message(game_rec["promo_code"])
    elif outcome is Outcome.LOSS:
        status = "lost"
        message = f"Winner is {state.winner.player.value}" + (f". {ai_text}" if ai_text else "")
        notification_text = lose_message()
    else:
        status = "draw"
        message = "It's a draw."
        notification_text = None

    return MoveResponse(
        board=game.serialize_board(),
        status=status,
        message=message,
        winner=_winner_info(state),
        next_turn=state.current_player.value if state.result is GameResult.IN_PROGRESS else None,
        ai_move=[ai_move.row, ai_move.col] if ai_move else None,
        outcome=outcome,
        promo_code=game_rec["promo_code"] if game_rec["recorded"] else None,
        notification_text=notification_text,
        unlocked_achievements=list(game_rec["unlocked"]) if game_rec["recorded"] else [],
    )


def _relay_headers(limit: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(relay_rate_limiter.max_requests),
        "X-RateLimit-Remaining": str(limit.remaining),
        "X-RateLimit-Reset": datetime.fromtimestamp(limit.reset_time, tz=timezone.utc).isoformat(),
    }


def _relay_error(status_code: int, error: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error}, headers=headers)


@app.get("/", tags=["health"])
def health_check():
    """Health check route for backend"""
    return {"message": "Healthy"}


# PUBLIC_INTERFACE
@app.get("/avatars", response_model=List[AvatarPreset], tags=["profile"], summary="List avatar presets")
def list_avatars():
    return AVATARS


# PUBLIC_INTERFACE
@app.get("/difficulties", response_model=List[Difficulty], tags=["game"], summary="List AI difficulty levels")
def list_difficulties():
    return available_difficulties()


# PUBLIC_INTERFACE
@app.post("/profile", response_model=TokenResponse, tags=["profile"], summary="Create profile")
async def create_profile(request: ProfileCreateRequest):
    """Create a local player profile. Returns JWT on success.

    Args:
        request (ProfileCreateRequest): Name, avatar and preferred difficulty.
    Returns:
        TokenResponse: Authentication JWT token and the stored profile.
    """
    try:
        profile = records.profiles.create_profile(request.name, request.avatar_id, request.preferred_difficulty)
    except InvalidAvatar as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    token = create_access_token({"sub": profile.id})
    return TokenResponse(access_token=token, token_type="bearer", profile=profile)


# PUBLIC_INTERFACE
@app.get("/profile", response_model=UserProfile, tags=["profile"], summary="Get current profile")
async def get_profile(profile: UserProfile = Depends(get_current_profile)):
    return profile


# PUBLIC_INTERFACE
@app.put("/profile", response_model=UserProfile, tags=["profile"], summary="Update current profile")
async def update_profile(request: ProfileUpdateRequest, profile: UserProfile = Depends(get_current_profile)):
    try:
        return records.profiles.update_profile(
            profile.id,
            name=request.name,
            avatar_id=request.avatar_id,
            preferred_difficulty=request.preferred_difficulty,
        )
    except InvalidAvatar as exc:
        raise HTTPException(status_code=422, detail=str(exc))


# PUBLIC_INTERFACE
@app.delete("/profile", status_code=204, tags=["profile"], summary="Delete account")
async def delete_profile(profile: UserProfile = Depends(get_current_profile)):
    """Delete the profile together with its statistics, history, achievements and games."""
    for gid in [gid for gid, rec in sessions_db.items() if rec["profile_id"] == profile.id]:
        del sessions_db[gid]
    records.delete_account(profile.id)


# PUBLIC_INTERFACE
@app.post("/new_game", response_model=GameStartResponse, tags=["game"], summary="Start new game")
async def start_game(request: GameStartRequest, profile: UserProfile = Depends(get_current_profile)):
    """Start a new game against the AI. The player is X and moves first."""
    global game_id_counter
    difficulty = request.difficulty or profile.preferred_difficulty
    game = TicTacToeGame()
    game_rec = {
        "id": game_id_counter,
        "game": game,
        "strategy": create_strategy(difficulty, AI),
        "profile_id": profile.id,
        "difficulty": difficulty,
        "started": time.monotonic(),
        "recorded": False,
        "outcome": None,
        "promo_code": None,
        "unlocked": [],
    }
    sessions_db[game_id_counter] = game_rec
    gid = game_id_counter
    game_id_counter += 1
    logger.info("Game %s started for profile %s on %s", gid, profile.id, difficulty.value)
    return GameStartResponse(
        game_id=gid,
        difficulty=difficulty,
        human_mark=HUMAN.value,
        ai_mark=AI.value,
        board=game.serialize_board(),
        next_turn=game.current.value,
    )


# PUBLIC_INTERFACE
@app.post("/make_move", response_model=MoveResponse, tags=["game"], summary="Make a move")
async def make_move(request: MoveRequest, profile: UserProfile = Depends(get_current_profile)):
    """Play a move, let the AI answer, and return the new state.

    Rejected moves leave the game untouched and come back with status "invalid".
    """
    game_rec = _get_game(request.game_id, profile)
    game: TicTacToeGame = game_rec["game"]

    try:
        result = game.apply_move(Position(request.row, request.col), HUMAN)
    except EngineError as exc:
        logger.debug("Rejected move in game %s: %s", game_rec["id"], exc)
        state = game.get_game_state()
        return MoveResponse(
            board=game.serialize_board(),
            status="invalid",
            message=str(exc),
            error=type(exc).__name__,
            winner=_winner_info(state),
            next_turn=state.current_player.value if state.result is GameResult.IN_PROGRESS else None,
        )

    ai_move = None
    if result is GameResult.IN_PROGRESS:
        ai_move = game_rec["strategy"].decide_move(game.board)
        game.apply_move(ai_move, AI)

    _finish_if_over(game_rec, game.get_game_state())
    return _build_response(game_rec, ai_move)


# PUBLIC_INTERFACE
@app.get("/game_state/{game_id}", response_model=MoveResponse, tags=["game"], summary="Get current game state")
async def get_game_state(game_id: int, profile: UserProfile = Depends(get_current_profile)):
    """Get board state and info for a game."""
    return _build_response(_get_game(game_id, profile))


# PUBLIC_INTERFACE
@app.post("/reset_game/{game_id}", response_model=MoveResponse, tags=["game"], summary="Restart a game")
async def reset_game(game_id: int, profile: UserProfile = Depends(get_current_profile)):
    """Clear the board of an existing game; difficulty stays the same."""
    game_rec = _get_game(game_id, profile)
    game_rec["game"].reset()
    game_rec.update(started=time.monotonic(), recorded=False, outcome=None, promo_code=None, unlocked=[])
    return _build_response(game_rec)


# PUBLIC_INTERFACE
@app.get("/statistics", response_model=GameStatistics, tags=["stats"], summary="Get statistics")
async def get_statistics(profile: UserProfile = Depends(get_current_profile)):
    return records.statistics.get_statistics(profile.id)


# PUBLIC_INTERFACE
@app.delete("/statistics", status_code=204, tags=["stats"], summary="Reset statistics")
async def reset_statistics(profile: UserProfile = Depends(get_current_profile)):
    records.statistics.reset_statistics(profile.id)


# PUBLIC_INTERFACE
@app.get("/game_history", response_model=GameHistoryResponse, tags=["stats"], summary="Get game history")
async def get_history(profile: UserProfile = Depends(get_current_profile)):
    """Finished games of the current profile, newest first (at most 50)."""
    return GameHistoryResponse(history=records.statistics.get_game_history(profile.id))


# PUBLIC_INTERFACE
@app.delete("/game_history", status_code=204, tags=["stats"], summary="Clear game history")
async def clear_history(profile: UserProfile = Depends(get_current_profile)):
    records.statistics.clear_game_history(profile.id)


# PUBLIC_INTERFACE
@app.get("/achievements", response_model=AchievementsResponse, tags=["stats"], summary="Get achievements")
async def get_achievements(profile: UserProfile = Depends(get_current_profile)):
    return AchievementsResponse(achievements=records.achievements.get_achievements(profile.id))


# PUBLIC_INTERFACE
@app.post("/telegram", response_model=TelegramSendResponse, tags=["notify"], summary="Send a Telegram notification")
async def relay_telegram(body: TelegramSendRequest, request: Request):
    """Forward a game result message to the configured Telegram chat.

    Limited to 5 requests per minute per client IP. A request carrying a
    promo code sends the win message for that code.
    """
    client_ip = _get_client_ip(request)
    limit = relay_rate_limiter.check_limit(client_ip)
    if not limit.allowed:
        logger.warning("Rate limit exceeded for %s", client_ip)
        headers = _relay_headers(limit)
        headers["Retry-After"] = str(max(0, int(limit.reset_time - time.time() + 0.999)))
        return _relay_error(429, "Too many requests, try again later", headers)

    if not body.message:
        return _relay_error(400, "Field 'message' is required and must be a string")
    message = sanitize_string(body.message)
    error = validate_message(message)
    if error:
        return _relay_error(400, error)
    if body.code:
        error = validate_relay_promo_code(body.code)
        if error:
            return _relay_error(400, error)

    try:
        notifier = get_notifier()
    except NotifierConfigError as exc:
        logger.error("Telegram relay is not configured: %s", exc)
        return _relay_error(500, "Notification service is not configured")

    if body.code:
        result = await notifier.send_win_message(body.code)
    else:
        result = await notifier.send_message(message)

    if not result.success:
        logger.error("Telegram API error: %s", result.error)
        return _relay_error(500, result.error or "Failed to send message")

    logger.info("Telegram message sent (message_id=%s, has_code=%s)", result.message_id, bool(body.code))
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Message sent", "message_id": result.message_id},
        headers=_relay_headers(limit),
    )


# PUBLIC_INTERFACE
def run():
    """Configure logging and serve the app with uvicorn."""
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
