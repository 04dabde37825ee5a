"""In-memory player records: profile, statistics, game history, achievements.

Everything is keyed by profile id. Values are pydantic models and are copied
on the way in and out, so callers never hold a reference into the store.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .ai import Difficulty
from .core import Outcome
from .models import (
    Achievement,
    AvatarPreset,
    GameHistoryItem,
    GameStatistics,
    GameStats,
    UserProfile,
)

logger = logging.getLogger(__name__)

PROFILE_KEY = "profile"
STATISTICS_KEY = "statistics"
HISTORY_KEY = "game_history"
ACHIEVEMENTS_KEY = "achievements"

PERFECT_GAME_MAX_SECONDS = 30

AVATARS: List[AvatarPreset] = [
    AvatarPreset(id=f"avatar-{index:02d}", name=name, url=f"/avatars/avatar-{index:02d}.svg", category=category)
    for index, (name, category) in enumerate(
        [
            ("Classic", "classic"),
            ("Stylish", "modern"),
            ("Elegant", "elegant"),
            ("Friendly", "friendly"),
            ("Bright", "vibrant"),
            ("Gentle", "soft"),
            ("Contemporary", "modern"),
            ("Romantic", "romantic"),
            ("Energetic", "energetic"),
            ("Calm", "calm"),
            ("Playful", "playful"),
            ("Confident", "confident"),
            ("Dreamy", "dreamy"),
            ("Cheerful", "cheerful"),
            ("Unique", "unique"),
        ],
        start=1,
    )
]
_AVATAR_IDS = {avatar.id for avatar in AVATARS}

ACHIEVEMENT_DEFINITIONS: List[Achievement] = [
    Achievement(id="FIRST_WIN", name="First win", description="Win your first game", icon="🎉", max_progress=1),
    Achievement(id="WIN_STREAK_5", name="Hot streak", description="Win 5 games in a row", icon="🔥", max_progress=5),
    Achievement(id="WIN_STREAK_10", name="Unstoppable", description="Win 10 games in a row", icon="⭐", max_progress=10),
    Achievement(id="PERFECT_GAME", name="Perfect game", description="Win a game in 30 seconds or less", icon="💎", max_progress=1),
    Achievement(id="HARD_MODE_WIN", name="Hard mode master", description="Beat the hard AI", icon="🏆", max_progress=1),
    Achievement(id="TOTAL_WINS_10", name="Beginner", description="Win 10 games", icon="🥉", max_progress=10),
    Achievement(id="TOTAL_WINS_50", name="Experienced", description="Win 50 games", icon="🥈", max_progress=50),
    Achievement(id="TOTAL_WINS_100", name="Legend", description="Win 100 games", icon="🥇", max_progress=100),
    Achievement(id="NO_LOSSES_5", name="Invincible", description="Play 5 games in a row without losing", icon="🛡️", max_progress=5),
    Achievement(id="ALL_DIFFICULTIES", name="All-rounder", description="Win on every difficulty", icon="🎯", max_progress=3),
    Achievement(id="FIRST_LOSS", name="First loss", description="Lose your first game", icon="😔", max_progress=1),
    Achievement(id="FIRST_DRAW", name="First draw", description="Play your first draw", icon="🤝", max_progress=1),
    Achievement(id="TOTAL_LOSSES_10", name="Persistence", description="Lose 10 games and keep playing", icon="💪", max_progress=10),
    Achievement(id="TOTAL_DRAWS_5", name="Stalemate", description="Play 5 draws", icon="⚖️", max_progress=5),
]


class InvalidAvatar(ValueError):
    pass


class ProfileNotFound(LookupError):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


# PUBLIC_INTERFACE
def avatar_exists(avatar_id: str) -> bool:
    return avatar_id in _AVATAR_IDS


class MemoryStorage:
    """Key/value buckets, one per profile."""

    def __init__(self):
        self._buckets: Dict[str, Dict[str, Any]] = {}

    def get(self, profile_id: str, key: str) -> Any:
        value = self._buckets.get(profile_id, {}).get(key)
        return _copy(value)

    def set(self, profile_id: str, key: str, value: Any) -> None:
        self._buckets.setdefault(profile_id, {})[key] = _copy(value)

    def remove(self, profile_id: str, key: str) -> None:
        self._buckets.get(profile_id, {}).pop(key, None)

    def drop(self, profile_id: str) -> None:
        self._buckets.pop(profile_id, None)


def _copy(value: Any) -> Any:
    if isinstance(value, list):
        return [_copy(item) for item in value]
    if hasattr(value, "model_copy"):
        return value.model_copy(deep=True)
    return value


class ProfileService:
    def __init__(self, storage: MemoryStorage):
        self.storage = storage

    # PUBLIC_INTERFACE
    def create_profile(self, name: str, avatar_id: str, preferred_difficulty: Difficulty) -> UserProfile:
        if not avatar_exists(avatar_id):
            raise InvalidAvatar(f"Unknown avatar id: {avatar_id}")
        now = _now()
        profile = UserProfile(
            id=str(uuid.uuid4()),
            name=name.strip(),
            avatar_id=avatar_id,
            created_at=now,
            updated_at=now,
            preferred_difficulty=preferred_difficulty,
            version=config.STORAGE_VERSION,
        )
        self.storage.set(profile.id, PROFILE_KEY, profile)
        logger.info("Created profile %s", profile.id)
        return profile

    # PUBLIC_INTERFACE
    def get_profile(self, profile_id: str) -> Optional[UserProfile]:
        return self.storage.get(profile_id, PROFILE_KEY)

    # PUBLIC_INTERFACE
    def update_profile(
        self,
        profile_id: str,
        name: Optional[str] = None,
        avatar_id: Optional[str] = None,
        preferred_difficulty: Optional[Difficulty] = None,
    ) -> UserProfile:
        profile = self.get_profile(profile_id)
        if profile is None:
            raise ProfileNotFound(profile_id)
        if avatar_id is not None and not avatar_exists(avatar_id):
            raise InvalidAvatar(f"Unknown avatar id: {avatar_id}")

        changes: Dict[str, Any] = {"updated_at": _now(), "version": config.STORAGE_VERSION}
        if name is not None:
            changes["name"] = name.strip()
        if avatar_id is not None:
            changes["avatar_id"] = avatar_id
        if preferred_difficulty is not None:
            changes["preferred_difficulty"] = preferred_difficulty

        updated = profile.model_copy(update=changes)
        self.storage.set(profile_id, PROFILE_KEY, updated)
        return updated


class StatisticsService:
    def __init__(self, storage: MemoryStorage, max_history: int = config.MAX_HISTORY_SIZE):
        self.storage = storage
        self.max_history = max_history

    # PUBLIC_INTERFACE
    def get_statistics(self, profile_id: str) -> GameStatistics:
        statistics = self.storage.get(profile_id, STATISTICS_KEY)
        if statistics is None:
            return GameStatistics(version=config.STORAGE_VERSION)
        return statistics

    # PUBLIC_INTERFACE
    def update_statistics(
        self,
        profile_id: str,
        outcome: Outcome,
        difficulty: Difficulty,
        duration: Optional[int] = None,
        promo_code: Optional[str] = None,
    ) -> GameStatistics:
        """Fold one finished game into the totals and the history."""
        current = self.get_statistics(profile_id)
        updated = _apply_outcome(current, Outcome(outcome), Difficulty(difficulty))
        self.storage.set(profile_id, STATISTICS_KEY, updated)
        self.add_game_to_history(profile_id, outcome, difficulty, duration, promo_code)
        return updated

    # PUBLIC_INTERFACE
    def reset_statistics(self, profile_id: str) -> None:
        self.storage.remove(profile_id, STATISTICS_KEY)

    # PUBLIC_INTERFACE
    def get_game_history(self, profile_id: str) -> List[GameHistoryItem]:
        return self.storage.get(profile_id, HISTORY_KEY) or []

    # PUBLIC_INTERFACE
    def add_game_to_history(
        self,
        profile_id: str,
        outcome: Outcome,
        difficulty: Difficulty,
        duration: Optional[int] = None,
        promo_code: Optional[str] = None,
    ) -> GameHistoryItem:
        item = GameHistoryItem(
            id=str(uuid.uuid4()),
            result=outcome,
            difficulty=difficulty,
            duration=duration,
            timestamp=_now(),
            promo_code=promo_code,
        )
        # Newest first
        history = [item] + self.get_game_history(profile_id)
        self.storage.set(profile_id, HISTORY_KEY, history[: self.max_history])
        return item

    # PUBLIC_INTERFACE
    def clear_game_history(self, profile_id: str) -> None:
        self.storage.remove(profile_id, HISTORY_KEY)


def _win_rate(wins: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(wins / total * 100, 2)


def _apply_outcome(current: GameStatistics, outcome: Outcome, difficulty: Difficulty) -> GameStatistics:
    wins, losses, draws = current.wins, current.losses, current.draws
    current_streak, best_streak = current.current_streak, current.best_streak

    if outcome is Outcome.WIN:
        wins += 1
        current_streak += 1
        best_streak = max(best_streak, current_streak)
    elif outcome is Outcome.DRAW:
        draws += 1
        current_streak = 0
    else:
        losses += 1
        current_streak = 0

    by_difficulty = dict(current.games_by_difficulty)
    level = by_difficulty.get(difficulty, GameStats())
    level_wins = level.wins + (outcome is Outcome.WIN)
    level_losses = level.losses + (outcome is Outcome.LOSS)
    level_draws = level.draws + (outcome is Outcome.DRAW)
    by_difficulty[difficulty] = GameStats(
        wins=level_wins,
        losses=level_losses,
        draws=level_draws,
        win_rate=_win_rate(level_wins, level_wins + level_losses + level_draws),
    )
    for missing in Difficulty:
        by_difficulty.setdefault(missing, GameStats())

    total_games = current.total_games + 1
    return GameStatistics(
        total_games=total_games,
        wins=wins,
        losses=losses,
        draws=draws,
        win_rate=_win_rate(wins, total_games),
        current_streak=current_streak,
        best_streak=best_streak,
        games_by_difficulty=by_difficulty,
        last_played=_now(),
        version=config.STORAGE_VERSION,
    )


class AchievementsService:
    def __init__(self, storage: MemoryStorage):
        self.storage = storage

    # PUBLIC_INTERFACE
    def get_achievements(self, profile_id: str) -> List[Achievement]:
        stored = self.storage.get(profile_id, ACHIEVEMENTS_KEY)
        if stored is None:
            return [definition.model_copy() for definition in ACHIEVEMENT_DEFINITIONS]
        # Definitions added after the profile was created start locked.
        by_id = {achievement.id: achievement for achievement in stored}
        return [by_id.get(definition.id, definition.model_copy()) for definition in ACHIEVEMENT_DEFINITIONS]

    # PUBLIC_INTERFACE
    def check_achievements(
        self,
        profile_id: str,
        statistics: GameStatistics,
        history: List[GameHistoryItem],
    ) -> List[str]:
        """Recompute progress and return the ids unlocked by this check."""
        newly_unlocked: List[str] = []
        updated: List[Achievement] = []
        now = _now()

        for achievement in self.get_achievements(profile_id):
            if achievement.unlocked_at is not None:
                updated.append(achievement)
                continue
            progress, unlocked = _progress(achievement.id, statistics, history)
            if unlocked:
                newly_unlocked.append(achievement.id)
            updated.append(
                achievement.model_copy(
                    update={
                        "progress": min(progress, achievement.max_progress),
                        "unlocked_at": now if unlocked else None,
                    }
                )
            )

        self.storage.set(profile_id, ACHIEVEMENTS_KEY, updated)
        if newly_unlocked:
            logger.info("Profile %s unlocked %s", profile_id, ", ".join(newly_unlocked))
        return newly_unlocked

    # PUBLIC_INTERFACE
    def reset_achievements(self, profile_id: str) -> None:
        self.storage.remove(profile_id, ACHIEVEMENTS_KEY)


def _threshold(value: int, target: int) -> Tuple[int, bool]:
    return min(value, target), value >= target


def _progress(achievement_id: str, stats: GameStatistics, history: List[GameHistoryItem]) -> Tuple[int, bool]:
    level_wins = {difficulty: stats.games_by_difficulty.get(difficulty, GameStats()).wins for difficulty in Difficulty}

    if achievement_id == "FIRST_WIN":
        return _threshold(stats.wins, 1)
    if achievement_id == "WIN_STREAK_5":
        return _threshold(stats.current_streak, 5)
    if achievement_id == "WIN_STREAK_10":
        return _threshold(stats.current_streak, 10)
    if achievement_id == "PERFECT_GAME":
        perfect = any(
            game.result is Outcome.WIN and game.duration is not None and game.duration <= PERFECT_GAME_MAX_SECONDS
            for game in history
        )
        return int(perfect), perfect
    if achievement_id == "HARD_MODE_WIN":
        return _threshold(level_wins[Difficulty.HARD], 1)
    if achievement_id == "TOTAL_WINS_10":
        return _threshold(stats.wins, 10)
    if achievement_id == "TOTAL_WINS_50":
        return _threshold(stats.wins, 50)
    if achievement_id == "TOTAL_WINS_100":
        return _threshold(stats.wins, 100)
    if achievement_id == "NO_LOSSES_5":
        recent = history[:5]
        not_lost = sum(1 for game in recent if game.result is not Outcome.LOSS)
        return min(not_lost, 5), len(recent) == 5 and not_lost == 5
    if achievement_id == "ALL_DIFFICULTIES":
        won_levels = sum(1 for wins in level_wins.values() if wins > 0)
        return won_levels, won_levels >= 3
    if achievement_id == "FIRST_LOSS":
        return _threshold(stats.losses, 1)
    if achievement_id == "FIRST_DRAW":
        return _threshold(stats.draws, 1)
    if achievement_id == "TOTAL_LOSSES_10":
        return _threshold(stats.losses, 10)
    if achievement_id == "TOTAL_DRAWS_5":
        return _threshold(stats.draws, 5)
    return 0, False


class PlayerRecords:
    """Facade over the profile, statistics and achievements services."""

    def __init__(self, storage: Optional[MemoryStorage] = None):
        self.storage = storage or MemoryStorage()
        self.profiles = ProfileService(self.storage)
        self.statistics = StatisticsService(self.storage)
        self.achievements = AchievementsService(self.storage)

    # PUBLIC_INTERFACE
    def record_game_outcome(
        self,
        profile_id: str,
        outcome: Outcome,
        difficulty: Difficulty,
        duration: Optional[int] = None,
        promo_code: Optional[str] = None,
    ) -> List[str]:
        """Write a finished game and return the newly unlocked achievement ids."""
        statistics = self.statistics.update_statistics(profile_id, outcome, difficulty, duration, promo_code)
        history = self.statistics.get_game_history(profile_id)
        return self.achievements.check_achievements(profile_id, statistics, history)

    # PUBLIC_INTERFACE
    def delete_account(self, profile_id: str) -> None:
        self.storage.drop(profile_id)
        logger.info("Deleted profile %s", profile_id)
