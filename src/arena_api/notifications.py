"""Telegram notification relay: rate limiting, input checks and the bot client."""

import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import httpx

from . import config

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 1000
MIN_PROMO_CODE_LENGTH = 3
MAX_PROMO_CODE_LENGTH = 50
_RELAY_PROMO_CODE_PATTERN = re.compile(r"^[A-Z0-9-]+$")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float  # epoch seconds


@dataclass(frozen=True)
class _Window:
    count: int
    reset_time: float


class RateLimiter:
    """Fixed window request counter keyed by client identifier."""

    def __init__(
        self,
        max_requests: int = config.RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = config.RATE_LIMIT_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
        cleanup_interval: float = config.RATE_LIMIT_CLEANUP_SECONDS,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.cleanup_interval = cleanup_interval
        self._windows: Dict[str, _Window] = {}
        self._last_cleanup = clock()

    def __len__(self) -> int:
        return len(self._windows)

    # PUBLIC_INTERFACE
    def check_limit(self, identifier: str) -> RateLimitResult:
        """Count one request for `identifier` and report whether it may pass."""
        now = self.clock()
        if now - self._last_cleanup >= self.cleanup_interval:
            self.cleanup()
        window = self._windows.get(identifier)

        if window is None or now > window.reset_time:
            reset_time = now + self.window_seconds
            self._windows[identifier] = _Window(count=1, reset_time=reset_time)
            return RateLimitResult(allowed=True, remaining=self.max_requests - 1, reset_time=reset_time)

        if window.count >= self.max_requests:
            return RateLimitResult(allowed=False, remaining=0, reset_time=window.reset_time)

        count = window.count + 1
        self._windows[identifier] = _Window(count=count, reset_time=window.reset_time)
        return RateLimitResult(allowed=True, remaining=self.max_requests - count, reset_time=window.reset_time)

    # PUBLIC_INTERFACE
    def reset_limit(self, identifier: str) -> None:
        self._windows.pop(identifier, None)

    # PUBLIC_INTERFACE
    def cleanup(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self.clock()
        self._last_cleanup = now
        expired = [key for key, window in self._windows.items() if now > window.reset_time]
        for key in expired:
            del self._windows[key]
        return len(expired)


# PUBLIC_INTERFACE
def sanitize_string(value: str) -> str:
    if not isinstance(value, str):
        return ""
    return _CONTROL_CHARS.sub("", value).strip()


# PUBLIC_INTERFACE
def validate_message(message: str) -> Optional[str]:
    """Return an error text, or None when the message is acceptable."""
    if not isinstance(message, str):
        return "Message must be a string"
    if not message.strip():
        return "Message must not be empty"
    if len(message) > MAX_MESSAGE_LENGTH:
        return f"Message must not be longer than {MAX_MESSAGE_LENGTH} characters"
    return None


# PUBLIC_INTERFACE
def validate_relay_promo_code(code: str) -> Optional[str]:
    if not isinstance(code, str):
        return "Promo code must be a string"
    if len(code) < MIN_PROMO_CODE_LENGTH:
        return f"Promo code must be at least {MIN_PROMO_CODE_LENGTH} characters"
    if len(code) > MAX_PROMO_CODE_LENGTH:
        return f"Promo code must not be longer than {MAX_PROMO_CODE_LENGTH} characters"
    if not _RELAY_PROMO_CODE_PATTERN.match(code):
        return "Promo code may only contain uppercase letters, digits and dashes"
    return None


# PUBLIC_INTERFACE
def win_message(code: str) -> str:
    return f"🎉 Victory! Promo code issued: {code}"


# PUBLIC_INTERFACE
def lose_message() -> str:
    return "😊 Defeat"


class NotifierConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: Optional[int] = None
    error: Optional[str] = None


class TelegramNotifier:
    """Sends plain text messages to one chat through the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        api_url: str = config.TELEGRAM_API_URL,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not bot_token or not chat_id:
            raise NotifierConfigError("Telegram bot token and chat ID are required")
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_url = api_url
        self.client = client

    # PUBLIC_INTERFACE
    @classmethod
    def from_env(cls, client: Optional[httpx.AsyncClient] = None) -> "TelegramNotifier":
        bot_token = os.getenv("TELEGRAM_BOT_TOKEN")
        chat_id = os.getenv("TELEGRAM_CHAT_ID")
        if not bot_token or not chat_id:
            raise NotifierConfigError("TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID must be set")
        return cls(bot_token, chat_id, client=client)

    # PUBLIC_INTERFACE
    async def send_message(self, text: str) -> SendResult:
        """POST sendMessage. Transport and API failures come back as a failed SendResult."""
        url = f"{self.api_url}{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": text}
        try:
            if self.client is not None:
                response = await self.client.post(url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=config.TELEGRAM_TIMEOUT_SECONDS) as client:
                    response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.error("Telegram request failed: %s", exc.__class__.__name__)
            return SendResult(success=False, error=str(exc) or exc.__class__.__name__)

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            return SendResult(success=False, error=data.get("description") or f"HTTP {response.status_code}")
        if not data.get("ok"):
            return SendResult(success=False, error=data.get("description") or "Unknown error")
        return SendResult(success=True, message_id=(data.get("result") or {}).get("message_id"))

    # PUBLIC_INTERFACE
    async def send_win_message(self, code: str) -> SendResult:
        return await self.send_message(win_message(code))

    # PUBLIC_INTERFACE
    async def send_lose_message(self) -> SendResult:
        return await self.send_message(lose_message())
