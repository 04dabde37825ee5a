import re
import secrets

PROMO_CODE_LENGTH = 5
PROMO_CODE_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
_PROMO_CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


# PUBLIC_INTERFACE
def generate_promo_code() -> str:
    """Random 5 character code handed out to a player who beats the AI."""
    return "".join(secrets.choice(PROMO_CODE_CHARS) for _ in range(PROMO_CODE_LENGTH))


# PUBLIC_INTERFACE
def is_valid_promo_code(code: str) -> bool:
    return len(code) == PROMO_CODE_LENGTH and _PROMO_CODE_PATTERN.match(code) is not None
