"""
Authentication utilities.

This module handles:
- Request id, quick-connect code and challenge generation
- The wall clock used by the request stores
- Natural ordering of provider display names
"""

import base64
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Callable, List, Tuple, Union


Clock = Callable[[], datetime]

_ID_ALPHABET = string.ascii_lowercase + string.digits
_CODE_LETTERS = string.ascii_uppercase
_CODE_DIGITS = string.digits


def utc_now() -> datetime:
    """Default clock for the stores (timezone-aware UTC)."""
    return datetime.now(timezone.utc)


# =============================================================================
# Identifier Generation
# =============================================================================

def create_id(length: int = 32) -> str:
    """
    Generate an opaque request identifier.

    The id starts with a letter so it is safe to use anywhere an identifier
    is expected (the OAuth2 ``state`` parameter, HTML attributes, logs).

    Args:
        length: Total length of the identifier

    Returns:
        Lowercase alphanumeric string
    """
    head = secrets.choice(string.ascii_lowercase)
    tail = "".join(secrets.choice(_ID_ALPHABET) for _ in range(length - 1))
    return head + tail


def _random_string(charset: str, length: int) -> str:
    return "".join(secrets.choice(charset) for _ in range(length))


def generate_code() -> str:
    """
    Generate a human-enterable quick-connect code.

    Returns:
        Code in the form ``ABCD-1234-EFGH``
    """
    return "-".join([
        _random_string(_CODE_LETTERS, 4),
        _random_string(_CODE_DIGITS, 4),
        _random_string(_CODE_LETTERS, 4),
    ])


def generate_auth_challenge() -> str:
    """
    Generate the high-entropy secret handed only to a request's creator.

    Returns:
        64 random bytes, base64url encoded without padding
    """
    raw = secrets.token_bytes(64)
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def challenges_match(expected: str, received: str) -> bool:
    """Constant-time challenge comparison."""
    if not expected or not received:
        return False
    return secrets.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


def normalize_code(code: str) -> str:
    """Uppercase and trim a code typed in by a user."""
    return code.strip().upper()


# =============================================================================
# Sorting
# =============================================================================

_DIGIT_RUN = re.compile(r"(\d+)")


def natural_sort_key(value: str) -> List[Tuple[int, Union[int, str]]]:
    """
    Sort key ordering digit runs numerically ("Provider 2" < "Provider 10").

    Args:
        value: String to build a key for

    Returns:
        List usable as a ``sorted`` key
    """
    key = []
    for part in _DIGIT_RUN.split(value.casefold()):
        if not part:
            continue
        if part.isdigit():
            key.append((0, int(part)))
        else:
            key.append((1, part))
    return key
