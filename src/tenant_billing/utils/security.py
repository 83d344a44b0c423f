"""Helpers for the public payment surface.

Payment links are addressed by an opaque random token, never by invoice id
or number, so knowing one invoice's link reveals nothing about another.
"""

import hmac
import secrets
from collections.abc import Iterable
from typing import Any

MIN_TOKEN_BYTES = 8

# Key fragments whose values never reach the logs
DEFAULT_SENSITIVE_KEYS: tuple[str, ...] = (
    "payment_token",
    "payment_reference",
    "token",
    "secret",
    "password",
    "database_url",
    "redis_url",
)

MASK = "MASKED"


def generate_payment_token(nbytes: int = 16) -> str:
    """Return a hex payment-link token with *nbytes* bytes of CSPRNG entropy.

    Example:
        ```python
        token = generate_payment_token()
        link = f"https://app.example.com/pay/{token}"
        ```
    """
    if nbytes < MIN_TOKEN_BYTES:
        raise ValueError(f"payment tokens need at least {MIN_TOKEN_BYTES} bytes of randomness")
    return secrets.token_hex(nbytes)


def constant_time_compare(expected: str, supplied: str) -> bool:
    """Token equality that takes the same time wherever the strings differ."""
    return hmac.compare_digest(expected.encode(), supplied.encode())


def mask_payment_details(
    data: dict[str, Any],
    sensitive_keys: Iterable[str] | None = None,
    mask_char: str = "*",
) -> dict[str, Any]:
    """Copy *data* with payment-sensitive values replaced for logging.

    A key is sensitive when it contains any of *sensitive_keys*
    (case-insensitive).  ``None`` values are kept so logs still show the
    field was absent.

    Example:
        ```python
        mask_payment_details({"number": "INV-10001", "payment_token": "ab12..."})
        # {"number": "INV-10001", "payment_token": "***MASKED***"}
        ```
    """
    fragments = tuple(sensitive_keys) if sensitive_keys is not None else DEFAULT_SENSITIVE_KEYS
    hidden = f"{mask_char * 3}{MASK}{mask_char * 3}"
    return {
        key: hidden
        if value is not None and any(fragment in key.lower() for fragment in fragments)
        else value
        for key, value in data.items()
    }


__all__ = [
    "DEFAULT_SENSITIVE_KEYS",
    "constant_time_compare",
    "generate_payment_token",
    "mask_payment_details",
]
