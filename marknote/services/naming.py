"""Helpers for generated identifiers and collision-free file names."""

from __future__ import annotations

import random
import string
import time
from typing import Callable, Optional

__all__ = [
    "epoch_millis",
    "to_base36",
    "random_base36",
    "build_token",
    "build_disambiguated_name",
    "build_image_name",
]

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def epoch_millis(clock: Callable[[], float] = time.time) -> int:
    """Return the current time from *clock* as integer milliseconds."""

    return int(clock() * 1000)


def to_base36(value: int) -> str:
    """Return the lowercase base-36 representation of a non-negative *value*."""

    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def random_base36(length: int, rng: Optional[random.Random] = None) -> str:
    """Return *length* random base-36 characters."""

    source = rng or random
    return "".join(source.choice(_BASE36_ALPHABET) for _ in range(length))


def build_token(
    *,
    clock: Callable[[], float] = time.time,
    rng: Optional[random.Random] = None,
    random_length: int = 8,
) -> str:
    """Return an opaque id made of a base-36 timestamp and a random tail."""

    return to_base36(epoch_millis(clock)) + random_base36(random_length, rng)


def build_disambiguated_name(stem: str, extension: str, *, timestamp: int) -> str:
    """Return ``<stem><timestamp><extension>``, used when ``<stem><extension>`` is taken."""

    return f"{stem}{timestamp}{extension}"


def build_image_name(
    extension: str,
    *,
    clock: Callable[[], float] = time.time,
    rng: Optional[random.Random] = None,
) -> str:
    """Return a stored image name such as ``1700000000000_k3j9x0ab.png``."""

    suffix = extension.lower()
    if suffix and not suffix.startswith("."):
        suffix = f".{suffix}"
    return f"{epoch_millis(clock)}_{random_base36(8, rng)}{suffix}"
