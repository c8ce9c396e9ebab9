"""In-memory captcha challenges rendered as noisy SVG images."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from ..errors import BadRequestError
from .naming import build_token

LOGGER = logging.getLogger(__name__)

CAPTCHA_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
CAPTCHA_LENGTH = 4
CAPTCHA_TTL_SECONDS = 5 * 60

_IMAGE_WIDTH = 120
_IMAGE_HEIGHT = 40
_FONT_SIZE = 24
_NOISE_LINES = 5
_NOISE_DOTS = 30


class ChallengeExpired(BadRequestError):
    """Raised when a challenge id is unknown or past its expiry."""

    default_message = "Captcha has expired"


@dataclass(frozen=True)
class IssuedChallenge:
    challenge_id: str
    image: bytes

    content_type = "image/svg+xml"


@dataclass
class _Challenge:
    code: str
    expires_at: float


def _random_colour(rng: random.Random, ceiling: int) -> str:
    red, green, blue = (int(rng.random() * ceiling) for _ in range(3))
    return f"rgb({red}, {green}, {blue})"


def render_captcha_svg(code: str, rng: Optional[random.Random] = None) -> str:
    """Return an SVG drawing of *code* with distractor lines, dots and jitter."""

    rng = rng or random.Random()
    width, height = _IMAGE_WIDTH, _IMAGE_HEIGHT
    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}">',
        f'<rect width="{width}" height="{height}" fill="#f0f0f0"/>',
    ]

    for _ in range(_NOISE_LINES):
        x1, x2 = rng.random() * width, rng.random() * width
        y1, y2 = rng.random() * height, rng.random() * height
        parts.append(
            f'<line x1="{x1:.2f}" y1="{y1:.2f}" x2="{x2:.2f}" y2="{y2:.2f}" '
            f'stroke="{_random_colour(rng, 200)}" stroke-width="1"/>'
        )

    for _ in range(_NOISE_DOTS):
        x, y = rng.random() * width, rng.random() * height
        parts.append(
            f'<circle cx="{x:.2f}" cy="{y:.2f}" r="1" fill="{_random_colour(rng, 200)}"/>'
        )

    char_width = width / (len(code) + 1)
    baseline = height / 2 + _FONT_SIZE / 3
    for index, char in enumerate(code):
        x = char_width * (index + 1)
        rotation = (rng.random() - 0.5) * 30
        parts.append(
            f'<text x="{x:.2f}" y="{baseline:.2f}" font-size="{_FONT_SIZE}" '
            f'font-family="Arial" font-weight="bold" fill="{_random_colour(rng, 100)}" '
            f'transform="rotate({rotation:.2f}, {x:.2f}, {baseline:.2f})">{char}</text>'
        )

    parts.append("</svg>")
    return "".join(parts)


class CaptchaStore:
    """Hold issued challenges until they are verified once or expire."""

    def __init__(
        self,
        *,
        ttl_seconds: float = CAPTCHA_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._rng = rng or random.Random()
        self._challenges: Dict[str, _Challenge] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def __contains__(self, challenge_id: object) -> bool:
        with self._lock:
            return challenge_id in self._challenges

    def generate_code(self) -> str:
        return "".join(self._rng.choice(CAPTCHA_ALPHABET) for _ in range(CAPTCHA_LENGTH))

    def issue(self) -> IssuedChallenge:
        """Create a challenge and return its id with the rendered image."""

        self.sweep_expired()
        code = self.generate_code()
        svg = render_captcha_svg(code, self._rng)
        challenge_id = build_token(clock=self._clock, rng=self._rng, random_length=11)
        with self._lock:
            self._challenges[challenge_id] = _Challenge(
                code=code, expires_at=self._clock() + self._ttl
            )
        LOGGER.debug("Issued captcha challenge %s", challenge_id)
        return IssuedChallenge(challenge_id=challenge_id, image=svg.encode("utf-8"))

    def verify(self, challenge_id: str, guess: str) -> bool:
        """Consume *challenge_id* and report whether *guess* matches its code.

        Unknown or expired ids raise :class:`ChallengeExpired`. A known id is
        removed whatever the outcome, so each challenge answers only once.
        """

        with self._lock:
            challenge = self._challenges.pop(challenge_id, None)
        if challenge is None or challenge.expires_at < self._clock():
            raise ChallengeExpired()
        return challenge.code.lower() == str(guess).lower()

    def sweep_expired(self) -> int:
        """Drop every expired challenge and return how many were removed."""

        now = self._clock()
        with self._lock:
            expired = [key for key, item in self._challenges.items() if item.expires_at < now]
            for key in expired:
                del self._challenges[key]
        if expired:
            LOGGER.debug("Swept %s expired captcha challenge(s)", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._challenges.clear()


__all__ = [
    "CAPTCHA_ALPHABET",
    "CAPTCHA_LENGTH",
    "CAPTCHA_TTL_SECONDS",
    "CaptchaStore",
    "ChallengeExpired",
    "IssuedChallenge",
    "render_captcha_svg",
]
