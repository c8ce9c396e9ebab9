"""Process-scoped owner of every MarkNote store."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional

from ..config import AppConfig
from .captcha import CaptchaStore
from .credentials import CredentialStore
from .images import ImageStore
from .notes import NoteRepository
from .shares import ShareRegistry

LOGGER = logging.getLogger(__name__)


class NoteWorkspace:
    """Bundle the note, image, share, captcha and credential stores.

    Hosts build one workspace at startup, hand it to the web layer, and call
    :meth:`close` at shutdown.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._config = config
        rng = rng or random.Random()
        self.images = ImageStore(config.images_root, clock=clock, rng=rng)
        self.notes = NoteRepository(config.notes_root, self.images, clock=clock)
        self.shares = ShareRegistry(config.shares_file, self.notes, clock=clock, rng=rng)
        self.captcha = CaptchaStore(clock=clock, rng=rng)
        self.credentials = CredentialStore(config.credentials_file)
        self._closed = False

    @classmethod
    def from_config(cls, config: AppConfig) -> "NoteWorkspace":
        return cls(config)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self.captcha.clear()
        self._closed = True
        LOGGER.debug("Workspace closed")


__all__ = ["NoteWorkspace"]
