"""Single shared login read from a ``[username]:[password]`` line."""

from __future__ import annotations

import hmac
import re
from dataclasses import dataclass
from pathlib import Path

from ..errors import InternalError

_CREDENTIAL_PATTERN = re.compile(r"\[([^\]]+)\]:\[([^\]]+)\]")


class CredentialsMissingError(InternalError):
    default_message = "Login configuration file does not exist"


class CredentialsFormatError(InternalError):
    default_message = "Login configuration is malformed"


@dataclass(frozen=True)
class Credentials:
    username: str
    password: str


class CredentialStore:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Credentials:
        if not self._path.is_file():
            raise CredentialsMissingError()
        match = _CREDENTIAL_PATTERN.search(self._path.read_text(encoding="utf-8"))
        if match is None:
            raise CredentialsFormatError()
        return Credentials(username=match.group(1), password=match.group(2))

    def verify(self, username: str, password: str) -> bool:
        expected = self.load()
        user_ok = hmac.compare_digest(username.encode("utf-8"), expected.username.encode("utf-8"))
        pass_ok = hmac.compare_digest(password.encode("utf-8"), expected.password.encode("utf-8"))
        return user_ok and pass_ok

    def write(self, username: str, password: str) -> None:
        for value in (username, password):
            if not value or "[" in value or "]" in value:
                raise ValueError("username and password must be non-empty and free of brackets")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(f"[{username}]:[{password}]\n", encoding="utf-8")


__all__ = [
    "CredentialStore",
    "Credentials",
    "CredentialsFormatError",
    "CredentialsMissingError",
]
