"""Minimal ``multipart/form-data`` decoder for single-file uploads.

Only the first part that carries a ``filename="..."`` attribute is returned.
The boundary is either supplied by the caller (usually taken from the
``Content-Type`` header) or sniffed from the first ``--<token>\\r\\n`` line of
the body. Part content starts after the first blank line of the part and loses
one trailing CRLF, which is the delimiter that precedes the next boundary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath, PureWindowsPath
from typing import Optional

from ..errors import BadRequestError

_BOUNDARY_PATTERN = re.compile(rb"--(.+?)\r\n")
_FILENAME_PATTERN = re.compile(rb'filename="(.+?)"')
_CONTENT_TYPE_BOUNDARY = re.compile(r'boundary=(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)
_HEADER_TERMINATOR = b"\r\n\r\n"
_CRLF = b"\r\n"


class MultipartError(BadRequestError):
    default_message = "Invalid request body"


class MalformedBody(MultipartError):
    """No boundary could be located."""


class NoFileFound(MultipartError):
    default_message = "Invalid file"


class EmptyContent(MultipartError):
    default_message = "Invalid file"


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.content.decode(encoding)


def boundary_from_content_type(content_type: Optional[str]) -> Optional[str]:
    """Return the ``boundary`` parameter of a ``Content-Type`` header, if any."""

    if not content_type:
        return None
    match = _CONTENT_TYPE_BOUNDARY.search(content_type)
    if match is None:
        return None
    return match.group(1) or match.group(2)


def _sniff_boundary(body: bytes) -> bytes:
    match = _BOUNDARY_PATTERN.search(body)
    if match is None:
        raise MalformedBody()
    return match.group(1)


def _safe_filename(raw: bytes) -> str:
    name = raw.decode("utf-8", errors="replace")
    # Browsers on Windows may send full client paths.
    return PurePosixPath(PureWindowsPath(name).name).name


def decode_single_file(body: bytes, boundary: Optional[str] = None) -> UploadedFile:
    """Extract the first uploaded file from a multipart *body*."""

    token = boundary.encode("latin-1") if boundary else _sniff_boundary(body)
    delimiter = b"--" + token
    if delimiter not in body:
        raise MalformedBody()

    for part in body.split(delimiter):
        header_end = part.find(_HEADER_TERMINATOR)
        headers = part if header_end < 0 else part[:header_end]
        filename_match = _FILENAME_PATTERN.search(headers)
        if filename_match is None:
            continue

        if header_end < 0:
            content = b""
        else:
            content = part[header_end + len(_HEADER_TERMINATOR):]
        if content.endswith(_CRLF):
            content = content[: -len(_CRLF)]

        filename = _safe_filename(filename_match.group(1))
        if not filename:
            raise NoFileFound()
        if not content:
            raise EmptyContent()
        return UploadedFile(filename=filename, content=content)

    raise NoFileFound()


__all__ = [
    "EmptyContent",
    "MalformedBody",
    "MultipartError",
    "NoFileFound",
    "UploadedFile",
    "boundary_from_content_type",
    "decode_single_file",
]
