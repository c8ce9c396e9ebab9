"""MarkNote: file-backed Markdown notes with captcha login and share links."""

__version__ = "1.0.0"
