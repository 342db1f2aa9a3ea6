"""One-shot flash messages carried in a cookie across a redirect."""

import base64
from typing import Optional, Tuple
from urllib.parse import quote

from fastapi import Response
from fastapi.responses import RedirectResponse

FLASH_COOKIE = "flash_message"
FLASH_MAX_AGE = 60


def set_flash(response: Response, kind: str, content: str) -> None:
    """Attach a flash message ("success", "error", "info", "warning") to a response."""
    encoded = base64.b64encode(f"{kind}:{content}".encode("utf-8")).decode("ascii")
    response.set_cookie(
        FLASH_COOKIE,
        encoded,
        max_age=FLASH_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
    )


def decode_flash(value: Optional[str]) -> Optional[Tuple[str, str]]:
    """Decode a flash cookie value into (kind, content)."""
    if not value:
        return None
    try:
        decoded = base64.b64decode(value).decode("utf-8")
    except ValueError:
        return None
    kind, sep, content = decoded.partition(":")
    if not sep:
        return None
    return kind, content


def folder_url(folder_path: str) -> str:
    """URL of the files page for a folder."""
    if not folder_path or folder_path == "/":
        return "/files"
    return "/files?folder=" + quote(folder_path, safe="")


def redirect_with_flash(url: str, kind: str, content: str) -> RedirectResponse:
    """303 redirect carrying a flash message."""
    response = RedirectResponse(url, status_code=303)
    set_flash(response, kind, content)
    return response
