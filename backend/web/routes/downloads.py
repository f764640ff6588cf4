"""
Blob download redirection: register a target, redeem it once.

``POST /api/blob-download`` stores ``{blobUrl, filename}`` for five minutes and
returns a one-time ``downloadUrl``. ``GET /api/blob-download?token=...`` renders
a small page that starts the download in the browser.
"""
from __future__ import annotations

import html
import json
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel

from coursework.errors import CourseworkError
from downloads import DownloadTarget, DownloadTokenRegistry, TokenExpiredError
from errors import error_response, private_response

downloads_router = APIRouter(tags=["Downloads"])
logger = logging.getLogger("campusboard.web.downloads")

REGISTRY = DownloadTokenRegistry()


def set_registry(registry: DownloadTokenRegistry) -> None:
    """Allow tests to use a registry with a controllable clock."""
    global REGISTRY
    REGISTRY = registry


class BlobDownloadIn(BaseModel):
    blobUrl: Optional[str] = None
    filename: Optional[str] = None


def _render_download_page(target: DownloadTarget, nonce: str) -> str:
    name = html.escape(target.filename)
    href = html.escape(target.url, quote=True)
    # json.dumps output is embedded in a script; escape "<" so it cannot close the tag.
    url_js = json.dumps(target.url).replace("<", "\\u003c")
    name_js = json.dumps(target.filename).replace("<", "\\u003c")
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Downloading {name}</title>
  </head>
  <body>
    <main>
      <h1>Downloading {name}</h1>
      <p>Your download should start automatically.</p>
      <p><a id="download-link" href="{href}" download="{name}" rel="noopener">Click here if it does not start</a></p>
    </main>
    <script nonce="{nonce}">
      (function () {{
        var a = document.createElement("a");
        a.href = {url_js};
        a.download = {name_js};
        document.body.appendChild(a);
        a.click();
      }})();
    </script>
  </body>
</html>
"""


@downloads_router.post("/api/blob-download")
async def register_blob_download(request: Request, payload: BlobDownloadIn):
    """Register a download target.

    Behavior:
        - 200 ``{success, downloadUrl}``
        - 400 missing ``blobUrl``
        - 413 when the serialized target exceeds 4000 bytes (no token issued)
    """
    try:
        token = REGISTRY.register(payload.blobUrl, payload.filename)
    except CourseworkError as exc:
        return error_response(exc, operation="register_blob_download")
    return private_response({"success": True, "downloadUrl": f"/api/blob-download?token={token}"}, status_code=200)


@downloads_router.get("/api/blob-download")
async def redeem_blob_download(request: Request, token: Optional[str] = None):
    try:
        target = REGISTRY.redeem(token)
    except TokenExpiredError:
        return private_response({"error": "gone", "detail": "token_expired"}, status_code=410)
    except CourseworkError as exc:
        return error_response(exc, operation="redeem_blob_download")
    nonce = secrets.token_urlsafe(16)
    headers = {
        "Cache-Control": "no-store",
        "Content-Security-Policy": f"default-src 'none'; script-src 'nonce-{nonce}'; base-uri 'none'",
    }
    return HTMLResponse(_render_download_page(target, nonce), status_code=200, headers=headers)


__all__ = ["downloads_router", "set_registry"]
