"""
Minimal HTML pages so the gate's redirects have targets.

Rendering is intentionally plain; the app's UI lives elsewhere.
"""
from __future__ import annotations

import html

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

pages_router = APIRouter(tags=["Pages"])


def _page(title: str, body: str, *, private: bool = False) -> HTMLResponse:
    doc = (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)} · CampusBoard</title></head>"
        f"<body><main>{body}</main></body></html>"
    )
    headers = {"Cache-Control": "private, no-store"} if private else None
    return HTMLResponse(doc, status_code=200, headers=headers)


@pages_router.get("/")
async def index():
    return _page("Welcome", "<h1>CampusBoard</h1><p><a href=\"/sign-in\">Sign in</a></p>")


@pages_router.get("/sign-in")
async def sign_in():
    return _page(
        "Sign in",
        "<h1>Sign in</h1><p>Use your university account to continue. After the provider signs you in, "
        "this page posts its session token to <code>/auth/session</code>.</p>",
    )


@pages_router.get("/sign-up")
async def sign_up():
    return _page("Sign up", "<h1>Sign up</h1><p>Accounts require a university e-mail address.</p>")


@pages_router.get("/unauthorized")
async def unauthorized():
    return _page(
        "Unauthorized",
        "<h1>Access restricted</h1><p>Only university e-mail addresses may use this application.</p>",
    )


@pages_router.get("/dashboard")
async def dashboard(request: Request):
    user = getattr(request.state, "user", None) or {}
    name = html.escape(str(user.get("name") or user.get("email") or ""))
    return _page("Dashboard", f"<h1>Dashboard</h1><p>Signed in as {name}</p>", private=True)


@pages_router.get("/admin")
async def admin(request: Request):
    role = html.escape(str((getattr(request.state, "user", None) or {}).get("role") or ""))
    return _page("Administration", f"<h1>Administration</h1><p>Role: {role}</p>", private=True)
