"""
web/routes.py -- Jinja2 template routes for the training portal pages.

These routes serve server-rendered HTML inside the Schoolbox iframe. They
share app.state with the API routes (same user store and session manager).

The edge gate has already run by the time any handler here executes:
protected pages can rely on a valid staff session, and /admin on the admin
flag. Handlers still read the session (for the name, flags) via
try_get_session().

Routes:
  GET  /              -- public landing page
  GET  /login         -- public "open this from Schoolbox" page
  GET  /unauthorized  -- public Access Denied page (?error=expired|forbidden|invalid)
  GET  /dashboard     -- signed-in landing page (?error=forbidden banner)
  GET  /admin         -- admin landing page with the local user list
  POST /logout        -- clear the session cookie, back to /
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import get_session_manager, get_user_store, try_get_session
from auth.models import Session

logger = logging.getLogger("training.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# Whitelist mapping for ?error= query params.
# The raw query param is NEVER passed to templates -- only the message from
# these dicts is. Prevents reflected XSS via crafted error query strings.
_UNAUTHORIZED_MESSAGES: dict[str, str] = {
    "expired": "Your session has expired. Open the training portal from Schoolbox again to continue.",
    "forbidden": "This portal is only available to staff members.",
    "invalid": "Your sign-in could not be read. Open the training portal from Schoolbox again.",
}
_DEFAULT_UNAUTHORIZED_MESSAGE = "You need to open the training portal from Schoolbox to sign in."

_DASHBOARD_MESSAGES: dict[str, str] = {
    "forbidden": "You do not have permission to view that page.",
}

# Shown on every Access Denied page regardless of the reason.
_LIKELY_CAUSES = [
    "Your session expired after an hour of use.",
    "Your Schoolbox account is not a staff account.",
    "The link you followed was old or incomplete.",
]


def _carry_cookies(resp: Response, sub_response: Response) -> Response:
    """Copy Set-Cookie headers from FastAPI's injected response onto resp.

    try_get_session() clears expired or invalid cookies on the injected
    response, which FastAPI discards once a handler returns its own Response.
    """
    for value in sub_response.headers.getlist("set-cookie"):
        resp.headers.append("set-cookie", value)
    return resp


@router.get("/", response_class=HTMLResponse)
def home(request: Request, response: Response, session: Session | None = Depends(try_get_session)) -> HTMLResponse:
    return _carry_cookies(templates.TemplateResponse(request, "index.html", {"session": session}), response)


@router.get("/login", response_class=HTMLResponse)
def login(request: Request, response: Response, session: Session | None = Depends(try_get_session)) -> Response:
    """There is no password form: sign-in only ever happens via Schoolbox."""
    if session is not None:
        return RedirectResponse("/dashboard", status_code=302)
    return _carry_cookies(templates.TemplateResponse(request, "login.html", {}), response)


@router.get("/unauthorized", response_class=HTMLResponse)
def unauthorized(request: Request) -> HTMLResponse:
    error = request.query_params.get("error", "")
    message = _UNAUTHORIZED_MESSAGES.get(error, _DEFAULT_UNAUTHORIZED_MESSAGE)
    return templates.TemplateResponse(
        request,
        "unauthorized.html",
        {"message": message, "causes": _LIKELY_CAUSES},
    )


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request, response: Response, session: Session | None = Depends(try_get_session)) -> Response:
    if session is None:
        return _carry_cookies(RedirectResponse("/unauthorized", status_code=302), response)
    error_msg = _DASHBOARD_MESSAGES.get(request.query_params.get("error", ""))
    return templates.TemplateResponse(request, "dashboard.html", {"session": session, "error_msg": error_msg})


@router.get("/admin", response_class=HTMLResponse)
def admin_home(request: Request, response: Response, session: Session | None = Depends(try_get_session)) -> Response:
    if session is None or not session.is_admin:
        return _carry_cookies(RedirectResponse("/dashboard?error=forbidden", status_code=302), response)
    users = get_user_store(request).list_users()
    return templates.TemplateResponse(request, "admin.html", {"session": session, "users": users})


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the session cookie and return to the landing page."""
    resp = RedirectResponse("/", status_code=302)
    get_session_manager(request).clear(resp)
    return resp
