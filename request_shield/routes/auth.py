# Authentication routes for the demo application: login, logout, whoami
# and CSRF token issuance. These are the callers of the sanctioned state
# mutators (reset_login_attempts, create/remove_session_binding).

import hmac
import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from request_shield.core.context import ErrorDetail, ErrorEnvelope
from request_shield.core.security import generate_secure_token, truncate_ip
from request_shield.middleware import SecurityShield, context_from_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["auth"])

# Simple user store: username -> password
DEMO_USERS = {
    "alice": "password123",
    "bob": "securepass",
}


class LoginReq(BaseModel):
    username: str
    password: str


class LoginResp(BaseModel):
    success: bool
    username: str


class UserResp(BaseModel):
    authenticated: bool
    username: str | None = None


class CsrfTokenResp(BaseModel):
    csrfToken: str


def _shield(request: Request) -> SecurityShield:
    return request.app.state.shield


def _sessions(request: Request) -> dict:
    # session id -> username
    return request.app.state.sessions


@router.get("/health")
def health():
    return {"ok": True}


@router.post("/auth/login", response_model=LoginResp)
def login(req: LoginReq, request: Request, response: Response):
    shield = _shield(request)
    client_ip = shield.client_ip(context_from_request(request))

    expected = DEMO_USERS.get(req.username)
    password_ok = expected is not None and hmac.compare_digest(expected.encode("utf-8"), req.password.encode("utf-8"))
    if not password_ok:
        logger.warning(f"Login failed: user={req.username}, ip={truncate_ip(client_ip)}")
        error = ErrorDetail(code="INVALID_CREDENTIALS", message="Benutzername oder Passwort ist falsch.")
        return JSONResponse(status_code=401, content=ErrorEnvelope(error=error).model_dump(exclude_none=True))

    session_id = generate_secure_token(32)
    _sessions(request)[session_id] = req.username

    # Successful login clears the brute-force counters for this client
    shield.reset_login_attempts(client_ip)
    shield.create_session_binding(session_id, client_ip, request.headers.get("user-agent"))

    response.set_cookie(
        shield.settings.SESSION_COOKIE_NAME,
        session_id,
        httponly=True,
        samesite="strict",
        secure=shield.settings.is_production,
    )
    logger.info(f"Login succeeded: user={req.username}")
    return LoginResp(success=True, username=req.username)


@router.post("/auth/logout")
def logout(request: Request, response: Response):
    shield = _shield(request)
    cookie_name = shield.settings.SESSION_COOKIE_NAME
    session_id = request.cookies.get(cookie_name)
    if session_id:
        shield.remove_session_binding(session_id)
        _sessions(request).pop(session_id, None)
    response.delete_cookie(cookie_name)
    return {"success": True}


@router.get("/user", response_model=UserResp)
def whoami(request: Request):
    session_id = request.cookies.get(_shield(request).settings.SESSION_COOKIE_NAME)
    username = _sessions(request).get(session_id) if session_id else None
    if username is None:
        return UserResp(authenticated=False)
    return UserResp(authenticated=True, username=username)


@router.get("/csrf-token", response_model=CsrfTokenResp)
def csrf_token(request: Request):
    shield = _shield(request)
    session_id = request.cookies.get(shield.settings.SESSION_COOKIE_NAME)
    return CsrfTokenResp(csrfToken=shield.csrf_tokens.issue(session_id))
