from typing import Optional

from fastapi import Request, Response

from mascot_chat.core_app.config import Settings
from mascot_chat.core_app.exceptions import UnauthorizedError
from mascot_chat.core_app.schemas.user import SessionData, User
from mascot_chat.core_app.services.auth import sign_session_id, unsign_session_id
from mascot_chat.core_app.services.storage import Storage

SESSION_COOKIE = "sess"


def set_session_cookie(response: Response, session: SessionData, settings: Settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=sign_session_id(session.sid, settings.session_secret),
        max_age=settings.session_ttl,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE, path="/")


def get_session_id(request: Request) -> Optional[str]:
    settings: Settings = request.app.state.settings
    return unsign_session_id(request.cookies.get(SESSION_COOKIE), settings.session_secret)


async def get_current_user(request: Request, response: Response) -> User:
    """
    Resolves the user behind the session cookie and renews the session (rolling expiry).
    Raises UnauthorizedError, which the app turns into 401 and a cleared cookie.
    """
    settings: Settings = request.app.state.settings
    storage: Storage = request.app.state.storage

    sid = get_session_id(request)
    if sid is None:
        raise UnauthorizedError("Unauthorized")

    session = storage.sessions.touch(sid, settings.session_ttl)
    if session is None:
        raise UnauthorizedError("Unauthorized")

    user = storage.get_user(session.user_id)
    if user is None:
        storage.sessions.destroy(sid)
        raise UnauthorizedError("Unauthorized")

    set_session_cookie(response, session, settings)
    return user


def carry_cookies(source: Response, target: Response) -> Response:
    """Copies Set-Cookie headers (e.g. the renewed session) onto a response built by hand."""
    for key, value in source.raw_headers:
        if key == b"set-cookie":
            target.raw_headers.append((key, value))
    return target
