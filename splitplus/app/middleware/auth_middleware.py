"""
middleware/auth_middleware.py — Bearer-token authentication for ledger routes.

Accounts and token issuance belong to a separate service. This package only
verifies what that service signs: an HS256 (or JWT_ALGORITHM) token carrying
the user id in `sub`, signed with the shared JWT_SECRET_KEY.

@require_auth sets flask.g.user_id and nothing else. Whether that user may
touch a group or friend ledger is decided in membership_service (403/404);
this layer only answers "who is calling" (401).

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — not "Bearer <token>", bad signature, or no usable sub
  TOKEN_EXPIRED  (401) — exp claim is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from splitplus.app.errors import AppError, ErrorCode


def _token_error(code: ErrorCode, message: str) -> AppError:
    return AppError(code, message, 401)


def _bearer_token() -> str:
    header = request.headers.get("Authorization", "")
    if not header:
        raise _token_error(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
        )

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
        )
    return token


def decode_user_id(token: str) -> int:
    """
    Verifies `token` against the app's JWT settings and returns its user id.

    Must run inside an app context (reads current_app.config).
    """
    try:
        claims = jwt.decode(
            token,
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise _token_error(ErrorCode.TOKEN_EXPIRED, "The access token has expired.")
    except jwt.InvalidTokenError:
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
        )

    try:
        return int(claims["sub"])
    except (TypeError, ValueError):
        raise _token_error(
            ErrorCode.TOKEN_INVALID,
            "The 'sub' claim in the access token is not a valid user ID.",
        )


def require_auth(f: Callable) -> Callable:
    """
    Route decorator: authenticate, then call the view with g.user_id set.

    Failures raise AppError and reach the global error handler; routes never
    catch them.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = decode_user_id(_bearer_token())
        return f(*args, **kwargs)

    return decorated
