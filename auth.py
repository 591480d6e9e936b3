"""
Auth Gate: single-user password login, session tokens, CSRF double-submit
tokens and an in-memory login rate limiter.

The session cookie is an opaque urlsafe-base64 JSON blob
{userId, sessionId, sessionType}. A session is valid while its sessionId
matches the one stored on the user row; logging in again or logging out
rotates it.
"""

import base64
import binascii
import hmac
import json
import logging
import math
import secrets
import threading
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

import bcrypt

from database import utcnow
from errors import AuthenticationError, ConflictError, CsrfError, NotFoundError, RateLimitError, ValidationError
from models import User
from repository import Repository

logger = logging.getLogger(__name__)

SESSION_TYPES = ("prod", "dev")
MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


@dataclass
class SessionToken:
    user_id: str
    session_id: str
    session_type: str

    def encode(self) -> str:
        payload = json.dumps(
            {"userId": self.user_id, "sessionId": self.session_id, "sessionType": self.session_type},
            separators=(",", ":"),
        )
        # Unpadded so the cookie value needs no quoting
        return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, value: str) -> "SessionToken":
        try:
            padded = value + "=" * (-len(value) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        except (binascii.Error, UnicodeError, ValueError):
            raise AuthenticationError("Invalid session format")
        if not isinstance(data, dict) or not data.get("userId") or not data.get("sessionId"):
            raise AuthenticationError("Incomplete session data")
        return cls(
            user_id=str(data["userId"]),
            session_id=str(data["sessionId"]),
            session_type=str(data.get("sessionType") or "prod"),
        )


class LoginRateLimiter:
    """Sliding-window counter of failed logins per client key."""

    def __init__(self, max_attempts: int = 5, window_seconds: int = 900, clock: Callable[[], float] = time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._failures: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        failures = self._failures[key]
        while failures and failures[0] <= now - self.window_seconds:
            failures.popleft()
        return failures

    def check(self, key: str) -> None:
        with self._lock:
            now = self._clock()
            failures = self._prune(key, now)
            if len(failures) >= self.max_attempts:
                retry_after = max(1, math.ceil(failures[0] + self.window_seconds - now))
                raise RateLimitError(retry_after)

    def record_failure(self, key: str) -> None:
        with self._lock:
            self._failures[key].append(self._clock())

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)


class AuthGate:
    def __init__(self, repo: Repository, limiter: Optional[LoginRateLimiter] = None):
        self.repo = repo
        self.limiter = limiter or LoginRateLimiter()

    def _user(self) -> Optional[User]:
        return self.repo.first(User)

    def initialize(self, password: str, name: str = "Admin", email: str = "") -> User:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        with self.repo.transaction():
            if self._user() is not None:
                raise ConflictError("System already initialized")
            user = self.repo.create(User(name=name or "Admin", email=email or "", password_hash=hash_password(password)))
        logger.info("initialized user %s", user.id)
        return user

    def login(self, password: str, session_type: str = "prod", client_key: str = "unknown") -> SessionToken:
        if not password:
            raise ValidationError("Password is required")
        if session_type not in SESSION_TYPES:
            raise ValidationError(f"Invalid session type: {session_type}")
        self.limiter.check(client_key)

        user = self._user()
        if user is None:
            raise NotFoundError("User", "(not initialized)")
        if not verify_password(password, user.password_hash):
            self.limiter.record_failure(client_key)
            logger.warning("failed login from %s", client_key)
            raise AuthenticationError("Invalid password")

        self.limiter.reset(client_key)
        token = SessionToken(user_id=user.id, session_id=str(uuid.uuid4()), session_type=session_type)
        with self.repo.transaction():
            self.repo.update(user, session_id=token.session_id, session_type=session_type, last_login_at=utcnow())
        logger.info("user %s logged in (%s session)", user.id, session_type)
        return token

    def verify_session(self, cookie_value: Optional[str]) -> User:
        if not cookie_value:
            raise AuthenticationError("No session found")
        token = SessionToken.decode(cookie_value)
        user = self.repo.get(User, token.user_id)
        if user is None or not user.session_id or not hmac.compare_digest(user.session_id, token.session_id):
            raise AuthenticationError("Invalid session")
        return user

    def logout(self, cookie_value: Optional[str]) -> None:
        try:
            user = self.verify_session(cookie_value)
        except AuthenticationError:
            return
        with self.repo.transaction():
            self.repo.update(user, session_id=None, session_type=None)
        logger.info("user %s logged out", user.id)


def issue_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def check_csrf(cookie_token: Optional[str], header_token: Optional[str]) -> None:
    if not cookie_token or not header_token:
        raise CsrfError("Missing CSRF token")
    if not hmac.compare_digest(cookie_token, header_token):
        raise CsrfError("Invalid CSRF token")
