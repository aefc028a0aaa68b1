from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone

from acai.application.session import Session
from acai.domain.errors import AuthorizationError, ValidationError

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class LoginPolicy:
    min_password_length: int = 8
    max_failed_attempts: int = 5
    lockout_seconds: int = 60


def _validate_secret_strength(secret: str, *, min_len: int) -> None:
    if len(secret) < min_len:
        raise AuthorizationError(f"Password must have at least {min_len} characters.")
    if not re.search(r"[A-Za-z]", secret):
        raise AuthorizationError("Password must include at least one letter.")
    if not re.search(r"\d", secret):
        raise AuthorizationError("Password must include at least one number.")


def _normalize_email(email: str) -> str:
    cleaned = (email or "").strip().lower()
    if not EMAIL_RE.match(cleaned):
        raise ValidationError("A valid e-mail is required.")
    return cleaned


class AuthService:
    def __init__(self, repo, policy: LoginPolicy | None = None):
        self.repo = repo
        self.policy = policy or LoginPolicy()

    def sign_up(self, email: str, password: str, store_name: str) -> int:
        email_clean = _normalize_email(email)
        name = (store_name or "").strip()
        if len(name) < 2:
            raise ValidationError("Store name is required.")
        _validate_secret_strength(password, min_len=self.policy.min_password_length)

        try:
            user_id = self.repo.create_user_with_config(email_clean, password, name)
        except sqlite3.IntegrityError as exc:
            raise AuthorizationError(f"Could not create user '{email_clean}': e-mail already registered.") from exc
        log.info("user_signed_up user_id=%s", user_id)
        return user_id

    def login(self, email: str, password: str) -> Session:
        email_clean = (email or "").strip().lower()
        if not email_clean:
            raise AuthorizationError("E-mail is required.")

        state = self.repo.get_user_security_state(email_clean)
        if state:
            _attempts, locked_until = state
            if locked_until:
                until = datetime.fromisoformat(locked_until)
                now = datetime.now(timezone.utc).replace(tzinfo=None)
                if now < until:
                    remaining = int((until - now).total_seconds())
                    raise AuthorizationError(f"User is temporarily locked. Retry in {remaining}s.")

        user = self.repo.authenticate_user(email_clean, password)
        if not user:
            _attempts, locked_until = self.repo.record_login_failure(
                email_clean,
                self.policy.max_failed_attempts,
                self.policy.lockout_seconds,
            )
            if locked_until is not None:
                log.warning("login_locked email=%s", email_clean)
                raise AuthorizationError("Too many failed attempts. User is temporarily locked.")
            raise AuthorizationError("Invalid e-mail or password.")

        self.repo.clear_login_guard(user.id)
        session = Session(user=user)
        session.refresh_config(self.repo)
        log.info("login user_id=%s", user.id)
        return session

    def logout(self, session: Session) -> None:
        if session.is_open:
            log.info("logout user_id=%s", session.user.id)
        session.close()
