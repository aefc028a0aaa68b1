from pathlib import Path

import pytest

from acai.domain.errors import AuthorizationError, ValidationError
from acai.repositories.sqlite_repo import SqliteRepository
from acai.services.auth_service import AuthService, LoginPolicy
from acai.services.product_service import ProductService


def _auth(tmp_path: Path, **policy):
    repo = SqliteRepository(tmp_path / "auth.db")
    repo.init_db()
    return repo, AuthService(repo, LoginPolicy(**policy) if policy else None)


def test_sign_up_hashes_password_and_creates_config(tmp_path: Path):
    repo, auth = _auth(tmp_path)
    user_id = auth.sign_up("Owner@Acai.com ", "Acai1234", "Açaí da Praia")

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT email, password FROM users WHERE id=?", (user_id,))
    email, stored = cur.fetchone()
    conn.close()

    assert email == "owner@acai.com"
    assert stored.startswith("pbkdf2_sha256$")

    session = auth.login("owner@acai.com", "Acai1234")
    assert session.user_id == user_id
    assert session.require_config().store_name == "Açaí da Praia"
    assert session.config.mei_ceiling == 81000


def test_duplicate_email_and_weak_password_are_rejected(tmp_path: Path):
    _repo, auth = _auth(tmp_path)
    auth.sign_up("owner@acai.com", "Acai1234", "Loja")

    with pytest.raises(AuthorizationError, match="already registered"):
        auth.sign_up("owner@acai.com", "Outra1234", "Loja 2")
    with pytest.raises(AuthorizationError, match="at least 8"):
        auth.sign_up("new@acai.com", "abc1", "Loja")
    with pytest.raises(AuthorizationError, match="number"):
        auth.sign_up("new@acai.com", "abcdefghij", "Loja")
    with pytest.raises(ValidationError, match="e-mail"):
        auth.sign_up("not-an-email", "Acai1234", "Loja")


def test_repeated_failures_lock_the_account(tmp_path: Path):
    _repo, auth = _auth(tmp_path, max_failed_attempts=3, lockout_seconds=60)
    auth.sign_up("owner@acai.com", "Acai1234", "Loja")

    for _ in range(2):
        with pytest.raises(AuthorizationError, match="Invalid e-mail or password"):
            auth.login("owner@acai.com", "wrong-pass1")
    with pytest.raises(AuthorizationError, match="Too many failed attempts"):
        auth.login("owner@acai.com", "wrong-pass1")

    with pytest.raises(AuthorizationError, match="temporarily locked"):
        auth.login("owner@acai.com", "Acai1234")


def test_unknown_user_gets_generic_error(tmp_path: Path):
    _repo, auth = _auth(tmp_path)
    with pytest.raises(AuthorizationError, match="Invalid e-mail or password"):
        auth.login("ghost@acai.com", "Acai1234")


def test_closed_session_cannot_reach_data(tmp_path: Path):
    repo, auth = _auth(tmp_path)
    auth.sign_up("owner@acai.com", "Acai1234", "Loja")
    session = auth.login("owner@acai.com", "Acai1234")

    auth.logout(session)

    assert not session.is_open
    assert session.config is None
    with pytest.raises(AuthorizationError, match="Session is closed"):
        ProductService(repo).list_products(session)
