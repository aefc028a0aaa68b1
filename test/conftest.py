import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def make_store(tmp_path: Path, email: str = "owner@acai.com", store_name: str = "Açaí da Praia"):
    """Fresh database with one signed-up merchant; returns (repo, session)."""
    from acai.repositories.sqlite_repo import SqliteRepository
    from acai.services.auth_service import AuthService

    repo = SqliteRepository(tmp_path / "store.db")
    repo.init_db()
    auth = AuthService(repo)
    auth.sign_up(email, "Acai1234", store_name)
    return repo, auth.login(email, "Acai1234")
