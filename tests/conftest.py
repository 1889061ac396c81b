import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

for _key in ("DB_HOST", "DB_USER", "DB_PASSWORD", "DB_NAME", "PUBLIC_BASE_URL", "LOG_FILE_PATH"):
    os.environ.pop(_key, None)
os.environ.setdefault("SQLITE_PATH", str(Path(tempfile.gettempdir()) / "opentrack-tests.db"))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def sqlite_db(tmp_path, monkeypatch):
    """A Database bound to a fresh SQLite file, wired into the repositories."""
    from opentrack.core.database import Database
    from opentrack.repositories import tracking as tracking_repo

    db_path = tmp_path / "tracking.db"
    test_db = Database()
    test_db._use_sqlite = True
    test_db._get_sqlite_path = lambda: db_path
    monkeypatch.setattr(tracking_repo, "db", test_db)
    return test_db
