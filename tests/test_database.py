"""
Tests for engine configuration and the atomic unit helper.
"""

import pytest
from sqlalchemy import func, select

from tests.conftest import get_test_settings
from tracker.database import DatabaseConfigError, atomic, configure_engine
from tracker.main import create_app
from tracker.models import SharingToken


@pytest.mark.parametrize("url", [
    "mysql://user:pw@localhost/tracker",
    "mssql+pyodbc://user:pw@dsn",
    "oracle://user:pw@localhost/tracker",
])
def test_unsupported_backend_is_refused(url):
    with pytest.raises(DatabaseConfigError):
        configure_engine(url)


def test_app_refuses_unsupported_backend(tmp_path):
    with pytest.raises(DatabaseConfigError):
        create_app(get_test_settings(tmp_path, database_url="mysql://user:pw@localhost/tracker"))


def test_atomic_rolls_back_on_error(db, alice):
    with pytest.raises(RuntimeError):
        with atomic(db):
            db.add(SharingToken(token="a" * 64, user_id=alice.user_id))
            db.flush()
            raise RuntimeError("boom")

    assert db.execute(select(func.count()).select_from(SharingToken)).scalar_one() == 0
