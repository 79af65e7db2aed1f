"""
Shared fixtures: file-backed SQLite databases (worker processes open their
own connections, so an in-memory database would not be shared) and input
file factories.
"""
import os

os.environ.setdefault("LOG_TO_FILE", "false")

import pytest
from sqlalchemy import text

from billing_loader.core.schemas import Record
from billing_loader.database.engine import create_database_instance
from billing_loader.setup.config.models import LoadingConfig

TARGET_DDL = """
    CREATE TABLE subscriber_billings (
        msisdn VARCHAR(32) PRIMARY KEY,
        prepaid BOOLEAN NOT NULL
    )
"""


@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'billing.db'}"


@pytest.fixture
def database(sqlite_url):
    """Coordinator database with an empty subscriber_billings table."""
    db = create_database_instance(sqlite_url)
    with db.engine.begin() as conn:
        conn.execute(text(TARGET_DDL))
    yield db
    db.dispose()


@pytest.fixture
def loading_config():
    return LoadingConfig(workers=1, batch_size=2, show_progress=False)


@pytest.fixture
def fetch_rows(database):
    """Return {msisdn: prepaid} for a table."""
    def _fetch(table_name="subscriber_billings"):
        with database.engine.connect() as conn:
            rows = conn.execute(text(f"SELECT msisdn, prepaid FROM {table_name}")).fetchall()
        return {row[0]: bool(row[1]) for row in rows}
    return _fetch


@pytest.fixture
def count_rows(database):
    def _count(table_name):
        with database.engine.connect() as conn:
            return conn.execute(text(f"SELECT COUNT(*) FROM {table_name}")).scalar()
    return _count


@pytest.fixture
def write_input(tmp_path):
    """Write an input file from a list of lines (first one is the header)."""
    def _write(name, lines):
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path
    return _write


def make_records(count, start=1000000001):
    return [Record(str(start + i), i % 2 == 0) for i in range(count)]


@pytest.fixture
def records_factory():
    return make_records
