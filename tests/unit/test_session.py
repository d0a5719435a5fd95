"""Unit tests for engine construction"""

from sqlalchemy import text
from dues_gateway.infrastructure.database.session import build_engine


def test_sqlite_engine_skips_pool_sizing():
    engine = build_engine("sqlite://")

    with engine.connect() as conn:
        assert conn.execute(text("select 1")).scalar() == 1
    assert engine.dialect.name == "sqlite"
