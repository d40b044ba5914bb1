"""
Tests for engine construction.
"""
from orderdesk.db.session import build_engine


class TestBuildEngine:

    def test_sqlite_engine_connects(self):
        engine = build_engine("sqlite://")

        with engine.connect() as conn:
            assert conn.exec_driver_sql("SELECT 1").scalar() == 1
        assert engine.dialect.name == "sqlite"

    def test_echo_follows_flag(self):
        assert build_engine("sqlite://", echo=True).echo is True
        assert build_engine("sqlite://").echo is False
