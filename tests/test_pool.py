"""Tests for the SQLAlchemy-backed connection pool."""

import logging
import threading

import pytest
import sqlalchemy.exc
from sqlalchemy import text

from tile_dashboard.errors import DashboardError, PoolTimeoutError
from tile_dashboard.pool import ConnectionPool, sqlite_pool


@pytest.fixture
def pool(tmp_path):
    p = sqlite_pool(str(tmp_path / "p.sqlite"), max_size=2, timeout_s=0.1)
    yield p
    p.close()


class TestConnectionPool:
    def test_lazy_creation_and_reuse(self, pool):
        assert pool.stats() == {"size": 0, "idle": 0, "in_use": 0, "max_size": 2}
        with pool.connection() as conn:
            conn.execute(text("SELECT 1"))
        with pool.connection() as conn:
            conn.execute(text("SELECT 1"))
        assert pool.stats() == {"size": 1, "idle": 1, "in_use": 0, "max_size": 2}

    def test_timeout_when_exhausted(self, pool, caplog):
        caplog.set_level(logging.WARNING, logger="tile_dashboard")
        with pool.connection(), pool.connection():
            assert pool.stats()["in_use"] == 2
            with pytest.raises(PoolTimeoutError):
                with pool.connection():
                    pass
        assert "pool exhausted" in caplog.text
        assert pool.stats()["in_use"] == 0

    def test_waiter_gets_released_connection(self, tmp_path):
        p = sqlite_pool(str(tmp_path / "w.sqlite"), max_size=1, timeout_s=2)
        got = []
        release = threading.Event()

        def wait_for_slot():
            release.set()
            with p.connection() as conn:
                got.append(conn.execute(text("SELECT 7")).scalar())

        with p.connection():
            t = threading.Thread(target=wait_for_slot)
            t.start()
            release.wait(2)
        t.join(3)
        assert got == [7]
        p.close()

    def test_commits_on_success(self, pool):
        with pool.connection() as conn:
            conn.execute(text("CREATE TABLE t (v INTEGER)"))
            conn.execute(text("INSERT INTO t VALUES (1)"))
        with pool.connection() as conn:
            assert conn.execute(text("SELECT count(*) FROM t")).scalar() == 1

    def test_rolls_back_and_returns_connection_on_error(self, pool):
        with pool.connection() as conn:
            conn.execute(text("CREATE TABLE t (v INTEGER)"))
        with pytest.raises(KeyError):
            with pool.connection() as conn:
                conn.execute(text("INSERT INTO t VALUES (1)"))
                raise KeyError("x")
        assert pool.stats()["in_use"] == 0
        with pool.connection() as conn:
            assert conn.execute(text("SELECT count(*) FROM t")).scalar() == 0

    def test_failed_commit_returns_connection(self, tmp_path):
        """A commit that raises must not keep the connection checked out."""
        p = sqlite_pool(str(tmp_path / "fk.sqlite"), max_size=1, timeout_s=0.2)
        with p.connection() as conn:
            conn.exec_driver_sql("CREATE TABLE parent (id INTEGER PRIMARY KEY)")
            conn.exec_driver_sql(
                "CREATE TABLE child (pid INTEGER REFERENCES parent(id) DEFERRABLE INITIALLY DEFERRED)"
            )
        for _ in range(2):
            # the deferred foreign key is only checked at COMMIT
            with pytest.raises(sqlalchemy.exc.IntegrityError):
                with p.connection() as conn:
                    conn.exec_driver_sql("PRAGMA foreign_keys = ON")
                    conn.exec_driver_sql("INSERT INTO child VALUES (99)")
            assert p.stats()["in_use"] == 0
        with p.connection() as conn:
            assert conn.exec_driver_sql("SELECT count(*) FROM child").scalar() == 0
        p.close()

    def test_close(self, pool):
        with pool.connection():
            pass
        pool.close()
        assert pool.stats()["idle"] == 0
        with pytest.raises(DashboardError, match="closed"):
            with pool.connection():
                pass

    def test_invalid_size(self, tmp_path):
        with pytest.raises(ValueError):
            sqlite_pool(str(tmp_path / "x.sqlite"), max_size=0)

    def test_wraps_an_engine(self, pool):
        assert isinstance(pool, ConnectionPool)
        assert pool.engine.pool.size() == 2


class TestSqlitePool:
    def test_rows_and_threads(self, tmp_path):
        p = sqlite_pool(str(tmp_path / "t.sqlite"), max_size=2)
        with p.connection() as conn:
            conn.execute(text("CREATE TABLE t (k TEXT, v INTEGER)"))
            conn.execute(text("INSERT INTO t VALUES ('a', 1)"))

        seen = []

        def read():
            with p.connection() as conn:
                row = conn.execute(text("SELECT k, v FROM t")).mappings().one()
                seen.append((row["k"], row["v"]))

        threads = [threading.Thread(target=read) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert seen == [("a", 1)] * 4
        assert p.stats()["size"] <= 2
        p.close()
