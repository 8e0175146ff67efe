# tile_dashboard/pool.py
from __future__ import annotations
from contextlib import contextmanager
from typing import Dict

import sqlalchemy.exc
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool

from tile_dashboard.errors import DashboardError, PoolTimeoutError
from tile_dashboard.log import get_logger

log = get_logger(__name__)


class ConnectionPool:
    """
    A SQLAlchemy engine with a bounded QueuePool (no overflow).

    connection() checks out a connection inside a transaction; the connection
    goes back to the pool on every exit path, including a failed commit.
    """

    def __init__(self, engine: Engine, max_size: int, timeout_s: float):
        self.engine = engine
        self.max_size = int(max_size)
        self.timeout_s = float(timeout_s)
        self._closed = False

    @contextmanager
    def connection(self):
        if self._closed:
            raise DashboardError("connection pool is closed")
        try:
            conn: Connection = self.engine.connect()
        except sqlalchemy.exc.TimeoutError as e:
            log.warning("pool exhausted (%d connections in use)", self.engine.pool.checkedout())
            raise PoolTimeoutError(f"no connection available within {self.timeout_s:.1f}s") from e
        with conn:
            with conn.begin():
                yield conn

    def close(self) -> None:
        self._closed = True
        self.engine.dispose()

    def stats(self) -> Dict[str, int]:
        pool = self.engine.pool
        idle, in_use = pool.checkedin(), pool.checkedout()
        return {"size": idle + in_use, "idle": idle, "in_use": in_use, "max_size": self.max_size}


def sqlite_pool(path: str, max_size: int = 4, timeout_s: float = 5.0) -> ConnectionPool:
    if max_size < 1:
        raise ValueError("max_size must be >= 1")
    engine = create_engine(
        f"sqlite:///{path}",
        poolclass=QueuePool,
        pool_size=int(max_size),
        max_overflow=0,
        pool_timeout=float(timeout_s),
        connect_args={"check_same_thread": False},
    )
    return ConnectionPool(engine, max_size, timeout_s)
