"""
Thin SQL accessor over the SQLite engine.

run/get/all execute a single statement in their own transaction; use
transaction() when several statements must commit or roll back together.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from flask import current_app
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from config import sqlite_uri
from models import db

logger = logging.getLogger(__name__)


class RunResult(NamedTuple):
    last_id: Optional[int]
    changes: int


def _enable_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, 'connect')
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys = ON')
        cursor.close()


def ensure_database_dir(database_path: str) -> None:
    data_dir = os.path.dirname(os.path.abspath(database_path))
    os.makedirs(data_dir, exist_ok=True)


class SqlExecutor:
    """Executes statements on one open connection."""

    def __init__(self, connection):
        self.connection = connection

    def run(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        result = self.connection.exec_driver_sql(sql, tuple(params))
        return RunResult(last_id=result.lastrowid, changes=result.rowcount)

    def get(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        row = self.connection.exec_driver_sql(sql, tuple(params)).mappings().first()
        return dict(row) if row is not None else None

    def all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        result = self.connection.exec_driver_sql(sql, tuple(params))
        return [dict(row) for row in result.mappings()]


class Database:
    """SQL accessor bound to a single engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def transaction(self):
        """Yield a SqlExecutor; commit on success, roll back on any exception."""
        with self.engine.begin() as connection:
            yield SqlExecutor(connection)

    def run(self, sql: str, params: Sequence[Any] = ()) -> RunResult:
        with self.transaction() as tx:
            return tx.run(sql, params)

    def get(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self.transaction() as tx:
            return tx.get(sql, params)

    def all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.transaction() as tx:
            return tx.all(sql, params)

    def close(self) -> None:
        self.engine.dispose()


def connect(database_path: str) -> Database:
    """Open (creating if needed) the SQLite file at database_path."""
    ensure_database_dir(database_path)
    engine = create_engine(sqlite_uri(database_path))
    _enable_foreign_keys(engine)
    logger.info('Connected to SQLite database at %s', database_path)
    return Database(engine)


def init_database(app) -> Database:
    """Bind Flask-SQLAlchemy to DATABASE_PATH and expose a Database on the app."""
    database_path = app.config['DATABASE_PATH']
    ensure_database_dir(database_path)
    app.config['SQLALCHEMY_DATABASE_URI'] = sqlite_uri(database_path)

    db.init_app(app)

    with app.app_context():
        _enable_foreign_keys(db.engine)
        database = Database(db.engine)
        db.create_all()

    app.extensions['database'] = database
    return database


def get_database() -> Database:
    return current_app.extensions['database']
