#!/usr/bin/env python3
"""
Database migration runner for the Investment Tracker.
Executes every statement of a schema file, in file order.

Usage:
    python init_db.py                     # applies schema.sql
    python init_db.py path/to/file.sql    # applies another migration file

DATABASE_PATH selects the SQLite file (default ./data/investment_tracker.db).
Any failing statement aborts the run with exit status 1.
"""

import logging
import os
import sqlite3
import sys

from dotenv import load_dotenv

from config import DEFAULT_DATABASE_PATH
from database import connect

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'schema.sql')


def _is_blank(statement):
    """True when a fragment holds only whitespace and -- comments."""
    lines = [line.strip() for line in statement.splitlines()]
    return all(not line or line.startswith('--') for line in lines)


def _summary(statement, width=50):
    for line in statement.splitlines():
        line = line.strip()
        if line and not line.startswith('--'):
            return line[:width] + '...'
    return statement[:width] + '...'


def split_statements(sql_text):
    """
    Split SQL text into statements.

    A ';' only ends a statement when SQLite considers the text so far a
    complete statement, so semicolons inside string literals, comments and
    trigger bodies stay part of their statement.
    """
    statements = []
    parts = sql_text.split(';')
    buffer = ''

    for index, part in enumerate(parts):
        buffer += part
        if index < len(parts) - 1:
            buffer += ';'
            if not sqlite3.complete_statement(buffer):
                continue

        statement = buffer.strip()
        buffer = ''
        if statement.endswith(';'):
            statement = statement[:-1].strip()
        if statement and not _is_blank(statement):
            statements.append(statement)

    return statements


def run_migration(database, schema_path):
    """Execute each statement of schema_path sequentially. Returns the count."""
    with open(schema_path, 'r', encoding='utf-8') as schema_file:
        schema = schema_file.read()

    statements = split_statements(schema)
    for statement in statements:
        database.run(statement)
        logger.info('Executed: %s', _summary(statement))

    return len(statements)


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    schema_path = argv[0] if argv else DEFAULT_SCHEMA_PATH
    database_path = os.environ.get('DATABASE_PATH', DEFAULT_DATABASE_PATH)

    database = connect(database_path)
    try:
        logger.info('Starting database migration from %s...', schema_path)
        count = run_migration(database, schema_path)
        logger.info('Database migration completed successfully! (%d statements)', count)
    except Exception:
        logger.exception('Migration failed')
        sys.exit(1)
    finally:
        database.close()


if __name__ == '__main__':
    main()
