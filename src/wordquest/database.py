import os
import sqlite3
from typing import Optional

from .config import settings


def get_db_path() -> str:
    return os.path.join(settings.DB_DIR, settings.DB_FILE)


def get_db_connection(db_path: Optional[str] = None):
    """Establishes a connection to the SQLite database."""
    conn = sqlite3.connect(db_path or get_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def create_log_table(db_path: Optional[str] = None):
    """Creates the log table if it doesn't exist."""
    conn = get_db_connection(db_path)
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp DATETIME DEFAULT CURRENT_TIMESTAMP,
                level TEXT,
                logger TEXT,
                message TEXT
            );
        """
        )
    conn.close()


def create_document_table(db_path: Optional[str] = None):
    """Creates the document table backing every collection."""
    conn = get_db_connection(db_path)
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                body TEXT NOT NULL,
                PRIMARY KEY (collection, id)
            );
        """
        )
    conn.close()


def init_db(db_path: Optional[str] = None):
    """Initializes the database and creates necessary tables."""
    db_dir = os.path.dirname(db_path) if db_path else settings.DB_DIR
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir)
    create_log_table(db_path)
    create_document_table(db_path)
