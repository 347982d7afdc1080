import logging
import os
import sqlite3

logger = logging.getLogger(__name__)

DATABASE_FILE = os.path.join("database", "onetime_vault.db")


def setup_database(path: str = DATABASE_FILE) -> None:
    """Create the sqlite file and the ``kv_store`` table if they are missing."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    conn = sqlite3.connect(path)
    try:
        conn.execute('''
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        ''')
        conn.commit()
    finally:
        conn.close()
    logger.debug("Database ready at %s", path)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    setup_database(os.environ.get("ONETIME_DB", DATABASE_FILE))
    print("Database setup completed successfully!")
