"""
db/schema.py -- Versioned, append-only schema scripts for the system database.

Always add schema updates to the END of a list. A shipped script is never
edited: db/schema_control.py identifies the database version by list index,
so editing or reordering scripts would silently skip or repeat work on
databases migrated by an older build. Either keep changes backwards
compatible or append a script that upgrades the old shape to the new one.

Style:
  - Lower-case names, underscores for spaces. Tables are collective nouns
    (users, sessions); columns name the individual item (username, expires).
  - Use affinity names like BOOLEAN and DATETIME to describe the stored type.
    Booleans are stored as 0/1 and datetimes as UTC ISO 8601 text
    (see db/connection.marshal).
  - NULL means "not provided". A password that never expires has a NULL
    expiration, not a far-future date. Populate defaults in code, not with
    column DEFAULTs.
  - Describe every relationship with a foreign key. Enforcement is switched
    on per connection (PRAGMA foreign_keys=ON).

One statement per script: sqlite3 executes a single statement per call.
"""

SYSTEM: list[str] = [
    # 0
    """
    CREATE TABLE users (
        username TEXT NOT NULL PRIMARY KEY,
        admin BOOLEAN NOT NULL,
        start_date DATETIME NOT NULL,
        end_date DATETIME,
        version INT NOT NULL,
        updated_date DATETIME NOT NULL,
        created_date DATETIME NOT NULL,
        created_by TEXT NOT NULL,
        updated_by TEXT NOT NULL
    )
    """,
    # 1
    """
    CREATE TABLE sessions (
        session_id TEXT NOT NULL PRIMARY KEY,
        username TEXT NOT NULL REFERENCES users(username),
        valid BOOLEAN NOT NULL,
        csrf_token TEXT NOT NULL,
        csrf_date DATETIME NOT NULL,
        ip_address TEXT NOT NULL,
        user_agent TEXT,
        expires DATETIME NOT NULL,
        created_date DATETIME NOT NULL
    )
    """,
    # 2
    """
    CREATE INDEX i_username_created_date ON sessions (username, created_date)
    """,
    # 3
    """
    CREATE TABLE passwords (
        username TEXT NOT NULL PRIMARY KEY REFERENCES users(username),
        version INT NOT NULL,
        hash TEXT NOT NULL,
        hash_version INT NOT NULL,
        expiration DATETIME,
        session_id TEXT REFERENCES sessions(session_id),
        updated_date DATETIME NOT NULL,
        updated_by TEXT NOT NULL,
        created_date DATETIME NOT NULL,
        created_by TEXT NOT NULL
    )
    """,
    # 4
    """
    CREATE TABLE password_history (
        username TEXT NOT NULL REFERENCES users(username),
        version INT NOT NULL,
        hash TEXT NOT NULL,
        hash_version INT NOT NULL,
        session_id TEXT REFERENCES sessions(session_id),
        created_date DATETIME NOT NULL,
        created_by TEXT NOT NULL,
        PRIMARY KEY (username, version)
    )
    """,
    # 5
    """
    CREATE TABLE settings (
        setting_id TEXT NOT NULL PRIMARY KEY,
        value TEXT NOT NULL,
        updated_by TEXT NOT NULL REFERENCES users(username),
        updated_date DATETIME NOT NULL
    )
    """,
]
