import sqlite3
import uuid
from datetime import datetime, timezone
from typing import List, Optional

DEFAULT_DB_PATH = "documents.db"
DEFAULT_ROLES = ("user", "admin")


class UserAlreadyExistsError(Exception):
    """A user with the same e-mail address is already registered."""


class RoleNotFoundError(Exception):
    """The requested role has not been seeded."""


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize database with all required tables."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                user_id VARCHAR(36) PRIMARY KEY,
                email VARCHAR(320) NOT NULL UNIQUE COLLATE NOCASE,
                password_hash VARCHAR(100) NOT NULL,
                display_name VARCHAR(100),
                created_at TIMESTAMP NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS roles (
                role_id INTEGER PRIMARY KEY AUTOINCREMENT,
                name VARCHAR(50) UNIQUE NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS user_roles (
                user_id VARCHAR(36) NOT NULL,
                role_id INTEGER NOT NULL,
                PRIMARY KEY (user_id, role_id),
                FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
                FOREIGN KEY (role_id) REFERENCES roles(role_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS documents (
                document_id VARCHAR(36) PRIMARY KEY,
                owner_user_id VARCHAR(36) NOT NULL,
                original_filename VARCHAR(255) NOT NULL,
                content_type VARCHAR(100) NOT NULL,
                size_bytes INTEGER NOT NULL,
                storage_key VARCHAR(500) NOT NULL,
                uploaded_at TIMESTAMP NOT NULL,
                FOREIGN KEY (owner_user_id) REFERENCES users(user_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS email_logs (
                email_log_id VARCHAR(36) PRIMARY KEY,
                document_id VARCHAR(36) NOT NULL,
                sender_user_id VARCHAR(36) NOT NULL,
                recipient_email VARCHAR(320) NOT NULL,
                status VARCHAR(20) NOT NULL,              -- sent, failed
                provider_message_id VARCHAR(255) NULL,
                error_message TEXT NULL,
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (document_id) REFERENCES documents(document_id) ON DELETE CASCADE,
                FOREIGN KEY (sender_user_id) REFERENCES users(user_id)
            )
        ''')

        cursor.execute(
            'CREATE INDEX IF NOT EXISTS idx_documents_owner ON documents(owner_user_id)'
        )

        conn.commit()
    finally:
        conn.close()


def seed_roles(db_path: str = DEFAULT_DB_PATH) -> None:
    """Insert the default roles if no roles exist yet."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('SELECT COUNT(*) FROM roles')
        if cursor.fetchone()[0] == 0:
            cursor.executemany(
                'INSERT INTO roles (name) VALUES (?)',
                [(name,) for name in DEFAULT_ROLES]
            )
            conn.commit()
    finally:
        conn.close()


# Users

def create_user(email: str,
                password_hash: str,
                display_name: Optional[str] = None,
                db_path: str = DEFAULT_DB_PATH) -> dict:
    """Insert a user and return the stored row."""
    user_id = str(uuid.uuid4())
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        try:
            cursor.execute('''
                INSERT INTO users (user_id, email, password_hash, display_name, created_at)
                VALUES (?, ?, ?, ?, ?)
            ''', (user_id, email, password_hash, display_name, _utcnow()))
        except sqlite3.IntegrityError as e:
            raise UserAlreadyExistsError(email) from e
        conn.commit()
    finally:
        conn.close()
    return get_user_by_id(user_id, db_path)


def get_user_by_email(email: str, db_path: str = DEFAULT_DB_PATH) -> Optional[dict]:
    """Look a user up by e-mail address (case-insensitive)."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM users WHERE email = ?', (email,))
        row = cursor.fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def get_user_by_id(user_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[dict]:
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM users WHERE user_id = ?', (user_id,))
        row = cursor.fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def get_user_roles(user_id: str, db_path: str = DEFAULT_DB_PATH) -> List[str]:
    """Return the role names of a user, sorted."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT r.name FROM roles r
            JOIN user_roles ur ON ur.role_id = r.role_id
            WHERE ur.user_id = ?
            ORDER BY r.name
        ''', (user_id,))
        return [row[0] for row in cursor.fetchall()]
    finally:
        conn.close()


def add_user_role(user_id: str, role_name: str, db_path: str = DEFAULT_DB_PATH) -> None:
    """Grant a role to a user. Granting a role the user already has is a no-op."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('SELECT role_id FROM roles WHERE name = ?', (role_name,))
        row = cursor.fetchone()
        if row is None:
            raise RoleNotFoundError(role_name)
        cursor.execute(
            'INSERT OR IGNORE INTO user_roles (user_id, role_id) VALUES (?, ?)',
            (user_id, row[0])
        )
        conn.commit()
    finally:
        conn.close()


# Documents

def add_document(document_id: str,
                 owner_user_id: str,
                 original_filename: str,
                 content_type: str,
                 size_bytes: int,
                 storage_key: str,
                 db_path: str = DEFAULT_DB_PATH) -> dict:
    """Add the metadata record of an uploaded document."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO documents
            (document_id, owner_user_id, original_filename, content_type, size_bytes, storage_key, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', (document_id, owner_user_id, original_filename, content_type, size_bytes, storage_key, _utcnow()))
        conn.commit()
    finally:
        conn.close()
    return get_document(document_id, db_path)


def get_document(document_id: str, db_path: str = DEFAULT_DB_PATH) -> Optional[dict]:
    """Retrieve document metadata from database."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('SELECT * FROM documents WHERE document_id = ?', (document_id,))
        row = cursor.fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_documents(owner_user_id: Optional[str] = None, db_path: str = DEFAULT_DB_PATH) -> List[dict]:
    """List documents, newest first, optionally only those of one owner."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        if owner_user_id is None:
            cursor.execute('SELECT * FROM documents ORDER BY uploaded_at DESC')
        else:
            cursor.execute(
                'SELECT * FROM documents WHERE owner_user_id = ? ORDER BY uploaded_at DESC',
                (owner_user_id,)
            )
        return [dict(row) for row in cursor.fetchall()]
    finally:
        conn.close()


def delete_document(document_id: str, db_path: str = DEFAULT_DB_PATH) -> bool:
    """Delete a document record. Returns False if it did not exist."""
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('DELETE FROM documents WHERE document_id = ?', (document_id,))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


# E-mail log

def add_email_log(document_id: str,
                  sender_user_id: str,
                  recipient_email: str,
                  status: str,
                  provider_message_id: Optional[str] = None,
                  error_message: Optional[str] = None,
                  db_path: str = DEFAULT_DB_PATH) -> str:
    """Record one send attempt and return its id."""
    email_log_id = str(uuid.uuid4())
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO email_logs
            (email_log_id, document_id, sender_user_id, recipient_email, status,
             provider_message_id, error_message, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (email_log_id, document_id, sender_user_id, recipient_email, status,
              provider_message_id, error_message, _utcnow()))
        conn.commit()
        return email_log_id
    finally:
        conn.close()


def get_email_logs(document_id: str, db_path: str = DEFAULT_DB_PATH) -> List[dict]:
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()
        cursor.execute(
            'SELECT * FROM email_logs WHERE document_id = ? ORDER BY created_at, rowid',
            (document_id,)
        )
        return [dict(row) for row in cursor.fetchall()]
    finally:
        conn.close()
