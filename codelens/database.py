import json
import sqlite3
import logging
import uuid
from typing import Optional, List, Dict, Any

DB_NAME = ".codelens.db"

SUBMISSION_JSON_COLUMNS = ("issues_found", "review_result")


def get_connection():
    """Get a database connection with row factory for dict-like access."""
    conn = sqlite3.connect(DB_NAME)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    try:
        conn = sqlite3.connect(DB_NAME)
        cursor = conn.cursor()

        # Analyzed code, one row per /analyze call by a signed-in user
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS code_submissions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                original_code TEXT NOT NULL,
                language TEXT NOT NULL,
                score INTEGER,
                issues_found TEXT,
                review_result TEXT,
                optimized_code TEXT,
                rewritten_code TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Chat support conversation
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chat_messages (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
                content TEXT NOT NULL,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                user_id TEXT UNIQUE NOT NULL,
                display_name TEXT,
                avatar_url TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_code_submissions_user ON code_submissions(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_chat_messages_user ON chat_messages(user_id)")

        conn.commit()
        conn.close()
    except Exception as e:
        logging.error(f"Failed to initialize database: {e}")


def _submission_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    submission = dict(row)
    for column in SUBMISSION_JSON_COLUMNS:
        if submission.get(column) is not None:
            try:
                submission[column] = json.loads(submission[column])
            except ValueError:
                logging.error(f"Corrupt {column} in submission {submission['id']}")
                submission[column] = None
    return submission


# ============ Code Submission Functions ============

def save_submission(record: Dict[str, Any]) -> Optional[str]:
    """Insert a flat submission record and return its new id."""
    submission_id = str(uuid.uuid4())
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO code_submissions
                (id, user_id, original_code, language, score, issues_found,
                 review_result, optimized_code, rewritten_code)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            submission_id,
            record["user_id"],
            record["original_code"],
            record["language"],
            record.get("score"),
            json.dumps(record.get("issues_found")) if record.get("issues_found") is not None else None,
            json.dumps(record.get("review_result")) if record.get("review_result") is not None else None,
            record.get("optimized_code"),
            record.get("rewritten_code"),
        ))
        conn.commit()
        conn.close()
        return submission_id
    except Exception as e:
        logging.error(f"Failed to save submission for {record.get('user_id')}: {e}")
        return None


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def get_submissions(
    user_id: str,
    limit: Optional[int] = None,
    search: Optional[str] = None
) -> List[Dict[str, Any]]:
    """List the user's submissions newest first, optionally matching ``search``
    case-insensitively against the language or the code."""
    try:
        conn = get_connection()
        cursor = conn.cursor()
        query = "SELECT * FROM code_submissions WHERE user_id = ?"
        params: list = [user_id]
        if search:
            pattern = _like_pattern(search)
            query += (
                " AND (language COLLATE NOCASE LIKE ? ESCAPE '\\'"
                " OR original_code COLLATE NOCASE LIKE ? ESCAPE '\\')"
            )
            params += [pattern, pattern]
        query += " ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        cursor.execute(query, params)
        rows = cursor.fetchall()
        conn.close()
        return [_submission_from_row(row) for row in rows]
    except Exception as e:
        logging.error(f"Failed to get submissions for {user_id}: {e}")
        return []


def get_submission(user_id: str, submission_id: str) -> Optional[Dict[str, Any]]:
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM code_submissions WHERE id = ? AND user_id = ?",
            (submission_id, user_id)
        )
        row = cursor.fetchone()
        conn.close()
        return _submission_from_row(row) if row else None
    except Exception as e:
        logging.error(f"Failed to get submission {submission_id}: {e}")
        return None


def delete_submission(user_id: str, submission_id: str) -> bool:
    """Delete one of the user's submissions. Returns False if nothing was deleted."""
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "DELETE FROM code_submissions WHERE id = ? AND user_id = ?",
            (submission_id, user_id)
        )
        deleted = cursor.rowcount
        conn.commit()
        conn.close()
        return deleted > 0
    except Exception as e:
        logging.error(f"Failed to delete submission {submission_id}: {e}")
        return False


# ============ Chat Message Functions ============

def save_chat_message(user_id: str, role: str, content: str) -> Optional[str]:
    message_id = str(uuid.uuid4())
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO chat_messages (id, user_id, role, content)
            VALUES (?, ?, ?, ?)
        """, (message_id, user_id, role, content))
        conn.commit()
        conn.close()
        return message_id
    except Exception as e:
        logging.error(f"Failed to save {role} chat message for {user_id}: {e}")
        return None


def get_chat_messages(user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """Return the user's latest ``limit`` messages in conversation order."""
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            SELECT id, user_id, role, content, created_at FROM (
                SELECT *, rowid AS seq FROM chat_messages
                WHERE user_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            ) ORDER BY created_at ASC, seq ASC
        """, (user_id, limit))
        rows = cursor.fetchall()
        conn.close()
        return [dict(row) for row in rows]
    except Exception as e:
        logging.error(f"Failed to get chat messages for {user_id}: {e}")
        return []


def clear_chat_messages(user_id: str) -> bool:
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("DELETE FROM chat_messages WHERE user_id = ?", (user_id,))
        conn.commit()
        conn.close()
        return True
    except Exception as e:
        logging.error(f"Failed to clear chat messages for {user_id}: {e}")
        return False


# ============ Profile Functions ============

def save_profile(
    user_id: str,
    display_name: Optional[str] = None,
    avatar_url: Optional[str] = None
) -> bool:
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO profiles (id, user_id, display_name, avatar_url, updated_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(user_id) DO UPDATE SET
                display_name = excluded.display_name,
                avatar_url = excluded.avatar_url,
                updated_at = CURRENT_TIMESTAMP
        """, (str(uuid.uuid4()), user_id, display_name, avatar_url))
        conn.commit()
        conn.close()
        return True
    except Exception as e:
        logging.error(f"Failed to save profile for {user_id}: {e}")
        return False


def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM profiles WHERE user_id = ?", (user_id,))
        row = cursor.fetchone()
        conn.close()
        return dict(row) if row else None
    except Exception as e:
        logging.error(f"Failed to get profile for {user_id}: {e}")
        return None
