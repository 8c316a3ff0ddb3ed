import sqlite3
import pytest
from unittest import mock
from codelens import database

# --- Database Unit Tests ---

@pytest.fixture
def record():
    return {
        "user_id": "user-1",
        "original_code": "SELECT * FROM users WHERE id = ' + id",
        "language": "sql",
        "score": 35,
        "issues_found": [{"type": "security", "severity": "critical", "message": "SQL injection"}],
        "review_result": {"summary": "Unsafe", "improvements": [], "securityIssues": ["Injection"],
                          "performanceIssues": [], "bestPractices": []},
        "optimized_code": "SELECT * FROM users WHERE id = ?",
        "rewritten_code": "SELECT id, name FROM users WHERE id = ?",
    }

def test_submission_operations(temp_db, record):
    # Test Save
    submission_id = database.save_submission(record)
    assert submission_id

    # Test Get, JSON columns come back decoded
    submission = database.get_submission("user-1", submission_id)
    assert submission["score"] == 35
    assert submission["issues_found"][0]["message"] == "SQL injection"
    assert submission["review_result"]["securityIssues"] == ["Injection"]
    assert submission["created_at"]

    # Test other users cannot see it
    assert database.get_submission("user-2", submission_id) is None
    assert database.get_submissions("user-2") == []

    # Test Delete
    assert database.delete_submission("user-2", submission_id) is False
    assert database.delete_submission("user-1", submission_id) is True
    assert database.get_submissions("user-1") == []

def test_submissions_newest_first_with_limit(temp_db, record):
    ids = [database.save_submission(record) for _ in range(3)]

    assert [s["id"] for s in database.get_submissions("user-1")] == list(reversed(ids))
    assert [s["id"] for s in database.get_submissions("user-1", limit=2)] == [ids[2], ids[1]]

def test_search_submissions(temp_db, record):
    sql_id = database.save_submission(record)
    record.update(language="python", original_code="total = 100%")
    python_id = database.save_submission(record)

    assert [s["id"] for s in database.get_submissions("user-1", search="SQL")] == [sql_id]
    assert [s["id"] for s in database.get_submissions("user-1", search="where ID")] == [sql_id]
    assert [s["id"] for s in database.get_submissions("user-1", search="100%")] == [python_id]
    assert database.get_submissions("user-1", search="%") == [database.get_submission("user-1", python_id)]
    assert database.get_submissions("user-1", search="_") == []
    assert database.get_submissions("user-2", search="sql") == []

def test_submission_without_analysis_columns(temp_db, record):
    record.update(score=None, issues_found=None, review_result=None)
    submission_id = database.save_submission(record)

    submission = database.get_submission("user-1", submission_id)
    assert submission["score"] is None
    assert submission["issues_found"] is None
    assert submission["review_result"] is None

def test_corrupt_json_column_reads_as_none(temp_db, record):
    submission_id = database.save_submission(record)
    conn = sqlite3.connect(temp_db)
    conn.execute("UPDATE code_submissions SET issues_found = '{broken' WHERE id = ?", (submission_id,))
    conn.commit()
    conn.close()

    assert database.get_submission("user-1", submission_id)["issues_found"] is None

def test_chat_message_operations(temp_db):
    for i in range(4):
        database.save_chat_message("user-1", "user" if i % 2 == 0 else "assistant", f"message {i}")

    messages = database.get_chat_messages("user-1")
    assert [m["content"] for m in messages] == ["message 0", "message 1", "message 2", "message 3"]
    assert [m["content"] for m in database.get_chat_messages("user-1", limit=2)] == ["message 2", "message 3"]

    assert database.clear_chat_messages("user-1") is True
    assert database.get_chat_messages("user-1") == []

def test_chat_message_rejects_unknown_role(temp_db):
    assert database.save_chat_message("user-1", "system", "nope") is None
    assert database.get_chat_messages("user-1") == []

def test_profile_upsert(temp_db):
    assert database.get_profile("user-1") is None

    assert database.save_profile("user-1", "Grace", None) is True
    assert database.save_profile("user-1", "Grace H.", "https://a.example/g.png") is True

    profile = database.get_profile("user-1")
    assert profile["display_name"] == "Grace H."
    assert profile["avatar_url"] == "https://a.example/g.png"

def test_store_failures_are_reported_not_raised(tmp_path):
    missing_dir = tmp_path / "missing" / "db.sqlite"
    with mock.patch("codelens.database.DB_NAME", str(missing_dir)):
        assert database.save_chat_message("user-1", "user", "hi") is None
        assert database.get_chat_messages("user-1") == []
        assert database.get_submissions("user-1") == []
        assert database.delete_submission("user-1", "x") is False
        assert database.get_profile("user-1") is None
