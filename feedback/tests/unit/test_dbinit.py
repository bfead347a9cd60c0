from unittest.mock import MagicMock

import pytest
from mysql.connector import Error

from feedback.config import Config
from feedback.dbinit.session_table import (
    ATTENDANCE_COLUMNS, SESSION_COLUMNS, SUBMISSION_COLUMNS, create_or_update_table, create_tables,
)


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.cursor.return_value = MagicMock()
    return conn


def executed(connection):
    return [c.args[0] for c in connection.cursor.return_value.execute.call_args_list]


def test_creates_missing_table(connection):
    connection.cursor.return_value.fetchone.return_value = None

    create_or_update_table(connection, "feedback_sessions", SESSION_COLUMNS)

    create = executed(connection)[-1]
    assert create.startswith("CREATE TABLE feedback_sessions")
    assert "organisers JSON NOT NULL" in create
    connection.commit.assert_called_once()


def test_adds_only_missing_columns(connection):
    cursor = connection.cursor.return_value
    cursor.fetchone.return_value = ("feedback_sessions",)
    cursor.fetchall.return_value = [(name,) for name in SESSION_COLUMNS if name != "closed"]

    create_or_update_table(connection, "feedback_sessions", SESSION_COLUMNS)

    alters = [q for q in executed(connection) if q.startswith("ALTER TABLE")]
    assert alters == ["ALTER TABLE feedback_sessions ADD COLUMN closed TINYINT(1) DEFAULT 0"]


def test_submission_and_attendance_tables_are_indexed_on_session_id(connection):
    connection.cursor.return_value.fetchone.return_value = None
    create_tables(connection, Config(db={}, rabbitmq={}))

    creates = [q for q in executed(connection) if q.startswith("CREATE TABLE")]
    assert len(creates) == 3
    assert "INDEX (id)" in creates[1]
    assert all(col in creates[1] for col in SUBMISSION_COLUMNS)
    assert creates[2].startswith("CREATE TABLE feedback_attendance")
    assert "INDEX (id)" in creates[2]
    assert all(col in creates[2] for col in ATTENDANCE_COLUMNS)


def test_errors_are_raised_and_cursor_closed(connection):
    connection.cursor.return_value.execute.side_effect = Error("denied")
    with pytest.raises(Error):
        create_or_update_table(connection, "feedback_sessions", SESSION_COLUMNS)
    connection.cursor.return_value.close.assert_called_once()
