import json
from contextlib import contextmanager
from datetime import date, datetime
from typing import List

import mysql.connector
from mysql.connector import Error

from feedback.errors import NotFoundError, StoreError
from feedback.models import Attendee, Organiser, Question, Session, Submission
from feedback.monitoring.monitoring import log_error

# --- row (de)serialisation ----------------------------------------------------

def organiser_to_dict(organiser: Organiser) -> dict:
    return {
        "name": organiser.name,
        "email": organiser.email,
        "isLead": organiser.is_lead,
        "canEdit": organiser.can_edit,
        "pinHash": organiser.pin_hash,
        "salt": organiser.salt,
        "notifications": organiser.notifications,
        "lastSent": organiser.last_sent,
    }


def organiser_from_dict(data: dict) -> Organiser:
    return Organiser(
        name=data.get("name") or "",
        email=data.get("email") or "",
        is_lead=bool(data.get("isLead", False)),
        can_edit=bool(data.get("canEdit", False)),
        pin_hash=data.get("pinHash") or "",
        salt=data.get("salt") or "",
        notifications=bool(data.get("notifications", True)),
        last_sent=data.get("lastSent"),
    )


def question_to_dict(question: Question) -> dict:
    return {"title": question.title, "type": question.type, "options": list(question.options)}


def question_from_dict(data: dict) -> Question:
    return Question(
        title=data.get("title") or "",
        type=data.get("type") or "text",
        options=list(data.get("options") or []),
    )


def _load_json(value, default):
    if value is None or value == "":
        return default
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value


def _to_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()


def session_from_row(row: dict) -> Session:
    return Session(
        id=row["id"],
        title=row.get("title") or "",
        name=row.get("name") or "",
        date=_to_date(row.get("date")),
        multiple_dates=bool(row.get("multipleDates")),
        organisers=[organiser_from_dict(o) for o in _load_json(row.get("organisers"), [])],
        questions=[question_from_dict(q) for q in _load_json(row.get("questions"), [])],
        subsessions=list(_load_json(row.get("subsessions"), [])),
        attendance=bool(row.get("attendance")),
        certificate=bool(row.get("certificate")),
        closed=bool(row.get("closed")),
        is_subsession=bool(row.get("isSubsession")),
    )


def session_to_row(session: Session) -> dict:
    return {
        "id": session.id,
        "name": session.name,
        "title": session.title,
        "date": session.date.isoformat() if session.date else None,
        "multipleDates": int(session.multiple_dates),
        "organisers": json.dumps([organiser_to_dict(o) for o in session.organisers]),
        "questions": json.dumps([question_to_dict(q) for q in session.questions]),
        "certificate": int(session.certificate),
        "subsessions": json.dumps(list(session.subsessions)),
        "isSubsession": int(session.is_subsession),
        "attendance": int(session.attendance),
        "closed": int(session.closed),
    }


# --- store ---------------------------------------------------------------------

class SessionStore:
    """MySQL persistence for sessions, feedback submissions and attendance.

    Every method takes an open connection so that a whole request can share
    one connection (see connect()) and, for writes, one transaction. Reads
    made with for_update=True lock the row until that transaction ends.
    """

    def __init__(self, config):
        self.db_config = dict(config.db)
        self.sessions_table = config.sessions_table
        self.submissions_table = config.submissions_table
        self.attendance_table = config.attendance_table

    @contextmanager
    def connect(self):
        try:
            conn = mysql.connector.connect(autocommit=True, **self.db_config)
        except Error as e:
            log_error(f"Error connecting to database: {e}")
            raise StoreError("Database connection failed") from e
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, conn):
        try:
            conn.start_transaction()
            yield conn
            conn.commit()
        except Exception as e:
            try:
                conn.rollback()
            except Error as rollback_error:
                log_error(f"Rollback failed: {rollback_error}")
            if isinstance(e, Error):
                raise StoreError(f"Transaction failed: {e}") from e
            raise

    def _execute(self, conn, query, params=(), fetch=None):
        cur = None
        try:
            cur = conn.cursor(dictionary=True)
            cur.execute(query, params)
            if fetch == "one":
                return cur.fetchone()
            if fetch == "all":
                return cur.fetchall()
            return cur.rowcount
        except Error as e:
            raise StoreError(f"Database query failed: {e}") from e
        finally:
            if cur is not None:
                cur.close()

    # --- reads ---

    def id_exists(self, conn, session_id) -> bool:
        row = self._execute(
            conn, f"SELECT COUNT(*) AS count FROM {self.sessions_table} WHERE id = %s",
            (session_id,), fetch="one")
        return bool(row and row["count"] > 0)

    def load(self, conn, session_id, for_update=False) -> Session:
        query = f"SELECT * FROM {self.sessions_table} WHERE id = %s"
        if for_update:
            query += " FOR UPDATE"
        row = self._execute(conn, query, (session_id,), fetch="one")
        if not row:
            raise NotFoundError(f"Session {session_id} not found.")
        return session_from_row(row)

    def load_many(self, conn, session_ids, for_update=False) -> List[Session]:
        sessions = []
        for session_id in session_ids:
            try:
                sessions.append(self.load(conn, session_id, for_update=for_update))
            except NotFoundError:
                log_error(f"Subsession {session_id} is listed but has no row, skipping")
        return sessions

    def find_sessions_by_email(self, conn, email) -> List[Session]:
        """Every session (series or subsession) listing email as an organiser."""
        rows = self._execute(
            conn,
            f"SELECT * FROM {self.sessions_table} "
            "WHERE LOWER(CAST(organisers AS CHAR)) LIKE %s ORDER BY date, id",
            (f"%{email.strip().lower()}%",), fetch="all")
        # LIKE also hits substrings of other addresses
        sessions = [session_from_row(row) for row in rows or []]
        return [s for s in sessions if s.find_organiser(email) is not None]

    def feedback_exists(self, conn, session_id) -> bool:
        row = self._execute(
            conn, f"SELECT COUNT(*) AS count FROM {self.submissions_table} WHERE id = %s",
            (session_id,), fetch="one")
        return bool(row and row["count"] > 0)

    def load_submissions(self, conn, session_id) -> List[Submission]:
        rows = self._execute(conn, f"""
            SELECT positive, negative, questions, score FROM {self.submissions_table}
            WHERE id = %s ORDER BY submission_id
        """, (session_id,), fetch="all")
        return [
            Submission(
                positive=row.get("positive") or "",
                negative=row.get("negative") or "",
                score=row.get("score"),
                questions=list(_load_json(row.get("questions"), [])),
            )
            for row in rows or []
        ]

    def load_attendance(self, conn, session_id) -> List[Attendee]:
        rows = self._execute(conn, f"""
            SELECT name, region, organisation FROM {self.attendance_table}
            WHERE id = %s ORDER BY region, organisation, name
        """, (session_id,), fetch="all")
        return [Attendee(row["name"], row["region"], row["organisation"]) for row in rows or []]

    # --- writes ---

    def insert(self, conn, session: Session):
        row = session_to_row(session)
        columns = ", ".join(row.keys())
        placeholders = ", ".join(["%s"] * len(row))
        self._execute(
            conn, f"INSERT INTO {self.sessions_table} ({columns}) VALUES ({placeholders})",
            tuple(row.values()))

    def update(self, conn, session: Session):
        row = session_to_row(session)
        self._execute(conn, f"""
            UPDATE {self.sessions_table}
            SET name = %s, title = %s, date = %s, multipleDates = %s, organisers = %s,
                questions = %s, certificate = %s, subsessions = %s, attendance = %s
            WHERE id = %s
        """, (
            row["name"], row["title"], row["date"], row["multipleDates"], row["organisers"],
            row["questions"], row["certificate"], row["subsessions"], row["attendance"],
            session.id
        ))

    def update_subsession(self, conn, session: Session):
        row = session_to_row(session)
        self._execute(
            conn, f"UPDATE {self.sessions_table} SET name = %s, title = %s, organisers = %s WHERE id = %s",
            (row["name"], row["title"], row["organisers"], session.id))

    def update_organisers(self, conn, session_id, organisers):
        payload = json.dumps([organiser_to_dict(o) for o in organisers])
        self._execute(
            conn, f"UPDATE {self.sessions_table} SET organisers = %s WHERE id = %s",
            (payload, session_id))

    def close(self, conn, session_id):
        self._execute(
            conn, f"UPDATE {self.sessions_table} SET closed = 1 WHERE id = %s", (session_id,))

    def insert_submission(self, conn, session_id, submission: Submission):
        self._execute(conn, f"""
            INSERT INTO {self.submissions_table} (id, positive, negative, questions, score)
            VALUES (%s, %s, %s, %s, %s)
        """, (
            session_id, submission.positive, submission.negative,
            json.dumps(submission.questions), submission.score
        ))

    def insert_attendance(self, conn, session_id, attendee: Attendee):
        self._execute(
            conn, f"INSERT INTO {self.attendance_table} (id, name, region, organisation) VALUES (%s, %s, %s, %s)",
            (session_id, attendee.name, attendee.region, attendee.organisation))
