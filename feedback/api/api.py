from datetime import datetime

from flask import Flask, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from feedback.config import load_config
from feedback.errors import FeedbackError, ValidationError
from feedback.lifecycle.lifecycle import build_lifecycle
from feedback.models import (
    Attendee, OrganiserDraft, Question, SessionDraft, Submission, SubsessionDraft,
    SubsessionFeedback,
)
from feedback.monitoring.monitoring import log_error

RESET_PIN_LIMIT = "5 per hour"
FIND_SESSIONS_LIMIT = "5 per hour"


# --- request parsing ----------------------------------------------------------

def _require(data, key):
    if not isinstance(data, dict) or key not in data:
        raise ValidationError(f"'{key}' is required.")
    return data[key]


def _parse_date(value):
    if not value:
        return None
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid date '{value}', expected YYYY-MM-DD.")


def parse_draft(data) -> SessionDraft:
    organisers = [
        OrganiserDraft(
            name=_require(o, "name"),
            email=_require(o, "email"),
            is_lead=bool(o.get("isLead", False)),
            can_edit=bool(o.get("canEdit", False)),
            notifications=bool(o.get("notifications", True)),
            original_email=o.get("originalEmail"),
        )
        for o in _require(data, "organisers")
    ]
    questions = [
        Question(title=_require(q, "title"), type=q.get("type") or "text", options=list(q.get("options") or []))
        for q in data.get("questions") or []
    ]
    subsessions = [
        SubsessionDraft(
            name=_require(s, "name"),
            title=_require(s, "title"),
            email=s.get("email") or "",
            id=s.get("id") or None,
        )
        for s in data.get("subsessions") or []
    ]
    multiple_dates = bool(data.get("multipleDates", False))
    return SessionDraft(
        title=_require(data, "title"),
        name=_require(data, "name"),
        date=None if multiple_dates else _parse_date(data.get("date")),
        multiple_dates=multiple_dates,
        organisers=organisers,
        questions=questions,
        subsessions=subsessions,
        attendance=bool(data.get("attendance", False)),
        certificate=bool(data.get("certificate", False)),
    )


def parse_submission(data) -> Submission:
    score = data.get("score")
    try:
        score = int(score) if score not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid score '{score}'.")
    return Submission(
        positive=data.get("positive") or "",
        negative=data.get("negative") or "",
        score=score,
        questions=list(data.get("questions") or []),
    )


def parse_attendee(data) -> Attendee:
    attendee = _require(data, "attendee")
    return Attendee(
        name=str(_require(attendee, "name")).strip(),
        region=str(_require(attendee, "region")).strip(),
        organisation=str(_require(attendee, "organisation")).strip(),
    )


def _date_view(session):
    return session.date.isoformat() if session.date else None


def session_view(session, subsessions) -> dict:
    """Session as sent to the edit form. Credential fields are never included."""
    return {
        "id": session.id,
        "title": session.title,
        "name": session.name,
        "date": _date_view(session),
        "multipleDates": session.multiple_dates,
        "organisers": [
            {"name": o.name, "email": o.email, "isLead": o.is_lead,
             "canEdit": o.can_edit, "notifications": o.notifications}
            for o in session.organisers
        ],
        "questions": [{"title": q.title, "type": q.type, "options": q.options} for q in session.questions],
        "subsessions": [
            {"id": c.id, "name": c.name, "title": c.title, "email": c.organiser_email()}
            for c in subsessions
        ],
        "attendance": session.attendance,
        "certificate": session.certificate,
        "closed": session.closed,
    }


def give_feedback_view(session, subsessions) -> dict:
    """Session as shown to attendees: no organisers at all."""
    return {
        "id": session.id,
        "title": session.title,
        "name": session.name,
        "date": _date_view(session),
        "multipleDates": session.multiple_dates,
        "questions": [{"title": q.title, "type": q.type, "options": q.options} for q in session.questions],
        "subsessions": [{"id": c.id, "name": c.name, "title": c.title} for c in subsessions],
        "attendance": session.attendance,
        "certificate": session.certificate,
        "closed": session.closed,
    }


def report_view(report) -> dict:
    session = report.session
    return {
        "id": session.id,
        "title": session.title,
        "name": session.name,
        "date": _date_view(session),
        "multipleDates": session.multiple_dates,
        "closed": session.closed,
        "organisers": [
            {"name": o.name, "isLead": o.is_lead, "canEdit": o.can_edit} for o in session.organisers
        ],
        "feedback": report.feedback,
        "questions": report.questions,
        "subsessions": [report_view(child) for child in report.subsessions],
    }


def _body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def _failures(outcome):
    return {"notificationFailures": outcome.notification_failures}


# --- app factory --------------------------------------------------------------

def create_app(lifecycle=None, config=None):
    config = config or load_config()
    lifecycle = lifecycle or build_lifecycle(config)

    app = Flask(__name__)
    app.secret_key = config.secret_key
    limiter = Limiter(
        get_remote_address,
        app=app,
        default_limits=config.rate_limits,
        storage_uri="memory://",
    )

    @app.errorhandler(FeedbackError)
    def handle_feedback_error(e):
        if e.status_code >= 500:
            log_error(f"{request.method} {request.path} failed: {e}")
        return jsonify({"error": str(e)}), e.status_code

    def acting_user(session_id, data):
        return lifecycle.authenticate(session_id, str(_require(data, "pin")))

    @app.route('/sessions', methods=['POST'])
    def create_session():
        outcome = lifecycle.create(parse_draft(_body()))
        return jsonify({"id": outcome.id, "pin": outcome.lead_pin, **_failures(outcome)}), 201

    @app.route('/sessions/<session_id>/load', methods=['POST'])
    def load_session(session_id):
        user = acting_user(session_id, _body())
        session, subsessions = lifecycle.load_for_update(session_id, user)
        return jsonify(session_view(session, subsessions)), 200

    @app.route('/sessions/<session_id>', methods=['PUT'])
    def update_session(session_id):
        data = _body()
        user = acting_user(session_id, data)
        outcome = lifecycle.update(session_id, parse_draft(_require(data, "session")), user)
        return jsonify(_failures(outcome)), 200

    @app.route('/sessions/<session_id>/close', methods=['POST'])
    def close_session(session_id):
        user = acting_user(session_id, _body())
        outcome = lifecycle.close(session_id, user)
        return jsonify(_failures(outcome)), 200

    @app.route('/sessions/<session_id>/reset-pin', methods=['POST'])
    @limiter.limit(RESET_PIN_LIMIT)
    def reset_pin(session_id):
        email = str(_require(_body(), "email")).strip()
        outcome = lifecycle.reset_credential(session_id, email)
        return jsonify(_failures(outcome)), 200

    @app.route('/sessions/<session_id>/feedback', methods=['POST'])
    def submit_feedback(session_id):
        data = _body()
        entries = [
            SubsessionFeedback(
                id=_require(entry, "id"),
                status=entry.get("status") or "",
                submission=parse_submission(entry),
            )
            for entry in data.get("subsessions") or []
        ]
        outcome = lifecycle.submit_feedback(session_id, parse_submission(data), entries)
        return jsonify(_failures(outcome)), 201

    @app.route('/sessions/<session_id>/notifications', methods=['POST'])
    def update_notifications(session_id):
        data = _body()
        user = acting_user(session_id, data)
        outcome = lifecycle.update_notification_preferences(
            session_id, user, bool(_require(data, "notifications")))
        return jsonify(_failures(outcome)), 200

    @app.route('/sessions/<session_id>/view', methods=['POST'])
    def view_feedback(session_id):
        user = acting_user(session_id, _body())
        report = lifecycle.view_feedback(session_id, user)
        return jsonify(report_view(report)), 200

    @app.route('/sessions/<session_id>/give', methods=['GET'])
    def load_give_feedback(session_id):
        session, subsessions = lifecycle.load_give_feedback(session_id)
        return jsonify(give_feedback_view(session, subsessions)), 200

    @app.route('/sessions/find-mine', methods=['POST'])
    @limiter.limit(FIND_SESSIONS_LIMIT)
    def find_my_sessions():
        email = str(_require(_body(), "email")).strip()
        outcome = lifecycle.find_my_sessions(email)
        return jsonify(_failures(outcome)), 200

    @app.route('/sessions/<session_id>/attendance', methods=['POST'])
    def insert_attendance(session_id):
        lifecycle.insert_attendance(session_id, parse_attendee(_body()))
        return jsonify({}), 201

    @app.route('/sessions/<session_id>/attendance/view', methods=['POST'])
    def view_attendance(session_id):
        user = acting_user(session_id, _body())
        session, register = lifecycle.view_attendance(session_id, user)
        return jsonify({
            "id": session.id,
            "title": session.title,
            "name": session.name,
            "date": _date_view(session),
            "multipleDates": session.multiple_dates,
            "attendance": register,
        }), 200

    return app


if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=5000)
