from datetime import date
from unittest.mock import MagicMock

import pytest

from feedback.api.api import create_app, parse_draft
from feedback.config import Config
from feedback.errors import ConflictError, ForbiddenError, NotFoundError, StoreError, ValidationError
from feedback.models import (
    ActingUser, CreateOutcome, FeedbackReport, Organiser, Outcome, Question, Session,
)

SESSION_JSON = {
    "title": "Suturing workshop",
    "name": "Dr A",
    "date": "2025-03-01",
    "organisers": [
        {"name": "Alice", "email": "alice@example.com", "isLead": True, "canEdit": True},
        {"name": "Bob", "email": "bob@example.com", "originalEmail": "bob@example.com"},
    ],
    "questions": [{"title": "Pace?", "type": "radio", "options": ["Slow", "Fast"]}],
    "subsessions": [{"id": "fX0001", "name": "Xavier", "title": "Knots"}],
    "certificate": True,
}


@pytest.fixture
def lifecycle():
    lc = MagicMock()
    lc.authenticate.return_value = ActingUser("Alice", "alice@example.com", is_lead=True, can_edit=True)
    lc.update.return_value = Outcome()
    lc.close.return_value = Outcome()
    lc.reset_credential.return_value = Outcome()
    lc.submit_feedback.return_value = Outcome()
    lc.update_notification_preferences.return_value = Outcome()
    lc.find_my_sessions.return_value = Outcome()
    return lc


@pytest.fixture
def client(lifecycle):
    app = create_app(lifecycle=lifecycle, config=Config(db={}, rabbitmq={}, secret_key="test"))
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client

# -------------------------------
# Draft parsing
# -------------------------------

def test_parse_draft_maps_camel_case_fields():
    draft = parse_draft(SESSION_JSON)

    assert draft.date == date(2025, 3, 1)
    assert draft.organisers[0].is_lead is True
    assert draft.organisers[1].original_email == "bob@example.com"
    assert draft.organisers[0].original_email is None
    assert draft.questions[0].options == ["Slow", "Fast"]
    assert draft.subsessions[0].id == "fX0001"
    assert draft.subsessions[0].email == ""


def test_parse_draft_missing_field():
    with pytest.raises(ValidationError):
        parse_draft({"name": "Dr A", "organisers": []})


def test_parse_draft_bad_date():
    with pytest.raises(ValidationError):
        parse_draft({**SESSION_JSON, "date": "01/03/2025"})

# -------------------------------
# Routes
# -------------------------------

def test_create_returns_id_and_pin(client, lifecycle):
    lifecycle.create.return_value = CreateOutcome(id="fAbc12", lead_pin="123456")

    response = client.post("/sessions", json=SESSION_JSON)

    assert response.status_code == 201
    assert response.get_json() == {"id": "fAbc12", "pin": "123456", "notificationFailures": []}


def test_update_authenticates_then_updates(client, lifecycle):
    failures = [{"name": "Bob", "email": "bob@example.com", "error": "relay down"}]
    lifecycle.update.return_value = Outcome(notification_failures=failures)

    response = client.put("/sessions/fAbc12", json={"pin": "123456", "session": SESSION_JSON})

    assert response.status_code == 200
    assert response.get_json() == {"notificationFailures": failures}
    lifecycle.authenticate.assert_called_once_with("fAbc12", "123456")
    session_id, draft, user = lifecycle.update.call_args.args
    assert draft.title == "Suturing workshop"
    assert user.email == "alice@example.com"


def test_load_never_returns_credentials(client, lifecycle):
    session = Session(id="fAbc12", title="T", name="N", organisers=[
        Organiser("Alice", "alice@example.com", is_lead=True, pin_hash="", salt="")])
    lifecycle.load_for_update.return_value = (session, [])

    response = client.post("/sessions/fAbc12/load", json={"pin": "123456"})

    body = response.get_json()
    assert response.status_code == 200
    assert set(body["organisers"][0]) == {"name", "email", "isLead", "canEdit", "notifications"}


def test_missing_pin_is_bad_request(client, lifecycle):
    response = client.post("/sessions/fAbc12/close", json={})
    assert response.status_code == 400
    lifecycle.close.assert_not_called()


def test_non_json_body_is_bad_request(client):
    response = client.post("/sessions", data="not json", content_type="text/plain")
    assert response.status_code == 400


@pytest.mark.parametrize("error, status", [
    (NotFoundError("Session fNope1 not found."), 404),
    (ForbiddenError("Invalid PIN."), 403),
    (ConflictError("This session has already been closed."), 409),
    (StoreError("Database connection failed"), 503),
])
def test_errors_map_to_status_codes(client, lifecycle, error, status):
    lifecycle.close.side_effect = error

    response = client.post("/sessions/fAbc12/close", json={"pin": "123456"})

    assert response.status_code == status
    assert response.get_json() == {"error": str(error)}


def test_reset_pin(client, lifecycle):
    response = client.post("/sessions/fAbc12/reset-pin", json={"email": " bob@example.com "})
    assert response.status_code == 200
    lifecycle.reset_credential.assert_called_once_with("fAbc12", "bob@example.com")


def test_reset_pin_is_rate_limited(client):
    statuses = [
        client.post("/sessions/fAbc12/reset-pin", json={"email": "bob@example.com"}).status_code
        for _ in range(6)
    ]
    assert statuses[:5] == [200] * 5
    assert statuses[5] == 429


def test_submit_feedback_with_subsessions(client, lifecycle):
    response = client.post("/sessions/fAbc12/feedback", json={
        "positive": "Great", "score": "5",
        "subsessions": [{"id": "fX0001", "status": "Complete", "positive": "Knots were clear"}],
    })

    assert response.status_code == 201
    session_id, submission, entries = lifecycle.submit_feedback.call_args.args
    assert submission.score == 5
    assert entries[0].status == "Complete"
    assert entries[0].submission.positive == "Knots were clear"


def test_submit_feedback_bad_score(client, lifecycle):
    response = client.post("/sessions/fAbc12/feedback", json={"score": "lots"})
    assert response.status_code == 400
    lifecycle.submit_feedback.assert_not_called()


def test_notification_preferences(client, lifecycle):
    response = client.post("/sessions/fAbc12/notifications", json={"pin": "123456", "notifications": False})

    assert response.status_code == 200
    session_id, user, notifications = lifecycle.update_notification_preferences.call_args.args
    assert notifications is False


def test_view_feedback_returns_report(client, lifecycle):
    session = Session(id="fAbc12", title="T", name="N", date=date(2025, 3, 1), organisers=[
        Organiser("Alice", "", is_lead=True, can_edit=True)])
    child = Session(id="fX0001", title="Knots", name="Xavier", is_subsession=True)
    feedback = {"count": 1, "positive": ["Great"], "negative": [""], "scores": [5]}
    lifecycle.view_feedback.return_value = FeedbackReport(
        session=session, feedback=feedback,
        questions=[{"title": "Pace?", "type": "select", "responses": [],
                    "options": [{"title": "Fast", "count": 1}]}],
        subsessions=[FeedbackReport(session=child, feedback={**feedback, "positive": ["Clear"]})],
    )

    response = client.post("/sessions/fAbc12/view", json={"pin": "123456"})

    body = response.get_json()
    assert response.status_code == 200
    lifecycle.authenticate.assert_called_once_with("fAbc12", "123456")
    assert body["feedback"]["positive"] == ["Great"]
    assert body["questions"][0]["options"] == [{"title": "Fast", "count": 1}]
    assert body["subsessions"][0]["feedback"]["positive"] == ["Clear"]
    assert body["organisers"] == [{"name": "Alice", "isLead": True, "canEdit": True}]


def test_give_feedback_view_has_no_organisers(client, lifecycle):
    session = Session(id="fAbc12", title="T", name="N", certificate=True,
                      questions=[Question(title="Pace?", type="select", options=["Slow", "Fast"])])
    child = Session(id="fX0001", title="Knots", name="Xavier", is_subsession=True)
    lifecycle.load_give_feedback.return_value = (session, [child])

    response = client.get("/sessions/fAbc12/give")

    body = response.get_json()
    assert response.status_code == 200
    assert "organisers" not in body
    assert body["subsessions"] == [{"id": "fX0001", "name": "Xavier", "title": "Knots"}]
    assert body["questions"][0]["options"] == ["Slow", "Fast"]
    lifecycle.authenticate.assert_not_called()


def test_find_my_sessions(client, lifecycle):
    response = client.post("/sessions/find-mine", json={"email": " alice@example.com "})

    assert response.status_code == 200
    assert response.get_json() == {"notificationFailures": []}
    lifecycle.find_my_sessions.assert_called_once_with("alice@example.com")


def test_find_my_sessions_is_rate_limited(client):
    statuses = [
        client.post("/sessions/find-mine", json={"email": "alice@example.com"}).status_code
        for _ in range(6)
    ]
    assert statuses[5] == 429


def test_insert_attendance(client, lifecycle):
    response = client.post("/sessions/fAbc12/attendance", json={
        "attendee": {"name": " Ann ", "region": "North", "organisation": "General"}})

    assert response.status_code == 201
    session_id, attendee = lifecycle.insert_attendance.call_args.args
    assert session_id == "fAbc12"
    assert (attendee.name, attendee.region, attendee.organisation) == ("Ann", "North", "General")


def test_insert_attendance_missing_field(client, lifecycle):
    response = client.post("/sessions/fAbc12/attendance", json={"attendee": {"name": "Ann"}})
    assert response.status_code == 400
    lifecycle.insert_attendance.assert_not_called()


def test_view_attendance(client, lifecycle):
    register = {"count": 3, "regions": [{"name": "North", "count": 3, "organisations": []}]}
    lifecycle.view_attendance.return_value = (Session(id="fAbc12", title="T", name="N"), register)

    response = client.post("/sessions/fAbc12/attendance/view", json={"pin": "123456"})

    assert response.status_code == 200
    assert response.get_json()["attendance"] == register


def test_view_attendance_below_threshold_is_forbidden(client, lifecycle):
    lifecycle.view_attendance.side_effect = ForbiddenError(
        "Cannot view attendance where fewer than 3 attendees exist to protect feedback anonymity.")
    response = client.post("/sessions/fAbc12/attendance/view", json={"pin": "123456"})
    assert response.status_code == 403
