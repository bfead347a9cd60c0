from feedback.credentials.credentials import CredentialService
from feedback.errors import ConflictError, ForbiddenError, ValidationError
from feedback.models import (
    ActingUser, CreateOutcome, EventKind, FeedbackReport, NotificationEvent, Organiser, Outcome,
)
from feedback.monitoring.monitoring import init_monitoring, log_info
from feedback.notify.dispatcher import NotificationDispatcher
from feedback.notify.mailer import Mailer
from feedback.reconcile.reconcile import ReconciliationEngine
from feedback.report.report import (
    MIN_ATTENDEES, organise_attendance, summarise_feedback, summarise_questions,
)
from feedback.store.ids import create_unique_id
from feedback.store.store import SessionStore

ADMIN_NAME = "LearnLoop administrator"


class SessionLifecycle:
    """Create, update, close and credential-reset flows for feedback sessions.

    Each write operation acquires one connection and opens one transaction
    before it reads anything: the rows it is about to change are loaded with
    a row lock, checked, merged by the engine and written back before the
    lock is released. Notifications are dispatched only after commit. Mail
    failures come back in the outcome; they never roll back a committed write.
    """

    def __init__(self, store, engine, credentials, dispatcher):
        self.store = store
        self.engine = engine
        self.credentials = credentials
        self.dispatcher = dispatcher

    def _id_factory(self, conn):
        minted = set()

        def new_id():
            session_id = create_unique_id(
                lambda candidate: candidate in minted or self.store.id_exists(conn, candidate))
            minted.add(session_id)
            return session_id

        return new_id

    @staticmethod
    def _same_user(organiser, acting_user) -> bool:
        return bool(acting_user.email) and organiser.email.lower() == acting_user.email.lower()

    @staticmethod
    def _require_edit_rights(session, acting_user):
        if acting_user.is_admin:
            return
        organiser = session.find_organiser(acting_user.email)
        if organiser is None or not (organiser.is_lead or organiser.can_edit):
            raise ForbiddenError("You do not have editing rights for this session.")

    @staticmethod
    def _require_view_rights(session, acting_user):
        if acting_user.is_admin:
            return
        if not acting_user.email or session.find_organiser(acting_user.email) is None:
            raise ForbiddenError("You do not have viewing rights for this session.")

    @staticmethod
    def _current_children(result, old_children):
        children = {c.id: c for c in old_children}
        children.update({c.id: c for c in result.updated_children})
        children.update({c.id: c for c in result.created_children})
        return [children[i] for i in result.session.subsessions if i in children]

    # --- authentication -------------------------------------------------------

    def authenticate(self, session_id, pin) -> ActingUser:
        with self.store.connect() as conn:
            session = self.store.load(conn, session_id)

        if self.credentials.is_admin_pin(pin):
            log_info(f"Administrative PIN used for session '{session_id}'")
            return ActingUser(name=ADMIN_NAME, email="", can_edit=True, is_admin=True)

        for organiser in session.organisers:
            if organiser.pin_hash and self.credentials.verify(
                    pin, organiser.salt, organiser.pin_hash, allow_admin=False):
                return ActingUser.from_organiser(organiser)
        raise ForbiddenError("Invalid PIN.")

    # --- operations -----------------------------------------------------------

    def create(self, draft) -> CreateOutcome:
        with self.store.connect() as conn:
            built = self.engine.build(draft, self._id_factory(conn))
            with self.store.transaction(conn):
                self.store.insert(conn, built.session)
                for child in built.children:
                    self.store.insert(conn, child)

        log_info(f"Session '{built.session.id}' created with {len(built.children)} subsession(s)")
        failures = self.dispatcher.dispatch(
            built.events, session=built.session, subsessions=built.children)
        return CreateOutcome(id=built.session.id, lead_pin=built.lead_pin, notification_failures=failures)

    def load_for_update(self, session_id, acting_user):
        """Return (session, subsessions) for the edit form, credentials stripped."""
        with self.store.connect() as conn:
            session = self.store.load(conn, session_id)
            if session.is_subsession:
                raise ForbiddenError("Subsessions are edited through their series.")
            self._require_edit_rights(session, acting_user)
            children = self.store.load_many(conn, session.subsessions)

        for organiser in session.organisers + [o for c in children for o in c.organisers]:
            organiser.pin_hash = ""
            organiser.salt = ""
            organiser.last_sent = None
        return session, children

    def update(self, session_id, draft, acting_user) -> Outcome:
        with self.store.connect() as conn:
            with self.store.transaction(conn):
                old = self.store.load(conn, session_id, for_update=True)
                if old.is_subsession:
                    raise ForbiddenError("Subsessions are edited through their series.")
                if old.closed:
                    raise ConflictError("This session has been closed and can no longer be edited.")
                self._require_edit_rights(old, acting_user)
                if self.store.feedback_exists(conn, session_id):
                    raise ConflictError("Feedback has already been submitted for this session.")

                old_children = self.store.load_many(conn, old.subsessions, for_update=True)
                result = self.engine.reconcile(old, old_children, draft, self._id_factory(conn))

                for child in result.created_children:
                    self.store.insert(conn, child)
                for child in result.updated_children:
                    self.store.update_subsession(conn, child)
                for child_id in result.closed_children:
                    self.store.close(conn, child_id)
                self.store.update(conn, result.session)

        events = list(result.events)
        lead = result.session.lead()
        if lead is not None and not self._same_user(lead, acting_user):
            events.append(NotificationEvent(
                kind=EventKind.NON_LEAD_EDITED, session_id=session_id, title=result.session.title,
                name=lead.name, email=lead.email, is_lead=True, can_edit=True,
            ))

        log_info(f"Session '{session_id}' updated by {acting_user.email or acting_user.name}: "
                 f"{[e.kind.value for e in result.events]}")
        failures = self.dispatcher.dispatch(
            events, session=result.session,
            subsessions=self._current_children(result, old_children), acting_user=acting_user)
        return Outcome(notification_failures=failures)

    def close(self, session_id, acting_user) -> Outcome:
        with self.store.connect() as conn:
            with self.store.transaction(conn):
                session = self.store.load(conn, session_id, for_update=True)
                if session.is_subsession:
                    raise ForbiddenError("A subsession cannot be closed directly; close its series instead.")
                if session.closed:
                    raise ConflictError("This session has already been closed.")
                self._require_edit_rights(session, acting_user)
                self.store.close(conn, session_id)

        log_info(f"Session '{session_id}' closed by {acting_user.email or acting_user.name}")
        events = [
            NotificationEvent(
                kind=EventKind.CLOSURE_NOTICE, session_id=session.id, title=session.title,
                name=organiser.name, email=organiser.email, is_lead=organiser.is_lead,
            )
            for organiser in session.organisers
            if not self._same_user(organiser, acting_user)
        ]
        failures = self.dispatcher.dispatch(events, session=session, acting_user=acting_user)
        return Outcome(notification_failures=failures)

    def reset_credential(self, session_id, email) -> Outcome:
        with self.store.connect() as conn:
            with self.store.transaction(conn):
                session = self.store.load(conn, session_id, for_update=True)
                organiser = session.find_organiser(email)
                if organiser is None or not organiser.email:
                    raise ForbiddenError("Email not found as organiser for this session.")

                pin, organiser.salt, organiser.pin_hash = self.credentials.mint()
                self.store.update_organisers(conn, session.id, session.organisers)

        log_info(f"PIN reset for an organiser of session '{session_id}'")
        event = NotificationEvent(
            kind=EventKind.CREDENTIAL_RESET, session_id=session.id, title=session.title,
            name=organiser.name, email=organiser.email, pin=pin, is_lead=organiser.is_lead,
        )
        failures = self.dispatcher.dispatch([event], session=session)
        return Outcome(notification_failures=failures)

    def submit_feedback(self, session_id, submission, subsession_feedback=()) -> Outcome:
        with self.store.connect() as conn:
            with self.store.transaction(conn):
                session = self.store.load(conn, session_id, for_update=True)
                if session.is_subsession:
                    raise ForbiddenError("Feedback for a series is given through the series.")
                if session.closed:
                    raise ConflictError("This session is closed to further feedback.")

                children = {
                    c.id: c for c in self.store.load_many(conn, session.subsessions, for_update=True)
                }
                for entry in subsession_feedback:
                    if entry.id not in children:
                        raise ValidationError(
                            f"Subsession with ID [{entry.id}] not found in session series [{session.id}].")

                self.store.insert_submission(conn, session.id, submission)
                events = self.dispatcher.select_feedback_recipients(session)
                if events:
                    self.store.update_organisers(conn, session.id, session.organisers)

                for entry in subsession_feedback:
                    if entry.status != "Complete":
                        continue
                    child = children[entry.id]
                    self.store.insert_submission(conn, child.id, entry.submission)
                    child_events = self.dispatcher.select_feedback_recipients(child, series=session)
                    if child_events:
                        self.store.update_organisers(conn, child.id, child.organisers)
                    events.extend(child_events)

        log_info(f"Feedback submitted for session '{session_id}'")
        failures = self.dispatcher.dispatch(events, session=session)
        return Outcome(notification_failures=failures)

    def update_notification_preferences(self, session_id, acting_user, notifications) -> Outcome:
        with self.store.connect() as conn:
            with self.store.transaction(conn):
                session = self.store.load(conn, session_id, for_update=True)
                organiser = session.find_organiser(acting_user.email) if acting_user.email else None
                if organiser is None:
                    raise ForbiddenError("Only organisers can change their notification preferences.")
                organiser.notifications = bool(notifications)
                self.store.update_organisers(conn, session.id, session.organisers)

        event = NotificationEvent(
            kind=EventKind.NOTIFICATION_PREFERENCES, session_id=session.id, title=session.title,
            name=organiser.name, email=organiser.email, is_lead=organiser.is_lead,
            notifications=organiser.notifications,
        )
        failures = self.dispatcher.dispatch([event], session=session)
        return Outcome(notification_failures=failures)

    # --- attendee and read-only views ------------------------------------------

    def _feedback_report(self, conn, session, questions=True) -> FeedbackReport:
        submissions = self.store.load_submissions(conn, session.id)
        session.organisers = [
            Organiser(name=o.name, email="", is_lead=o.is_lead, can_edit=o.can_edit)
            for o in session.organisers
        ]
        return FeedbackReport(
            session=session,
            feedback=summarise_feedback(submissions),
            questions=summarise_questions(session.questions, submissions) if questions else [],
        )

    def view_feedback(self, session_id, acting_user) -> FeedbackReport:
        """Feedback for a session and, for a series, each of its subsessions."""
        with self.store.connect() as conn:
            session = self.store.load(conn, session_id)
            self._require_view_rights(session, acting_user)
            children = self.store.load_many(conn, session.subsessions)

            report = self._feedback_report(conn, session)
            report.subsessions = [
                self._feedback_report(conn, child, questions=False) for child in children
            ]
        return report

    def load_give_feedback(self, session_id):
        """Return (session, subsessions) for the attendee form, organisers removed."""
        with self.store.connect() as conn:
            session = self.store.load(conn, session_id)
            if session.is_subsession:
                raise ForbiddenError("Feedback for a series is given through the series.")
            children = self.store.load_many(conn, session.subsessions)

        for item in [session] + children:
            item.organisers = []
        return session, children

    def find_my_sessions(self, email) -> Outcome:
        """Mail an organiser the list of every session they organise."""
        email = (email or "").strip()
        if not email:
            raise ValidationError("Email must be provided.")
        with self.store.connect() as conn:
            sessions = self.store.find_sessions_by_email(conn, email)

        organiser = sessions[0].find_organiser(email) if sessions else None
        event = NotificationEvent(
            kind=EventKind.SESSION_HISTORY, session_id="", title="",
            name=organiser.name if organiser else "unknown user",
            email=organiser.email if organiser else email,
            is_lead=True,
        )
        log_info(f"Session history requested: {len(sessions)} session(s) found")
        failures = self.dispatcher.dispatch([event], sessions=sessions)
        return Outcome(notification_failures=failures)

    def insert_attendance(self, session_id, attendee):
        for label, value in (("name", attendee.name), ("region", attendee.region),
                             ("organisation", attendee.organisation)):
            if not (value or "").strip():
                raise ValidationError(f"Attendee {label} must be provided.")

        with self.store.connect() as conn:
            session = self.store.load(conn, session_id)
            if not session.attendance:
                raise ValidationError("Attendance register is not enabled for this session.")
            self.store.insert_attendance(conn, session.id, attendee)

        log_info(f"Attendance recorded for session '{session_id}'")

    def view_attendance(self, session_id, acting_user):
        """Return (session, register) with attendees grouped by region and organisation."""
        with self.store.connect() as conn:
            session = self.store.load(conn, session_id)
            if session.is_subsession:
                raise ForbiddenError("Attendance data is only available to session series organisers.")
            self._require_view_rights(session, acting_user)
            if not session.attendance:
                raise ValidationError("Attendance register is not enabled for this session.")
            attendees = self.store.load_attendance(conn, session_id)

        if len(attendees) < MIN_ATTENDEES:
            raise ForbiddenError(
                f"Cannot view attendance where fewer than {MIN_ATTENDEES} attendees exist "
                "to protect feedback anonymity.")
        session.organisers = []
        return session, organise_attendance(attendees)


def build_lifecycle(config) -> SessionLifecycle:
    """Wire every component from one Config value."""
    init_monitoring(config.rabbitmq, exchange=config.monitoring_exchange)
    credentials = CredentialService(config.admin_pin_hash)
    return SessionLifecycle(
        store=SessionStore(config),
        engine=ReconciliationEngine(credentials),
        credentials=credentials,
        dispatcher=NotificationDispatcher(Mailer(config), config),
    )
