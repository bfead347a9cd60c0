"""
Diffing of a stored session against an incoming draft.

The engine never writes. It returns the merged session, the child rows that
have to be inserted, updated or closed, and one NotificationEvent per change,
so the caller can persist everything in a single transaction and dispatch the
events afterwards.

Every organiser and every subsession ends up in exactly one of: unchanged,
edited, added, removed.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional

from feedback.errors import ValidationError
from feedback.models import (
    EventKind, NotificationEvent, Organiser, OrganiserDraft, Session,
    SessionDraft, SubsessionDraft,
)


@dataclass
class BuildResult:
    session: Session
    children: List[Session] = field(default_factory=list)
    events: List[NotificationEvent] = field(default_factory=list)
    lead_pin: str = ""


@dataclass
class ReconciliationResult:
    session: Session
    created_children: List[Session] = field(default_factory=list)
    updated_children: List[Session] = field(default_factory=list)
    closed_children: List[str] = field(default_factory=list)
    events: List[NotificationEvent] = field(default_factory=list)

    def kinds(self):
        return [event.kind for event in self.events]


def validate_draft(draft: SessionDraft, creating: bool = False):
    if not draft.organisers:
        raise ValidationError("A session needs at least one organiser.")
    if draft.attendance and not draft.certificate:
        raise ValidationError("The attendance register requires certificates to be enabled.")

    emails = [o.email.strip().lower() for o in draft.organisers]
    if any(not email for email in emails):
        raise ValidationError("Every organiser needs an email address.")
    if len(set(emails)) != len(emails):
        raise ValidationError("Organiser email addresses must be unique.")

    if creating and sum(1 for o in draft.organisers if o.is_lead) != 1:
        raise ValidationError("A session must have exactly one lead organiser.")


class ReconciliationEngine:

    def __init__(self, credentials):
        self.credentials = credentials

    # --- creation -------------------------------------------------------------

    def _mint_organiser(self, name, email, is_lead=False, can_edit=False, notifications=True):
        organiser = Organiser(
            name=name, email=email, is_lead=is_lead, can_edit=can_edit,
            notifications=notifications, last_sent=None,
        )
        pin = None
        if email:
            pin, organiser.salt, organiser.pin_hash = self.credentials.mint()
        return organiser, pin

    def _build_subsession(self, draft: SubsessionDraft, parent: Session,
                          new_id: Callable[[], str], kind: EventKind):
        email = (draft.email or "").strip()
        organiser, pin = self._mint_organiser(draft.name, email)
        child = Session(
            id=new_id(),
            title=draft.title,
            name=draft.name,
            organisers=[organiser],
            is_subsession=True,
        )
        event = None
        if email:
            event = NotificationEvent(
                kind=kind, session_id=child.id, title=child.title,
                name=organiser.name, email=email, pin=pin,
                series_id=parent.id, series_title=parent.title,
            )
        return child, event

    def build(self, draft: SessionDraft, new_id: Callable[[], str]) -> BuildResult:
        """Create a new session (and its subsessions) from a draft."""
        validate_draft(draft, creating=True)

        session = Session(
            id=new_id(),
            title=draft.title,
            name=draft.name,
            date=None if draft.multiple_dates else draft.date,
            multiple_dates=draft.multiple_dates,
            questions=list(draft.questions),
            attendance=draft.attendance,
            certificate=draft.certificate,
        )
        result = BuildResult(session=session)

        for organiser_draft in draft.organisers:
            organiser, pin = self._mint_organiser(
                organiser_draft.name, organiser_draft.email.strip(), organiser_draft.is_lead,
                organiser_draft.can_edit, organiser_draft.notifications)
            session.organisers.append(organiser)
            if organiser.is_lead:
                result.lead_pin = pin
            result.events.append(NotificationEvent(
                kind=EventKind.ORGANISER_ADDED, session_id=session.id, title=session.title,
                name=organiser.name, email=organiser.email, pin=pin,
                is_lead=organiser.is_lead, can_edit=organiser.can_edit,
                notifications=organiser.notifications,
            ))

        for subsession_draft in draft.subsessions:
            child, event = self._build_subsession(
                subsession_draft, session, new_id, EventKind.ORGANISER_ADDED)
            result.children.append(child)
            session.subsessions.append(child.id)
            if event:
                result.events.append(event)

        return result

    # --- update ---------------------------------------------------------------

    def reconcile(self, old: Session, old_children: List[Session], draft: SessionDraft,
                  new_id: Callable[[], str]) -> ReconciliationResult:
        validate_draft(draft)

        organisers, events = self._reconcile_organisers(old, draft.organisers)
        merged = replace(
            old,
            title=draft.title,
            name=draft.name,
            date=None if draft.multiple_dates else draft.date,
            multiple_dates=draft.multiple_dates,
            organisers=organisers,
            questions=list(draft.questions),
            attendance=draft.attendance,
            certificate=draft.certificate,
            subsessions=list(old.subsessions),
        )
        result = ReconciliationResult(session=merged, events=events)

        if old.is_subsession:
            if draft.subsessions:
                raise ValidationError("A subsession cannot have subsessions of its own.")
            merged.date = None
            merged.multiple_dates = False
            merged.questions = []
            merged.attendance = False
            merged.certificate = False
            return result

        self._reconcile_subsessions(old, old_children, draft.subsessions, new_id, result)
        return result

    def _reconcile_organisers(self, old: Session, drafts: List[OrganiserDraft]):
        stored = {o.email.lower(): o for o in old.organisers}
        matched = set()
        organisers = []
        events = []

        for draft in drafts:
            key = draft.match_key()
            previous = stored.get(key) if key else None

            if previous is not None and key not in matched:
                matched.add(key)
                if draft.email.strip().lower() != previous.email.lower():
                    raise ValidationError("Cannot change email address for an existing organiser.")
                if draft.is_lead != previous.is_lead:
                    raise ValidationError("Cannot change lead organiser after a session has been created.")

                organiser = replace(previous, name=draft.name, can_edit=draft.can_edit)
                organisers.append(organiser)
                if draft.name != previous.name or draft.can_edit != previous.can_edit:
                    events.append(NotificationEvent(
                        kind=EventKind.ORGANISER_EDITED, session_id=old.id, title=old.title,
                        name=organiser.name, email=organiser.email,
                        is_lead=organiser.is_lead, can_edit=organiser.can_edit,
                        notifications=organiser.notifications,
                    ))
                continue

            if draft.is_lead:
                raise ValidationError("Cannot change lead organiser after a session has been created.")
            organiser, pin = self._mint_organiser(
                draft.name, draft.email.strip(), False, draft.can_edit, draft.notifications)
            organisers.append(organiser)
            events.append(NotificationEvent(
                kind=EventKind.ORGANISER_ADDED, session_id=old.id, title=old.title,
                name=organiser.name, email=organiser.email, pin=pin,
                can_edit=organiser.can_edit, notifications=organiser.notifications,
            ))

        for previous in old.organisers:
            if previous.email.lower() in matched:
                continue
            if previous.is_lead:
                raise ValidationError("The lead organiser cannot be removed from a session.")
            events.append(NotificationEvent(
                kind=EventKind.ORGANISER_REMOVED, session_id=old.id, title=old.title,
                name=previous.name, email=previous.email,
                can_edit=previous.can_edit, notifications=previous.notifications,
            ))

        return organisers, events

    def _reconcile_subsessions(self, old: Session, old_children: List[Session],
                               drafts: List[SubsessionDraft], new_id: Callable[[], str],
                               result: ReconciliationResult):
        stored: Dict[str, Session] = {c.id: c for c in old_children if c.id in old.subsessions}
        kept: List[str] = []
        subsession_ids: List[str] = []

        for draft in drafts:
            previous: Optional[Session] = stored.get(draft.id) if draft.id else None

            if previous is None or draft.id in kept:
                child, event = self._build_subsession(
                    draft, result.session, new_id, EventKind.SUBSESSION_CREATED)
                result.created_children.append(child)
                subsession_ids.append(child.id)
                if event:
                    result.events.append(event)
                continue

            kept.append(previous.id)
            subsession_ids.append(previous.id)

            old_email = previous.organiser_email()
            new_email = (draft.email or "").strip()
            if draft.name == previous.name and draft.title == previous.title and new_email == old_email:
                continue

            if not old_email and new_email:
                organiser, pin = self._mint_organiser(draft.name, new_email)
                kind = EventKind.SUBSESSION_ORGANISER_ADDED
            elif old_email and new_email != old_email:
                raise ValidationError(
                    "Cannot change email address for an existing subsession "
                    "which already has an email address set.")
            else:
                base = previous.organisers[0] if previous.organisers else Organiser(name="", email="")
                organiser, pin = replace(base, name=draft.name), None
                kind = EventKind.SUBSESSION_EDITED

            child = replace(previous, name=draft.name, title=draft.title, organisers=[organiser])
            result.updated_children.append(child)
            result.events.append(NotificationEvent(
                kind=kind, session_id=child.id, title=child.title,
                name=organiser.name, email=organiser.email, pin=pin,
                notifications=organiser.notifications,
                series_id=old.id, series_title=result.session.title,
            ))

        for child_id in old.subsessions:
            if child_id in kept:
                continue
            result.closed_children.append(child_id)
            previous = stored.get(child_id)
            if previous is not None and previous.organiser_email():
                result.events.append(NotificationEvent(
                    kind=EventKind.SUBSESSION_REMOVED, session_id=child_id, title=previous.title,
                    name=previous.organisers[0].name, email=previous.organiser_email(),
                    series_id=old.id, series_title=result.session.title,
                ))

        result.session.subsessions = subsession_ids
