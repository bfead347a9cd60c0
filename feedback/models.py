from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional


@dataclass
class Organiser:
    name: str
    email: str
    is_lead: bool = False
    can_edit: bool = False
    pin_hash: str = ""
    salt: str = ""
    notifications: bool = True
    last_sent: Optional[float] = None


@dataclass
class Question:
    title: str
    type: str = "text"
    options: List[str] = field(default_factory=list)


@dataclass
class Session:
    id: str
    title: str
    name: str
    date: Optional[date] = None
    multiple_dates: bool = False
    organisers: List[Organiser] = field(default_factory=list)
    questions: List[Question] = field(default_factory=list)
    subsessions: List[str] = field(default_factory=list)
    attendance: bool = False
    certificate: bool = False
    closed: bool = False
    is_subsession: bool = False

    def lead(self) -> Optional[Organiser]:
        return next((o for o in self.organisers if o.is_lead), None)

    def find_organiser(self, email: str) -> Optional[Organiser]:
        wanted = (email or "").strip().lower()
        return next((o for o in self.organisers if o.email.lower() == wanted), None)

    def organiser_email(self) -> str:
        """Email of a subsession's sole organiser, or "" if it has none."""
        if not self.organisers:
            return ""
        return self.organisers[0].email or ""


# --- incoming (validated) shapes ----------------------------------------------

@dataclass
class OrganiserDraft:
    name: str
    email: str
    is_lead: bool = False
    can_edit: bool = False
    notifications: bool = True
    # email as it was loaded for editing; lets a changed email be recognised
    original_email: Optional[str] = None

    def match_key(self) -> str:
        # None: match on email; "": explicitly a new row; otherwise the loaded email
        if self.original_email is None:
            return self.email.strip().lower()
        return self.original_email.strip().lower()


@dataclass
class SubsessionDraft:
    name: str
    title: str
    email: str = ""
    id: Optional[str] = None


@dataclass
class SessionDraft:
    title: str
    name: str
    date: Optional[date] = None
    multiple_dates: bool = False
    organisers: List[OrganiserDraft] = field(default_factory=list)
    questions: List[Question] = field(default_factory=list)
    subsessions: List[SubsessionDraft] = field(default_factory=list)
    attendance: bool = False
    certificate: bool = False


@dataclass
class ActingUser:
    name: str
    email: str
    is_lead: bool = False
    can_edit: bool = False
    is_admin: bool = False

    @classmethod
    def from_organiser(cls, organiser: Organiser) -> "ActingUser":
        return cls(organiser.name, organiser.email, organiser.is_lead, organiser.can_edit)


@dataclass
class Submission:
    positive: str = ""
    negative: str = ""
    score: Optional[int] = None
    questions: list = field(default_factory=list)


@dataclass
class SubsessionFeedback:
    id: str
    status: str
    submission: Submission = field(default_factory=Submission)


@dataclass
class Attendee:
    name: str
    region: str = ""
    organisation: str = ""


# --- read models --------------------------------------------------------------

@dataclass
class FeedbackReport:
    """Submitted feedback for one session, organiser credentials and emails removed.

    feedback holds the positive, negative and score lists in submission order;
    questions holds one summary per custom question (see report.summarise_questions).
    """
    session: Session
    feedback: dict
    questions: List[dict] = field(default_factory=list)
    subsessions: List["FeedbackReport"] = field(default_factory=list)


# --- notification events ------------------------------------------------------

class EventKind(Enum):
    ORGANISER_ADDED = "organiser_added"
    ORGANISER_EDITED = "organiser_edited"
    ORGANISER_REMOVED = "organiser_removed"
    SUBSESSION_CREATED = "subsession_created"
    SUBSESSION_ORGANISER_ADDED = "subsession_organiser_added"
    SUBSESSION_EDITED = "subsession_edited"
    SUBSESSION_REMOVED = "subsession_removed"
    NON_LEAD_EDITED = "non_lead_edited"
    CLOSURE_NOTICE = "closure_notice"
    CREDENTIAL_RESET = "credential_reset"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    NOTIFICATION_PREFERENCES = "notification_preferences"
    SESSION_HISTORY = "session_history"


@dataclass
class NotificationEvent:
    kind: EventKind
    session_id: str
    title: str
    name: str
    email: str
    pin: Optional[str] = None
    is_lead: bool = False
    can_edit: bool = False
    notifications: bool = True
    # set when the recipient belongs to a subsession of a series
    series_id: Optional[str] = None
    series_title: Optional[str] = None


@dataclass
class Outcome:
    notification_failures: List[dict] = field(default_factory=list)


@dataclass
class CreateOutcome(Outcome):
    id: str = ""
    lead_pin: str = ""
