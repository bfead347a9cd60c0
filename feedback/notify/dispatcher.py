import time

from feedback.models import EventKind, NotificationEvent
from feedback.monitoring.monitoring import log_error, log_info
from feedback.notify.templates import render_mail


class NotificationDispatcher:
    """Turns classified events into emails, one recipient per event.

    Sends are attempted in event order. A failed send never propagates; it is
    logged and returned as a {name, email, error} entry.
    """

    def __init__(self, mailer, config, clock=time.time):
        self.mailer = mailer
        self.config = config
        self.clock = clock

    def dispatch(self, events, session=None, subsessions=None, acting_user=None, sessions=None):
        failures = []
        for event in events:
            if not event.email:
                continue
            try:
                subject, html = render_mail(
                    event, self.config, session=session, subsessions=subsessions,
                    acting_user=acting_user, sessions=sessions)
                self.mailer.send_mail(event.email, subject, html)
            except Exception as e:
                log_error(f"Sending {event.kind.value} mail to {event.email} failed: {e}")
                failures.append({"name": event.name, "email": event.email, "error": str(e)})
        if events:
            log_info(f"Dispatched {len(events)} notification(s), {len(failures)} failed")
        return failures

    def select_feedback_recipients(self, session, series=None):
        """Pick organisers to notify about a new submission.

        Organisers inside the cooldown window are skipped. Everyone selected
        has last_sent stamped now, before any send is attempted, whatever the
        eventual delivery outcome.
        """
        now = self.clock()
        cooldown = self.config.notification_timeout_hours * 60 * 60
        events = []
        for organiser in session.organisers:
            if not organiser.notifications or not organiser.email:
                continue
            if organiser.last_sent is not None and now - organiser.last_sent <= cooldown:
                continue
            organiser.last_sent = now
            events.append(NotificationEvent(
                kind=EventKind.FEEDBACK_SUBMITTED,
                session_id=session.id,
                title=session.title,
                name=organiser.name,
                email=organiser.email,
                is_lead=organiser.is_lead if series is None else False,
                series_id=series.id if series is not None else None,
                series_title=series.title if series is not None else None,
            ))
        return events
