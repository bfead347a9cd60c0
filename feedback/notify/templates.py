from datetime import datetime

from jinja2 import DictLoader, Environment, select_autoescape

from feedback.models import EventKind

LAYOUT = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{{ subject }}</title>
  </head>
  <body style="margin:0;padding:0;font-family:Arial,sans-serif;background-color:#f4f4f4;">
    <table width="100%" cellpadding="0" cellspacing="0" role="presentation" style="padding:20px;">
      <tr><td>
        <table cellpadding="0" cellspacing="0" role="presentation"
               style="max-width:600px;margin:0 auto;background-color:#ffffff;border-radius:10px;">
          <tr><td style="padding:20px;color:#333333;line-height:1.6;">
            <h2>{{ heading }}</h2>
            {% block content %}{% endblock %}
            Kind regards,<br>
            <strong><a href="{{ app_url }}">LearnLoop</a></strong><br>
          </td></tr>
          <tr><td style="padding:20px;text-align:center;font-size:12px;color:#888888;">
            <p>&copy; {{ year }} LearnLoop</p>
            {% if dev_mode %}
            <p>This session uses the development version of LearnLoop and may include experimental
              features which might not be supported long-term. Please report any bugs or other feedback to
              <a href="mailto:{{ support_email }}">{{ support_email }}</a>.</p>
            {% endif %}
            {% if not event.is_lead %}
            <p>You can request feedback for your own sessions using LearnLoop.
              Visit <a href="{{ app_url }}">{{ short_url }}</a> to get started!</p>
            {% endif %}
          </td></tr>
        </table>
      </td></tr>
    </table>
  </body>
</html>
"""

CREDENTIALS = """
<p>Please keep this email for future reference.</p>
<span style="font-size:2em">Your session ID is <strong>{{ event.session_id }}</strong><br>
Your session PIN is <strong>{{ event.pin }}</strong></span><br>
Do not share your PIN or this email with attendees.
<a href="{{ app_url }}/feedback/resetPIN/{{ event.session_id }}">Reset your PIN</a>.<br>
"""

SERIES = """{% if event.series_title %}This session is part of the series '{{ event.series_title }}'. {% endif %}"""

CREATED = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},<br><br>
A feedback request has been successfully created{% if not event.is_lead and lead_name %} by {{ lead_name }}{% endif %}
on <a href="{{ app_url }}">LearnLoop</a> for your session '{{ event.title }}'{% if when %} delivered on {{ when }}{% endif %}.
{% include "series.html" %}
{% if not event.series_title %}
  {% if event.is_lead %}You are the lead organiser for this event. This means your access to the session cannot be removed and you have editing rights.
  {% elif event.can_edit %}You have been given editing rights for this session.
  {% else %}You have been given viewing rights for this session.{% endif %}
{% endif %}</p>
{% include "credentials.html" %}
{% if subsessions %}Feedback will be collected on the sessions:
<ul>{% for sub in subsessions %}<li>'{{ sub.title }}' facilitated by {{ sub.name }}</li>{% endfor %}</ul>{% endif %}
{% if questions %}The following additional questions will be asked:
<ul>{% for question in questions %}<li>{{ question.title }}</li>{% endfor %}</ul>{% endif %}
{% if event.can_edit %}<a href="{{ app_url }}/feedback/edit/{{ event.session_id }}">Edit your session</a>.
This option is only available <strong>before</strong> feedback has been submitted.{% endif %}
<p style="font-size:1.5em">How to direct attendees to the feedback form</p>
{% if event.series_title %}
<p>The organiser of this session series will share the feedback link for the whole series with attendees.</p>
{% else %}
You can share the direct link: <a href="{{ app_url }}/{{ event.session_id }}">{{ short_url }}/{{ event.session_id }}</a><br>
Or, ask them to go to <a href="{{ app_url }}">{{ short_url }}</a> and enter the session ID.<br>
{% if certificate %}<br>Don't forget to let your attendees know that they'll be able to download a certificate of attendance after completing feedback.{% endif %}
{% endif %}
<p style="font-size:1.5em">View your feedback</p>
<p>Go to <a href="{{ app_url }}/feedback/view/{{ event.session_id }}">{{ short_url }}/feedback/view/{{ event.session_id }}</a>
and enter your PIN to retrieve submitted feedback.<br>
Email notification of feedback submissions is <strong>{{ "enabled" if event.notifications else "disabled" }}</strong>.
<a href="{{ app_url }}/feedback/notifications/{{ event.session_id }}">Update your notification preferences</a>.</p>
{% endblock %}"""

EDITED = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},</p>
<p>Your details for the feedback request '{{ event.title }}' on <a href="{{ app_url }}">LearnLoop</a> have been updated.
{% include "series.html" %}
{% if not event.series_title %}You now have {{ "editing" if event.can_edit else "viewing" }} rights for this session.{% endif %}</p>
<p>Your session ID and PIN are unchanged.</p>
{% endblock %}"""

REMOVED = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},</p>
<p>You have been removed as an organiser of the feedback request '{{ event.title }}' on
<a href="{{ app_url }}">LearnLoop</a>{% if acting_name %} by {{ acting_name }}{% endif %}.
{% include "series.html" %}Your PIN for this session will no longer give access to its feedback.</p>
{% endblock %}"""

NON_LEAD_EDITED = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},</p>
<p>Your feedback request '{{ event.title }}' on <a href="{{ app_url }}">LearnLoop</a> has been edited by {{ acting_name }}.
As the lead organiser you can review the changes at
<a href="{{ app_url }}/feedback/edit/{{ event.session_id }}">{{ short_url }}/feedback/edit/{{ event.session_id }}</a>.</p>
{% endblock %}"""

CLOSED = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},</p>
<p>Your feedback request on <a href="{{ app_url }}">LearnLoop</a> for the session '{{ event.title }}' has been closed
by {{ acting_name }}. No further feedback can be submitted, but any previously submitted feedback can still be viewed.</p>
{% endblock %}"""

PIN_RESET = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},<br><br>
Your PIN for the session <strong>'{{ event.title }}'</strong> has been reset.</p>
{% include "credentials.html" %}
{% endblock %}"""

FEEDBACK = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},<br><br>
An attendee has submitted feedback for your session <strong>'{{ event.title }}'</strong>. {% include "series.html" %}</p>
<p style="font-size:1.5em">View your feedback</p>
<p>Go to <a href="{{ app_url }}/feedback/view/{{ event.session_id }}">{{ short_url }}/feedback/view/{{ event.session_id }}</a>
and enter your PIN to retrieve submitted feedback.<br>
Please note, to avoid overloading your inbox, no further notifications will be sent for feedback submitted
within the next {{ timeout_hours }} hours.</p>
<p><a href="{{ app_url }}/feedback/notifications/{{ event.session_id }}">Update your notification preferences</a>
if you don't want to receive these emails.</p>
{% endblock %}"""

PREFERENCES = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},</p>
<p>Your feedback submission notification preferences have been updated on <a href="{{ app_url }}">LearnLoop</a>
for the session '<strong>{{ event.title }}</strong>'.</p>
<p>Notifications are now <strong>{{ "enabled" if event.notifications else "disabled" }}</strong>.</p>
{% endblock %}"""

HISTORY = """{% extends "layout.html" %}{% block content %}
<p>Hello {{ event.name }},</p>
{% if sessions %}
<p>Here are the details of your sessions on LearnLoop requested using 'Find My Sessions'.</p>
<p>Go to <a href="{{ app_url }}">{{ short_url }}</a> and use the session ID and PIN to view submitted feedback or the attendance register.
A link is provided to reset the PIN if you don't have the original.</p>
{% for s in sessions %}
<p><span style="font-size:1.2em">{{ s.title }}</span><br>
Date: {% if s.multiple_dates %}multiple dates{% elif s.date %}{{ s.date|uk_date }}{% else %}not set{% endif %}
| Session ID: {{ s.id }} | Status: {{ "closed" if s.closed else "open" }}
| <a href="{{ app_url }}/feedback/resetPIN/{{ s.id }}">Reset PIN</a></p>
{% endfor %}
{% else %}
<p>There were no feedback sessions found for this email address.</p>
{% endif %}
<p>Can't find the session you're looking for? Might you have used a different email?
{% if support_email %}You can also contact <a href="mailto:{{ support_email }}">{{ support_email }}</a> if you need more help.{% endif %}</p>
{% endblock %}"""

env = Environment(
    loader=DictLoader({
        "layout.html": LAYOUT,
        "credentials.html": CREDENTIALS,
        "series.html": SERIES,
        "created.html": CREATED,
        "edited.html": EDITED,
        "removed.html": REMOVED,
        "non_lead_edited.html": NON_LEAD_EDITED,
        "closed.html": CLOSED,
        "pin_reset.html": PIN_RESET,
        "feedback.html": FEEDBACK,
        "preferences.html": PREFERENCES,
        "history.html": HISTORY,
    }),
    autoescape=select_autoescape(default=True),
)

# kind -> (template, heading)
TEMPLATES = {
    EventKind.ORGANISER_ADDED: ("created.html", "Feedback request created"),
    EventKind.SUBSESSION_CREATED: ("created.html", "Feedback request created"),
    EventKind.SUBSESSION_ORGANISER_ADDED: ("created.html", "Feedback request created"),
    EventKind.ORGANISER_EDITED: ("edited.html", "Feedback request updated"),
    EventKind.SUBSESSION_EDITED: ("edited.html", "Feedback request updated"),
    EventKind.ORGANISER_REMOVED: ("removed.html", "Feedback request access removed"),
    EventKind.SUBSESSION_REMOVED: ("removed.html", "Feedback request removed"),
    EventKind.NON_LEAD_EDITED: ("non_lead_edited.html", "Feedback request edited"),
    EventKind.CLOSURE_NOTICE: ("closed.html", "Feedback request closed"),
    EventKind.CREDENTIAL_RESET: ("pin_reset.html", "Pin Reset"),
    EventKind.FEEDBACK_SUBMITTED: ("feedback.html", "Feedback notification"),
    EventKind.NOTIFICATION_PREFERENCES: ("preferences.html", "Notification Preference Updated"),
    EventKind.SESSION_HISTORY: ("history.html", "Your feedback session history"),
}


def format_date_uk(value) -> str:
    return value.strftime("%d/%m/%Y")


env.filters["uk_date"] = format_date_uk


def render_mail(event, config, session=None, subsessions=None, acting_user=None, sessions=None):
    """Return (subject, html) for one notification event."""
    template_name, heading = TEMPLATES[event.kind]
    subject = f"{heading}: {event.title}" if event.title else heading

    when = None
    if session is not None and not event.series_title:
        when = "multiple dates" if session.multiple_dates else (
            format_date_uk(session.date) if session.date else None)

    lead = session.lead() if session is not None else None
    context = {
        "subject": subject,
        "heading": heading,
        "event": event,
        "app_url": config.client_url,
        "short_url": config.client_url.replace("https://", ""),
        "dev_mode": config.dev_mode,
        "support_email": config.support_email,
        "timeout_hours": f"{config.notification_timeout_hours:g}",
        "year": datetime.now().year,
        "when": when,
        "lead_name": lead.name if lead else None,
        "acting_name": acting_user.name if acting_user else None,
        "subsessions": subsessions if not event.series_title else None,
        "questions": session.questions if session is not None and not event.series_title else None,
        "certificate": bool(session and session.certificate),
        "sessions": sessions or [],
    }
    html = env.get_template(template_name).render(**context)
    return subject, html
