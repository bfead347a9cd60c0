from typing import List

from feedback.models import Attendee, Question, Submission

# below this many attendees the register could identify who gave which feedback
MIN_ATTENDEES = 3


def summarise_feedback(submissions: List[Submission]) -> dict:
    return {
        "count": len(submissions),
        "positive": [s.positive for s in submissions],
        "negative": [s.negative for s in submissions],
        "scores": [s.score for s in submissions],
    }


def summarise_questions(questions: List[Question], submissions: List[Submission]) -> List[dict]:
    """Fold each submission's question responses into per-question summaries.

    Responses are matched to questions by title. Text questions collect the
    free-text answers; checkbox questions count every option marked selected;
    any other type counts the single option named in the response.
    """
    summaries = [
        {
            "title": q.title,
            "type": q.type,
            "responses": [],
            "options": [{"title": option, "count": 0} for option in q.options],
        }
        for q in questions
    ]
    by_title = {}
    for summary in summaries:
        by_title.setdefault(summary["title"], summary)

    for submission in submissions:
        for response in submission.questions:
            if not isinstance(response, dict):
                continue
            summary = by_title.get(response.get("title"))
            if summary is None:
                continue
            if summary["type"] == "text":
                summary["responses"].append(response.get("response") or "")
            elif summary["type"] == "checkbox":
                selected = {
                    o.get("title") for o in response.get("options") or []
                    if isinstance(o, dict) and o.get("selected")
                }
                for option in summary["options"]:
                    if option["title"] in selected:
                        option["count"] += 1
            else:
                for option in summary["options"]:
                    if option["title"] == response.get("response"):
                        option["count"] += 1
    return summaries


def organise_attendance(attendees: List[Attendee]) -> dict:
    """Group attendees by region, then organisation, in the order given.

    A name is counted once per organisation.
    """
    register = {"count": 0, "regions": []}
    regions = {}
    organisations = {}
    for attendee in attendees:
        region = regions.get(attendee.region)
        if region is None:
            region = {"name": attendee.region, "count": 0, "organisations": []}
            regions[attendee.region] = region
            register["regions"].append(region)

        key = (attendee.region, attendee.organisation)
        organisation = organisations.get(key)
        if organisation is None:
            organisation = {"name": attendee.organisation, "count": 0, "attendees": []}
            organisations[key] = organisation
            region["organisations"].append(organisation)

        if attendee.name in organisation["attendees"]:
            continue
        organisation["attendees"].append(attendee.name)
        organisation["count"] += 1
        region["count"] += 1
        register["count"] += 1
    return register
