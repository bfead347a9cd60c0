from feedback.models import Attendee, Question, Submission
from feedback.report.report import organise_attendance, summarise_feedback, summarise_questions

# ---------------------------
# Feedback
# ---------------------------

def test_summarise_feedback_keeps_submission_order():
    summary = summarise_feedback([
        Submission(positive="Great", negative="", score=5),
        Submission(positive="Fine", negative="Too long", score=None),
    ])

    assert summary == {
        "count": 2,
        "positive": ["Great", "Fine"],
        "negative": ["", "Too long"],
        "scores": [5, None],
    }


def test_summarise_feedback_empty():
    assert summarise_feedback([])["count"] == 0


def test_question_responses_are_matched_by_title():
    questions = [
        Question(title="Comments?", type="text"),
        Question(title="Topics?", type="checkbox", options=["Knots", "Closures"]),
        Question(title="Pace?", type="select", options=["Slow", "Fast"]),
    ]
    submissions = [
        Submission(questions=[
            {"title": "Pace?", "response": "Fast"},
            {"title": "Comments?", "response": "Loved it"},
            {"title": "Topics?", "options": [{"title": "Knots", "selected": True},
                                             {"title": "Closures", "selected": False}]},
        ]),
        Submission(questions=[
            {"title": "Pace?", "response": "Fast"},
            {"title": "Removed question", "response": "ignored"},
        ]),
    ]

    comments, topics, pace = summarise_questions(questions, submissions)

    assert comments["responses"] == ["Loved it"]
    assert topics["options"] == [{"title": "Knots", "count": 1}, {"title": "Closures", "count": 0}]
    assert pace["options"] == [{"title": "Slow", "count": 0}, {"title": "Fast", "count": 2}]


def test_malformed_responses_are_skipped():
    questions = [Question(title="Topics?", type="checkbox", options=["Knots"])]
    submissions = [Submission(questions=["not a response", {"title": "Topics?", "options": None}])]

    [topics] = summarise_questions(questions, submissions)

    assert topics["options"] == [{"title": "Knots", "count": 0}]

# ---------------------------
# Attendance
# ---------------------------

def test_attendance_counts_each_name_once_per_organisation():
    register = organise_attendance([
        Attendee("Ann", "North", "General"),
        Attendee("Ann", "North", "General"),
        Attendee("Ann", "North", "Royal"),
        Attendee("Ben", "South", "General"),
    ])

    assert register["count"] == 3
    north, south = register["regions"]
    assert north == {
        "name": "North",
        "count": 2,
        "organisations": [
            {"name": "General", "count": 1, "attendees": ["Ann"]},
            {"name": "Royal", "count": 1, "attendees": ["Ann"]},
        ],
    }
    assert south["organisations"] == [{"name": "General", "count": 1, "attendees": ["Ben"]}]


def test_empty_register():
    assert organise_attendance([]) == {"count": 0, "regions": []}
