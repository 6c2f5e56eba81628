from datetime import timedelta

import pytest

from fakes import NOW
from reviewer_assignment import notifications
from reviewer_assignment.models import (
    Assignment,
    AssignmentStatus,
    AssignmentType,
    NotificationType,
    OutgoingEmail,
    Reviewer,
    Submission,
)
from reviewer_assignment.notifications import SmtpMailer, assignment_email, assignment_notification

SUBMISSION = Submission(id=100, title="Python ML pipelines", semester_id=7)
REVIEWER = Reviewer(1, "alice", "alice@example.edu")


def _assignment(deadline=None) -> Assignment:
    return Assignment(
        id=9,
        submission_id=100,
        reviewer_id=1,
        assigned_by=50,
        assignment_type=AssignmentType.SECONDARY,
        status=AssignmentStatus.ASSIGNED,
        assigned_at=NOW,
        deadline=deadline,
    )


def test_assignment_notification_mentions_deadline() -> None:
    notification = assignment_notification(_assignment(NOW + timedelta(days=3)), SUBMISSION)

    assert notification.user_id == 1
    assert notification.type is NotificationType.INFO
    assert notification.related_entity_id == 9
    assert "Secondary reviewer" in notification.message
    assert "05/03/2026 09:00" in notification.message


def test_assignment_email_without_deadline() -> None:
    email = assignment_email(_assignment(), SUBMISSION, REVIEWER)

    assert email.to == ["alice@example.edu"]
    assert email.subject == "Review assignment: Python ML pipelines"
    assert "No deadline has been set." in email.body


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, server: str, port: int) -> None:
        self.server = server
        self.port = port
        self.logged_in = None
        self.messages = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def login(self, username: str, password: str) -> None:
        self.logged_in = (username, password)

    def send_message(self, message) -> None:
        self.messages.append(message)


def test_smtp_mailer_sends_over_ssl(monkeypatch) -> None:
    FakeSMTP.instances.clear()
    monkeypatch.setattr(notifications.smtplib, "SMTP_SSL", FakeSMTP)
    mailer = SmtpMailer("smtp.example.edu", 465, "robot", "pw", "robot@example.edu")

    assert mailer.send(OutgoingEmail(["alice@example.edu"], "Hello", "Body"))

    client = FakeSMTP.instances[0]
    assert (client.server, client.port) == ("smtp.example.edu", 465)
    assert client.logged_in == ("robot", "pw")
    message = client.messages[0]
    assert message["To"] == "alice@example.edu"
    assert message["From"] == "robot@example.edu"
    assert message["Subject"] == "Hello"


def test_smtp_mailer_validates_input_and_config() -> None:
    with pytest.raises(ValueError):
        SmtpMailer("smtp", 465, "u", "p", "s").send(OutgoingEmail([""], "Hi", "Body"))
    with pytest.raises(RuntimeError):
        SmtpMailer(None, 465, None, None, None).send(OutgoingEmail(["a@example.edu"], "Hi", "Body"))
