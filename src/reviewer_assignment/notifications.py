from __future__ import annotations

import smtplib
from email.message import EmailMessage
from typing import Protocol

from .models import Assignment, Notification, NotificationType, OutgoingEmail, Reviewer, Submission

RELATED_ENTITY = "ReviewerAssignment"


class Mailer(Protocol):
    def send(self, message: OutgoingEmail) -> bool: ...


def _deadline_text(assignment: Assignment) -> str:
    if assignment.deadline is None:
        return "No deadline has been set."
    return f"Deadline: {assignment.deadline:%d/%m/%Y %H:%M}."


def assignment_notification(assignment: Assignment, submission: Submission) -> Notification:
    return Notification(
        user_id=assignment.reviewer_id,
        title="New review assignment",
        message=(
            f"You have been assigned as {assignment.assignment_type.value} reviewer "
            f"for '{submission.title}'. {_deadline_text(assignment)}"
        ),
        type=NotificationType.INFO,
        related_entity_type=RELATED_ENTITY,
        related_entity_id=assignment.id,
    )


def assignment_email(
    assignment: Assignment, submission: Submission, reviewer: Reviewer
) -> OutgoingEmail:
    return OutgoingEmail(
        to=[reviewer.email],
        subject=f"Review assignment: {submission.title}",
        body=(
            f"Hello {reviewer.display_name},\n\n"
            f"You have been assigned as {assignment.assignment_type.value} reviewer "
            f"for submission #{submission.id} '{submission.title}'.\n"
            f"{_deadline_text(assignment)}\n"
        ),
    )


class SmtpMailer:
    def __init__(
        self,
        server: str | None,
        port: int,
        username: str | None,
        password: str | None,
        sender: str | None,
    ) -> None:
        self.server = server
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender

    def build_message(self, message: OutgoingEmail) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self.sender
        email["To"] = ", ".join(message.to)
        email["Subject"] = message.subject
        email.set_content(message.body)
        return email

    def send(self, message: OutgoingEmail) -> bool:
        if not message.to or not all(message.to):
            raise ValueError("The recipient email address cannot be empty.")
        if not (self.server and self.sender and self.username and self.password):
            raise RuntimeError("SMTP configuration is not complete.")
        with smtplib.SMTP_SSL(self.server, self.port) as client:
            client.login(self.username, self.password)
            client.send_message(self.build_message(message))
        return True
