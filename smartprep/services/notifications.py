"""Queued WhatsApp notifications.

Attempt completion only writes a PENDING row through `NotificationTrigger`.
Delivery is done later by `NotificationDispatcher`, which hands messages to a
`MessageSender` collaborator and records SENT or FAILED.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import func, update
from sqlmodel import Session, select

from smartprep.crypto_utils import PhoneCipher
from smartprep.errors import (
    DeliveryError,
    InvalidStateError,
    NotFoundError,
    SecretDecryptError,
)
from smartprep.models import (
    AttemptStatus,
    Notification,
    NotificationStatus,
    NotificationType,
    Student,
    Test,
    TestAttempt,
)

logger = logging.getLogger(__name__)

WHATSAPP_PREFIX = "whatsapp:"


class MessageDeliveryError(Exception):
    """Raised by a MessageSender when the provider rejects a message."""


class MessageSender(ABC):
    """Outbound messaging collaborator (a WhatsApp provider in production)."""

    @abstractmethod
    def send(self, sender_id: str, to: str, body: str) -> str:
        """Deliver `body` and return the provider's message id.

        Raises:
            MessageDeliveryError: The provider refused or failed the send.
        """


class LoggingMessageSender(MessageSender):
    """Default sender that only writes the message to the log."""

    def send(self, sender_id: str, to: str, body: str) -> str:
        message_id = uuid.uuid4().hex
        logger.info("WhatsApp message %s from %s to %s: %s", message_id, sender_id, to, body)
        return message_id


class DispatchSummary(BaseModel):
    processed: int
    failed: int
    total: int


def can_notify(student: Optional[Student]) -> bool:
    return bool(student and student.consent_whatsapp and student.whatsapp_number)


def result_message(title: str, score: int, total_marks: int, percentage: float) -> str:
    return f'Test "{title}" completed! Score: {score}/{total_marks} ({percentage:.1f}%)'


def congratulation_message(title: str, score: int, total_marks: int, percentage: float) -> str:
    if percentage >= 80:
        closing = "Excellent work!"
    elif percentage >= 60:
        closing = "Good job!"
    else:
        closing = "Keep practicing!"
    return (
        "Test Completed!\n\n"
        f"Test: {title}\n"
        f"Score: {score}/{total_marks}\n"
        f"Percentage: {percentage:.1f}%\n\n"
        f"{closing}\n\n"
        "Thank you for using SmartPrep!"
    )


def format_recipient(number: str) -> str:
    return number if number.startswith(WHATSAPP_PREFIX) else f"{WHATSAPP_PREFIX}{number}"


class NotificationTrigger:
    """Queues the TEST_RESULT notification for a completed attempt.

    The row is added to the caller's session and committed with the attempt.
    """

    def __init__(self, session: Session):
        self.session = session

    def on_attempt_completed(
        self,
        student: Student,
        test: Test,
        attempt_id: int,
        score: int,
        total_marks: int,
        percentage: float,
    ) -> Optional[Notification]:
        if not can_notify(student):
            return None
        notification = Notification(
            student_id=student.id,
            attempt_id=attempt_id,
            type=NotificationType.TEST_RESULT,
            message=result_message(test.title, score, total_marks, percentage),
            status=NotificationStatus.PENDING,
        )
        self.session.add(notification)
        logger.info("Queued TEST_RESULT notification for student %s (attempt %s)", student.id, attempt_id)
        return notification


class NotificationDispatcher:
    """Delivers notifications through a MessageSender and records the outcome."""

    def __init__(self, session: Session, cipher: PhoneCipher, sender: MessageSender, sender_id: str):
        self.session = session
        self.cipher = cipher
        self.sender = sender
        self.sender_id = sender_id

    def _deliver(self, student: Student, body: str) -> str:
        number = self.cipher.decrypt(student.whatsapp_number)
        return self.sender.send(self.sender_id, format_recipient(number), body)

    def process_pending(self, batch_size: int = 10, include_failed: bool = False) -> DispatchSummary:
        """Deliver one bounded batch of queued TEST_RESULT notifications.

        With include_failed, FAILED rows are re-selected as well so a
        scheduled job can retry them.
        """
        statuses = [NotificationStatus.PENDING]
        if include_failed:
            statuses.append(NotificationStatus.FAILED)
        batch = self.session.exec(
            select(Notification)
            .where(Notification.status.in_(statuses))
            .where(Notification.type == NotificationType.TEST_RESULT)
            .order_by(Notification.created_at, Notification.id)
            .limit(batch_size)
        ).all()

        processed = 0
        failed = 0
        for notification in batch:
            student = self.session.get(Student, notification.student_id)
            if not can_notify(student):
                notification.status = NotificationStatus.FAILED
                failed += 1
            else:
                try:
                    self._deliver(student, notification.message)
                except (MessageDeliveryError, SecretDecryptError):
                    logger.exception("Failed to deliver notification %s", notification.id)
                    notification.status = NotificationStatus.FAILED
                    failed += 1
                else:
                    notification.status = NotificationStatus.SENT
                    notification.sent_at = datetime.utcnow()
                    logger.info("Delivered notification %s to student %s", notification.id, student.id)
                    processed += 1
            self.session.add(notification)
            self.session.commit()

        logger.info("Processed notification batch: %d sent, %d failed", processed, failed)
        return DispatchSummary(processed=processed, failed=failed, total=len(batch))

    def send_direct(
        self,
        student_id: int,
        message: str,
        type: NotificationType = NotificationType.SYSTEM_UPDATE,
    ) -> Tuple[Notification, str]:
        """Send a message right away and record it as SENT.

        Raises:
            NotFoundError: Unknown student.
            InvalidStateError: No consent or no stored number.
            DeliveryError: The sender failed; a FAILED row is recorded first.
        """
        student = self.session.get(Student, student_id)
        if not student:
            raise NotFoundError("Student not found")
        if not student.consent_whatsapp:
            raise InvalidStateError("Student has not consented to WhatsApp notifications")
        if not student.whatsapp_number:
            raise InvalidStateError("Student WhatsApp number not available")

        notification = Notification(student_id=student.id, type=type, message=message)
        try:
            message_id = self._deliver(student, message)
        except MessageDeliveryError as exc:
            logger.exception("Direct WhatsApp send to student %s failed", student.id)
            notification.status = NotificationStatus.FAILED
            self.session.add(notification)
            self.session.commit()
            raise DeliveryError("Failed to send WhatsApp message") from exc

        notification.status = NotificationStatus.SENT
        notification.sent_at = datetime.utcnow()
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification, message_id

    def send_test_result(self, attempt_id: int) -> str:
        """Send the result of a completed attempt and settle its queued rows."""
        attempt = self.session.get(TestAttempt, attempt_id)
        if not attempt:
            raise NotFoundError("Test attempt not found")
        if attempt.status != AttemptStatus.COMPLETED:
            raise InvalidStateError("Test attempt is not completed")
        student = self.session.get(Student, attempt.student_id)
        if not can_notify(student):
            raise InvalidStateError(
                "Student has not consented to WhatsApp notifications or number not available"
            )
        test = self.session.get(Test, attempt.test_id)
        body = congratulation_message(test.title, attempt.score, attempt.total_marks, attempt.percentage)

        pending = (
            update(Notification)
            .where(Notification.attempt_id == attempt.id)
            .where(Notification.status == NotificationStatus.PENDING)
        )
        try:
            message_id = self._deliver(student, body)
        except MessageDeliveryError as exc:
            logger.exception("Result notification for attempt %s failed", attempt.id)
            self.session.exec(pending.values(status=NotificationStatus.FAILED))
            self.session.commit()
            raise DeliveryError("Failed to send WhatsApp notification") from exc

        self.session.exec(pending.values(status=NotificationStatus.SENT, sent_at=datetime.utcnow()))
        self.session.commit()
        return message_id

    def list_logs(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[NotificationStatus] = None,
        type: Optional[NotificationType] = None,
    ) -> Tuple[List[Notification], int]:
        stmt = select(Notification)
        count_stmt = select(func.count(Notification.id))
        if status is not None:
            stmt = stmt.where(Notification.status == status)
            count_stmt = count_stmt.where(Notification.status == status)
        if type is not None:
            stmt = stmt.where(Notification.type == type)
            count_stmt = count_stmt.where(Notification.type == type)
        rows = self.session.exec(
            stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        total = self.session.exec(count_stmt).one()
        return rows, total
