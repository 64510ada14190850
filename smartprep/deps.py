"""Shared FastAPI dependencies wiring services to a database session."""

from fastapi import Depends
from sqlmodel import Session

from smartprep.config import get_settings
from smartprep.crypto_utils import EnvSecretProvider, PhoneCipher
from smartprep.database import get_session
from smartprep.services.attempts import AttemptService
from smartprep.services.notifications import (
    LoggingMessageSender,
    MessageSender,
    NotificationDispatcher,
    NotificationTrigger,
)
from smartprep.services.question_bank import QuestionBank
from smartprep.services.students import StudentDirectory


def get_phone_cipher() -> PhoneCipher:
    """Cipher bound to the configured key; fails on use when no key is set."""
    return PhoneCipher(EnvSecretProvider(get_settings()))


def get_message_sender() -> MessageSender:
    return LoggingMessageSender()


def get_question_bank(session: Session = Depends(get_session)) -> QuestionBank:
    return QuestionBank(session)


def get_attempt_service(session: Session = Depends(get_session)) -> AttemptService:
    return AttemptService(session, NotificationTrigger(session))


def get_student_directory(
    session: Session = Depends(get_session),
    cipher: PhoneCipher = Depends(get_phone_cipher),
) -> StudentDirectory:
    return StudentDirectory(session, cipher)


def get_dispatcher(
    session: Session = Depends(get_session),
    cipher: PhoneCipher = Depends(get_phone_cipher),
    sender: MessageSender = Depends(get_message_sender),
) -> NotificationDispatcher:
    return NotificationDispatcher(session, cipher, sender, get_settings().whatsapp_from)
