"""Concrete external collaborators consumed by the built-in tasks."""

from pyrunbook.clients.llm import LLMGateway, OpenAIGateway
from pyrunbook.clients.mail import MailMessage, Mailer, SmtpMailer
from pyrunbook.clients.policy import Authorizer, PolicyAuthorizer, PolicyError
from pyrunbook.clients.records import (
    RecordError,
    RecordRef,
    RecordRepository,
    SqliteRecordRepository,
)

__all__ = [
    "LLMGateway",
    "OpenAIGateway",
    "MailMessage",
    "Mailer",
    "SmtpMailer",
    "Authorizer",
    "PolicyAuthorizer",
    "PolicyError",
    "RecordError",
    "RecordRef",
    "RecordRepository",
    "SqliteRecordRepository",
]
