"""Shared FastAPI dependencies."""

from fastapi import Request

from .integrations.mailer import MailSender


def get_mail_sender(request: Request) -> MailSender:
    """Get the mail sender from app state."""
    return request.app.state.mailer
