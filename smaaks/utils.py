"""Utility functions for the application."""

import smtplib
import threading

from flask import current_app, render_template
from flask_mail import Message

from .core.constants import SMTP_AUTH_ERROR_CODE
from .extensions import mail


class EmailError(Exception):
    """Base class for email errors."""

    pass


def send_email(to, subject, template, **kwargs):
    """Send an email to a recipient.

    Raises:
        EmailError: If sending the email fails.
    """
    msg = Message(
        subject,
        recipients=[to],
        html=render_template(template, **kwargs),
        sender=current_app.config["MAIL_DEFAULT_SENDER"],
    )
    try:
        mail.send(msg)
    except smtplib.SMTPAuthenticationError as e:
        if e.smtp_code == SMTP_AUTH_ERROR_CODE:
            raise EmailError(
                "Authentication failed. The mail provider requires an app "
                "password; check MAIL_USERNAME and MAIL_PASSWORD."
            ) from e
        raise EmailError(f"SMTP Authentication failed: {e}") from e
    except Exception as e:
        raise EmailError(f"Failed to send email: {e}") from e


def send_email_background(app, email_data):
    """Send an email in a background thread, logging any failure."""

    def task():
        with app.app_context():
            try:
                send_email(**email_data)
            except EmailError as e:
                app.logger.error(f"Email to {email_data.get('to')} failed: {e}")

    thread = threading.Thread(target=task)
    thread.start()
    return thread
