"""
Transactional e-mails: address verification and password reset.
"""

import logging
import smtplib

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)

BUTTON_STYLE = (
    'background-color: #4CAF50; color: white; padding: 12px 20px; '
    'text-decoration: none; border-radius: 4px; font-weight: bold;'
)


def _render_html(heading, intro, url, button_label, expiry_note, ignore_note):
    return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <h2>{heading}</h2>
        <p>{intro}</p>
        <div style="text-align: center; margin: 30px 0;">
          <a href="{url}" style="{BUTTON_STYLE}">{button_label}</a>
        </div>
        <p>If the button doesn't work, you can also copy and paste the following link into your browser:</p>
        <p>{url}</p>
        <p>{expiry_note}</p>
        <p>{ignore_note}</p>
      </div>
    """


def _deliver(subject, text, html, recipient):
    """
    Send one e-mail.

    Returns:
        bool: True if the backend accepted the message
    """
    try:
        send_mail(
            subject,
            text,
            settings.DEFAULT_FROM_EMAIL,
            [recipient],
            html_message=html,
            fail_silently=False,
        )
    except (smtplib.SMTPException, OSError):
        logger.error(f"Failed to send e-mail. Subject: {subject}, To: {recipient}", exc_info=True)
        return False
    return True


def send_verification_email(user):
    """Send the e-mail verification link for ``user.verification_token``."""
    url = f"{settings.FRONTEND_URL}/auth/verify-email?token={user.verification_token}"
    text = f"Please verify your email address by clicking on the following link: {url}"
    html = _render_html(
        'Welcome to Marketplace!',
        'Thank you for registering. Please verify your email address by clicking the button below:',
        url,
        'Verify Email Address',
        'This link will expire in 24 hours.',
        "If you didn't create an account, you can safely ignore this email.",
    )
    return _deliver('Verify your email address', text, html, user.email)


def send_password_reset_email(user):
    """Send the password reset link for ``user.reset_password_token``."""
    url = f"{settings.FRONTEND_URL}/auth/reset-password?token={user.reset_password_token}"
    text = f"You requested a password reset. Please click on the following link to reset your password: {url}"
    html = _render_html(
        'Password Reset Request',
        'You requested a password reset for your Marketplace account. '
        'Please click the button below to reset your password:',
        url,
        'Reset Password',
        'This link will expire in 1 hour.',
        "If you didn't request a password reset, you can safely ignore this email.",
    )
    return _deliver('Reset your password', text, html, user.email)
