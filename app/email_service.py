"""
Email Service using Resend
Provides booking emails using MJML templates for responsive design
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, EMAIL_MODE, RESEND_API_KEY
from .email_templates import booking_cancelled_template, meeting_code_template

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a result object with html and errors
        errors = getattr(result, "errors", None)
        if errors:
            logger.warning(f"MJML compilation warnings: {errors}")
        return getattr(result, "html", None) or str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise Exception(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    recipients = [to] if isinstance(to, str) else to

    if EMAIL_MODE == "log":
        logger.info(f"📧 [log mode] Email to {recipients}: {subject}")
        return {"id": None, "mode": "log"}

    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise Exception("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise Exception(f"Failed to send email: {str(e)}") from e


async def send_meeting_code_email(
    to: str,
    user_name: str,
    code: str,
    other_party_name: str,
    meeting_location: Optional[str],
    window_minutes: int,
    booking_id: int,
) -> dict:
    """Send a party their meeting check-in code"""
    return await send_email(
        to=to,
        subject="Your meeting code",
        mjml_content=meeting_code_template(
            user_name, code, other_party_name, meeting_location, window_minutes, booking_id
        ),
    )


async def send_booking_cancelled_email(
    to: str, user_name: str, booking_date: str, start_time: str, reason: str, cancelled_by: str
) -> dict:
    """Tell a party their booking was cancelled"""
    return await send_email(
        to=to,
        subject="Your booking was cancelled",
        mjml_content=booking_cancelled_template(
            user_name, booking_date, start_time, reason, cancelled_by
        ),
    )
