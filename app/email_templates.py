"""
MJML Email Templates
Booking lifecycle emails using MJML for responsive, cross-client compatibility
"""

from typing import Optional

from .config import FRONTEND_URL

THEME = {
    "primary": "#7c3aed",
    "primary_light": "#ede9fe",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "danger": "#ef4444",
}


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="40px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="12px" color="#94a3b8" padding="0">
              You're receiving this because you have a booking on Companion Booking.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def meeting_code_template(
    user_name: str,
    code: str,
    other_party_name: str,
    meeting_location: Optional[str],
    window_minutes: int,
    booking_id: int,
) -> str:
    """Meeting check-in code MJML template"""
    location_line = f"<br/>Meeting point: {meeting_location}" if meeting_location else ""
    content = f"""
    <mj-text>
      Hi {user_name},
    </mj-text>

    <mj-text>
      Your meeting with {other_party_name} is about to start.{location_line}
    </mj-text>

    <mj-text>
      When you meet, enter the code below in the app. Both of you must check in
      within {window_minutes} minutes, otherwise the booking is cancelled and the
      payment hold is released.
    </mj-text>

    <mj-text align="center" font-size="36px" font-weight="700" color="{THEME['text_primary']}" letter-spacing="8px" font-family="'Courier New', monospace" padding="16px 0">
      {code}
    </mj-text>

    <mj-text color="{THEME['text_muted']}" font-size="14px">
      Never share this code before you have met in person.
    </mj-text>
    """

    return get_base_template(
        title="Your meeting code",
        preview_text=f"Your meeting code is {code}",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings/{booking_id}/verify",
        cta_label="Check in",
    )


def booking_cancelled_template(
    user_name: str, booking_date: str, start_time: str, reason: str, cancelled_by: str
) -> str:
    """Booking cancellation MJML template"""
    who = {
        "client": "The client",
        "companion": "The companion",
        "system": "Companion Booking",
    }.get(cancelled_by, "Companion Booking")

    content = f"""
    <mj-text>
      Hi {user_name},
    </mj-text>

    <mj-text>
      {who} cancelled the booking on {booking_date} at {start_time}.
    </mj-text>

    <mj-text color="{THEME['text_muted']}">
      Reason: {reason}
    </mj-text>

    <mj-text>
      Any payment hold for this booking has been released.
    </mj-text>
    """

    return get_base_template(
        title="Booking cancelled",
        preview_text=f"Your booking on {booking_date} was cancelled",
        content_sections=content,
        cta_url=f"{FRONTEND_URL}/bookings",
        cta_label="View bookings",
    )
