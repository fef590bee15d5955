from __future__ import annotations

from html import escape
from urllib.parse import urlencode

from backend.review_invites.models import ReviewInvitationPayload

REVIEW_LINK_UTM = (
    ("utm_source", "email"),
    ("utm_medium", "invitation"),
    ("utm_campaign", "intercom_automation"),
)


def build_review_link(domain: str) -> str:
    return f"https://www.trustpilot.com/evaluate/{domain.strip()}?{urlencode(REVIEW_LINK_UTM)}"


def invitation_subject(payload: ReviewInvitationPayload) -> str:
    return f"How did we do? Share your experience with {payload.business_name}"


def invitation_text(payload: ReviewInvitationPayload) -> str:
    return (
        f"Hi {payload.customer_name},\n\n"
        f"Thanks for getting in touch with {payload.business_name}. "
        f"{payload.agent_name} recently helped you with your conversation, "
        "and we would love to hear how it went.\n\n"
        "It only takes a minute to leave a review:\n"
        f"{payload.review_link}\n\n"
        "Thank you,\n"
        f"The {payload.business_name} team\n\n"
        f"Reference: {payload.conversation_id}\n"
    )


def invitation_html(payload: ReviewInvitationPayload) -> str:
    link = escape(payload.review_link, quote=True)
    return (
        "<html><body>"
        f"<p>Hi {escape(payload.customer_name)},</p>"
        f"<p>Thanks for getting in touch with {escape(payload.business_name)}. "
        f"{escape(payload.agent_name)} recently helped you with your conversation, "
        "and we would love to hear how it went.</p>"
        f'<p><a href="{link}">Leave a review</a></p>'
        f"<p>Thank you,<br>The {escape(payload.business_name)} team</p>"
        f'<p style="color:#888;font-size:12px">Reference: '
        f"{escape(payload.conversation_id)}</p>"
        "</body></html>"
    )
