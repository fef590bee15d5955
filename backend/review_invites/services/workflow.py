from __future__ import annotations

from backend.review_invites.models import InvitationStatus

ALLOWED_TRANSITIONS = {
    InvitationStatus.processing: {
        InvitationStatus.retrying,
        InvitationStatus.success,
    },
    InvitationStatus.retrying: {
        InvitationStatus.retrying,
        InvitationStatus.success,
        InvitationStatus.failed,
    },
    InvitationStatus.success: set(),
    InvitationStatus.failed: set(),
}
