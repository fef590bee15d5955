from __future__ import annotations

import http.client
import json
import logging
from typing import Optional
from urllib import parse, request
from urllib.error import URLError

from pydantic import ValidationError

from backend.review_invites.models import ContactProfile

logger = logging.getLogger("review_invites.contacts")


class IntercomContactLookup:
    def __init__(
        self,
        *,
        access_token: str,
        api_url: str = "https://api.intercom.io",
        timeout_seconds: float = 8.0,
    ) -> None:
        self.access_token = access_token
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def fetch(self, contact_id: str) -> Optional[ContactProfile]:
        req = request.Request(
            f"{self.api_url}/contacts/{parse.quote(contact_id, safe='')}",
            method="GET",
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                body = response.read()
        except (URLError, OSError, http.client.HTTPException) as exc:
            logger.warning("contact_lookup_failed contact_id=%s error=%s", contact_id, exc)
            return None

        try:
            profile = ContactProfile.model_validate(json.loads(body.decode("utf-8")))
        except (ValueError, ValidationError) as exc:
            logger.warning("contact_lookup_invalid contact_id=%s error=%s", contact_id, exc)
            return None
        return profile
