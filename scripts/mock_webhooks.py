from __future__ import annotations

import argparse
import json
import sys
import time
import urllib.error
import urllib.request


def post_body(url: str, body: bytes, content_type: str) -> tuple[int, str]:
    request = urllib.request.Request(url, data=body, method="POST")
    request.add_header("Content-Type", content_type)
    try:
        with urllib.request.urlopen(request, timeout=15) as response:
            return response.status, response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode("utf-8")


def close_event(
    *,
    conversation_id: str,
    event_type: str,
    email: str,
    name: str,
    agent_name: str,
) -> dict:
    return {
        "type": "notification_event",
        "topic": event_type,
        "id": f"notif_{conversation_id}",
        "created_at": int(time.time()),
        "data": {
            "type": "notification_event_data",
            "item": {
                "type": "conversation",
                "id": conversation_id,
                "contacts": {
                    "type": "contact.list",
                    "contacts": [
                        {
                            "type": "contact",
                            "id": f"contact_{conversation_id}",
                            "email": email,
                            "name": name,
                        }
                    ],
                },
                "conversation_parts": {
                    "type": "conversation_part.list",
                    "conversation_parts": [
                        {
                            "type": "conversation_part",
                            "part_type": "close",
                            "author": {"type": "admin", "name": agent_name},
                        }
                    ],
                },
            },
        },
    }


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Send mock Intercom conversation-closed events to a local API."
    )
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--path", default="/api/webhook/intercom")
    parser.add_argument("--count", type=int, default=3)
    parser.add_argument("--start-index", type=int, default=1)
    parser.add_argument("--event-type", default="conversation.admin.closed")
    parser.add_argument("--email-domain", default="example.com")
    parser.add_argument("--agent-name", default="Priya")
    parser.add_argument(
        "--repeat",
        type=int,
        default=1,
        help="Deliver each event this many times to exercise deduplication.",
    )
    parser.add_argument(
        "--content-type",
        default="application/json",
        help="Declared content type; the endpoint reads the raw body either way.",
    )
    args = parser.parse_args()

    endpoint = f"{args.base_url.rstrip('/')}{args.path}"
    for index in range(args.start_index, args.start_index + args.count):
        conversation_id = f"conv_mock_{index}"
        payload = close_event(
            conversation_id=conversation_id,
            event_type=args.event_type,
            email=f"customer{index}@{args.email_domain}",
            name=f"Customer {index}",
            agent_name=args.agent_name,
        )
        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        for _ in range(max(1, args.repeat)):
            status_code, response = post_body(endpoint, body, args.content_type)
            print(f"{status_code} {conversation_id} {response}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
