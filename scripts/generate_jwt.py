from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone

import jwt


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Issue an operator token for the review invitation read endpoints."
    )
    parser.add_argument("--secret", required=True)
    parser.add_argument("--subject", required=True)
    parser.add_argument(
        "--roles",
        default="support",
        help="Comma-separated roles: support can read logs and stats, admin can also read config.",
    )
    parser.add_argument("--hours", type=int, default=12)
    parser.add_argument("--algorithm", default="HS256")
    args = parser.parse_args()

    claims = {
        "sub": args.subject,
        "roles": [item.strip() for item in args.roles.split(",") if item.strip()],
        "exp": datetime.now(timezone.utc) + timedelta(hours=args.hours),
    }
    print(jwt.encode(claims, args.secret, algorithm=args.algorithm))


if __name__ == "__main__":
    main()
