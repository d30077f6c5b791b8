"""
Mint an admin bearer token for the /api/admin and /api/leads admin endpoints.

Usage:
    python scripts/create_admin_token.py
    python scripts/create_admin_token.py --subject ops@example.com --days 7
"""
import argparse
from datetime import datetime, timedelta, timezone

import jwt as pyjwt

from leadgate.config import get_settings


def create_admin_token(subject: str, days: int, secret: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "role": "admin",
        "iat": now,
        "exp": now + timedelta(days=days),
    }
    return pyjwt.encode(payload, secret, algorithm="HS256")


def main():
    parser = argparse.ArgumentParser(description="Create an admin JWT")
    parser.add_argument("--subject", default="admin")
    parser.add_argument("--days", type=int, default=1)
    args = parser.parse_args()

    secret = get_settings().admin_jwt_secret
    if not secret:
        raise SystemExit("ADMIN_JWT_SECRET is not set")
    print(create_admin_token(args.subject, args.days, secret))


if __name__ == "__main__":
    main()
