#!/usr/bin/env python3
"""Generate invitation codes via the admin API.

Usage:
    python scripts/generate_invitation_codes.py --count 100
    python scripts/generate_invitation_codes.py --count 50 --max-uses 5 --expires-in-days 30 --output codes.txt

Environment variables:
    ADMIN_EMAIL     - Required. Email of an account with the admin role.
    ADMIN_PASSWORD  - Required. Password for that account.
    BASE_URL        - Backend base URL (default: http://localhost:10723)
"""

import argparse
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from urllib.error import HTTPError
from urllib.request import Request, urlopen


BASE_URL = os.environ.get("BASE_URL", "http://localhost:10723").rstrip("/")
ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "")
BATCH_SIZE = 500


def api_post(path: str, payload: dict, token: str | None = None) -> dict:
    data = json.dumps(payload).encode()
    headers = {"Content-Type": "application/json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    req = Request(f"{BASE_URL}{path}", data=data, headers=headers, method="POST")
    try:
        with urlopen(req) as resp:
            return json.loads(resp.read())
    except HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        print(f"Error: HTTP {e.code} - {body}", file=sys.stderr)
        sys.exit(1)


def login() -> str:
    if not ADMIN_EMAIL or not ADMIN_PASSWORD:
        print("Error: ADMIN_EMAIL and ADMIN_PASSWORD environment variables are required", file=sys.stderr)
        sys.exit(1)
    result = api_post("/v1/auth/login", {"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    if result["user"]["role"] != "admin":
        print(f"Error: {ADMIN_EMAIL} is not an admin", file=sys.stderr)
        sys.exit(1)
    return result["access_token"]


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate invitation codes via admin API")
    parser.add_argument("--count", type=int, default=100, help="Number of codes to generate (default: 100)")
    parser.add_argument("--max-uses", type=int, default=1, help="Uses allowed per code (default: 1)")
    parser.add_argument("--expires-in-days", type=int, help="Expire the codes this many days from now")
    parser.add_argument("--description", type=str, help="Note stored with every generated code")
    parser.add_argument("--output", "-o", type=str, help="Write codes to file (one per line)")
    args = parser.parse_args()

    token = login()
    expires_at = None
    if args.expires_in_days:
        expires_at = (datetime.now(timezone.utc) + timedelta(days=args.expires_in_days)).isoformat()

    all_codes: list[str] = []
    remaining = args.count

    while remaining > 0:
        n = min(remaining, BATCH_SIZE)
        print(f"Generating {n} codes ({len(all_codes)}/{args.count} done)...")
        result = api_post(
            "/v1/admin/invitation-codes/batch",
            {"count": n, "max_uses": args.max_uses, "expires_at": expires_at, "description": args.description},
            token=token,
        )
        codes = [item["code"] for item in result.get("codes", [])]
        all_codes.extend(codes)
        remaining -= len(codes)
        if len(codes) < n:
            print(f"Warning: requested {n} but got {len(codes)}", file=sys.stderr)
            break

    print(f"\nGenerated {len(all_codes)} invitation codes.")

    if args.output:
        with open(args.output, "w") as f:
            for code in all_codes:
                f.write(code + "\n")
        print(f"Saved to {args.output}")
    else:
        for code in all_codes:
            print(code)


if __name__ == "__main__":
    main()
