#!/usr/bin/env python3
"""Issue, list and revoke access tokens from the command line.

Usage:
    # Issue a token for a user (prints the token)
    python scripts/issue_token.py issue --user-id u1 --max-age 12h

    # List a user's sessions, newest first
    python scripts/issue_token.py list --user-id u1

    # Revoke a token, or every session of a user
    python scripts/issue_token.py revoke --token acst:u1:...
    python scripts/issue_token.py revoke --user-id u1

Environment Variables:
    REDIS_URL: Redis connection string
    REDIS_KEY_PREFIX: Namespace prepended to every Redis key
    ACCESS_TOKEN_KEY_PREFIX / ACCESS_TOKEN_MAX_AGE: Token settings
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def issue(user_id: str, max_age: str | None, ip: str | None, attributes: dict) -> dict:
    # Import here to avoid loading config before env vars are set
    from accesstoken.service.runtime import get_runtime

    runtime = get_runtime()
    record = await runtime.tokens.create_session(
        user_id, ip=ip, max_age=max_age, attributes=attributes
    )
    await record.save()
    return {"token": record.token, "user_id": record.user_id, "max_age": record.max_age}


async def list_sessions(user_id: str, skip: int) -> list[dict]:
    from accesstoken.service.runtime import get_runtime

    runtime = get_runtime()
    records = await runtime.tokens.list_by_user_id(user_id, skip)
    return [
        {
            "token": record.token,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "ip": record.ip,
        }
        for record in records
    ]


async def revoke(token: str | None, user_id: str | None) -> int:
    from accesstoken.service.runtime import get_runtime

    runtime = get_runtime()
    if token:
        await runtime.tokens.destroy(token)
        return 1
    return await runtime.tokens.destroy_all(user_id)


def main():
    parser = argparse.ArgumentParser(
        description="Manage access-token sessions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    issue_cmd = commands.add_parser("issue", help="Issue a new token")
    issue_cmd.add_argument("--user-id", required=True)
    issue_cmd.add_argument("--max-age", help="Duration such as 20m or 12h")
    issue_cmd.add_argument("--ip", help="Client IP recorded on the session")
    issue_cmd.add_argument(
        "--attributes", default="{}", help="JSON object stored with the session"
    )

    list_cmd = commands.add_parser("list", help="List a user's sessions")
    list_cmd.add_argument("--user-id", required=True)
    list_cmd.add_argument("--skip", type=int, default=0)

    revoke_cmd = commands.add_parser("revoke", help="Revoke a token or all of a user's tokens")
    target = revoke_cmd.add_mutually_exclusive_group(required=True)
    target.add_argument("--token")
    target.add_argument("--user-id")

    args = parser.parse_args()

    try:
        if args.command == "issue":
            attributes = json.loads(args.attributes)
            if not isinstance(attributes, dict):
                print("Error: --attributes must be a JSON object")
                sys.exit(1)
            result = asyncio.run(issue(args.user_id, args.max_age, args.ip, attributes))
            print(json.dumps(result, indent=2))
        elif args.command == "list":
            sessions = asyncio.run(list_sessions(args.user_id, args.skip))
            print(json.dumps(sessions, indent=2))
        else:
            count = asyncio.run(revoke(args.token, args.user_id))
            print(f"Revoked {count} session(s)")
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
