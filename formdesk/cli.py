"""
Bootstrap command line

    python -m formdesk.cli create-key --name admin --permission "*"
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from formdesk.db.session import close_db, init_db
from formdesk.services.security_service import SecurityService
from formdesk.utils.exceptions import FormdeskError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="formdesk")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-key", help="Create an API key")
    create.add_argument("--name", required=True, help="Label for the key")
    create.add_argument(
        "--permission",
        dest="permissions",
        action="append",
        default=[],
        help="Permission to grant (repeatable, '*' for all)",
    )
    create.add_argument("--rate-limit", type=int, default=None)
    create.add_argument("--created-by", default="cli")
    return parser


async def create_key(args: argparse.Namespace, service: SecurityService) -> str:
    await init_db()
    try:
        api_key, record = await service.create_api_key(
            name=args.name,
            permissions=args.permissions,
            created_by=args.created_by,
            rate_limit_per_hour=args.rate_limit,
        )
    finally:
        await close_db()

    print(f"id:          {record.id}")
    print(f"permissions: {', '.join(record.permissions) or '(none)'}")
    print(f"api key:     {api_key}")
    print("Store the key now; it will not be shown again.")
    return api_key


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        service = SecurityService()
        if args.command == "create-key":
            asyncio.run(create_key(args, service))
    except FormdeskError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
