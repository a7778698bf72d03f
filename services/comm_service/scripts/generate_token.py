"""Mint a service token for a caller of the comm-service API.

Usage:
  python scripts/generate_token.py [service-name] [scope ...] [--expire-minutes N]

Environment:
  - JWT_SECRET_KEY, JWT_ISSUER, JWT_AUDIENCE (must match the running service)
  - SERVICE_TOKEN_EXPIRE_MINUTES (default 60)
"""

import argparse
from typing import List, Optional

from comm_service.core.config import Settings
from comm_service.core.security import TokenIssuer

DEFAULT_SERVICE = "trading-service"
DEFAULT_SCOPES = ["messages.send", "command.dispatch"]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a comm-service bearer token")
    parser.add_argument("service", nargs="?", default=DEFAULT_SERVICE, help="Calling service name")
    parser.add_argument("scopes", nargs="*", help=f"Scopes to grant (default: {' '.join(DEFAULT_SCOPES)})")
    parser.add_argument("--expire-minutes", type=int, default=None, help="Override token lifetime")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> str:
    args = parse_args(argv)
    s = Settings()
    if args.expire_minutes is not None:
        s = s.model_copy(update={"service_token_expire_minutes": args.expire_minutes})
    scopes = args.scopes or DEFAULT_SCOPES

    token = TokenIssuer(s).issue(args.service, scopes)
    print(f"Service: {args.service}")
    print(f"Scopes: {', '.join(scopes)}")
    print(f"Expires in: {s.service_token_expire_minutes} minutes")
    print(f"COMM_SERVICE_TOKEN={token}")
    return token


if __name__ == "__main__":
    main()
