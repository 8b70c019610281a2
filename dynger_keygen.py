#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "argon2-cffi",
#     "python-dotenv",
# ]
# ///
"""
Dynger key generation

Provisioning helper for the operator:

    secret  Derive a new master secret (put it in DYN_MASTER_SECRET)
    token   Issue the password token for a user and host name
    random  Print a random base64url token

The token command reads DYN_MASTER_SECRET (or a .env file next to this
script) unless --secret is given.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv  # type: ignore[import-not-found]  # no stubs available

from dynger_auth import load_master_secret
from dynger_crypto import (
    DerivedKey,
    derive_key,
    derive_master_secret,
    issue_token,
    random_bytes,
    random_token,
)
from dynger_errors import DyngerError, RandomnessUnavailable

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dynger-keygen", description="Generate dynger secrets and tokens.")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    secret = sub.add_parser("secret", help="derive a new master secret")
    secret.add_argument("--pin", default="", help="PIN to derive from (random input when omitted)")
    secret.add_argument("--salted", action="store_true", help="print salt$key instead of just the key")

    token = sub.add_parser("token", help="issue the password token for a login")
    token.add_argument("--user", required=True)
    token.add_argument("--domain", required=True, help="host name the user may update")
    token.add_argument("--secret", default=None, help="master secret (default: $DYN_MASTER_SECRET)")

    sub.add_parser("random", help="print a random token")
    return parser


def cmd_secret(args: argparse.Namespace) -> int:
    if args.salted:
        pin = args.pin.encode("utf-8") if args.pin else random_bytes()
        derived: DerivedKey = derive_key(pin)
        print(derived.salted_b64())
    else:
        print(derive_master_secret(args.pin).b64())
    return 0


def cmd_token(args: argparse.Namespace) -> int:
    secret_text = args.secret if args.secret is not None else os.getenv("DYN_MASTER_SECRET", "")
    try:
        # same checks the server applies at startup
        secret = load_master_secret(secret_text)
    except DyngerError as e:
        logger.error(f"Can't use master secret: {e}")
        return 1

    print(issue_token(secret, args.user, args.domain))
    return 0


def cmd_random(args: argparse.Namespace) -> int:
    print(random_token())
    return 0


COMMANDS = {
    "secret": cmd_secret,
    "token": cmd_token,
    "random": cmd_random,
}


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the key generation CLI.

    Returns:
        Exit code: 0 on success, 1 on failure.
    """
    script_dir = Path(__file__).parent.resolve()
    env_file = script_dir / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        return COMMANDS[args.command](args)
    except RandomnessUnavailable as e:
        logger.error(f"Key generation failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
