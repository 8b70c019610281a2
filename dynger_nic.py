#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "argon2-cffi",
#     "flask",
#     "requests",
#     "python-dotenv",
#     "types-requests",
# ]
# ///
"""
Dynger Dynamic DNS Server

Serves the dyndns2 update protocol (GET /nic/update) and keeps the A record of
each authenticated host name in sync with the client's address on Vercel DNS.

Clients authenticate with HTTP Basic auth. The password is a token issued by
dynger_keygen.py for the (user, hostname) pair, so no passwords are stored.

Environment Variables:
    Required:
        DYN_MASTER_SECRET: Master secret (unpadded base64url) the tokens were issued with
        NOW_API_TKN: Vercel API bearer token

    Optional:
        DYN_PROVIDER_URL: DNS API base URL (default: https://api.vercel.com)
        DYN_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR (default: INFO)
        DYN_HOST: Address to listen on (default: 127.0.0.1)
        DYN_PORT: Port to listen on (default: 8080)

    A .env file next to this script is loaded if present.
"""

__version__ = "1.0.0"

import ipaddress
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv  # type: ignore[import-not-found]  # no stubs available
from flask import Flask, Response, request

from dynger_auth import CredentialVerifier
from dynger_errors import ConfigError, DyngerError
from dynger_reconcile import RecordReconciler
from vercel_dns import VERCEL_API_BASE, VercelDNSClient

# Configure logging for systemd/journald compatibility
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

REALM = "Dyn DNS"

# dyndns2 return codes
STATUS_GOOD = "good"
STATUS_NOCHG = "nochg"
STATUS_BADAUTH = "badauth"
STATUS_NOTFQDN = "notfqdn"
STATUS_911 = "911"

HOSTNAME_PARAM = "hostname"
MYIP_PARAM = "myip"

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class Config:
    """Server settings read from the environment."""

    master_secret: str
    api_token: str
    provider_url: str = VERCEL_API_BASE
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT


def get_log_level() -> str:
    """
    Get the log level from DYN_LOG_LEVEL.

    Returns:
        Level name (default: INFO)
    """
    level = os.getenv("DYN_LOG_LEVEL", DEFAULT_LOG_LEVEL).strip().upper()
    if level not in LOG_LEVELS:
        logger.warning(f"Invalid DYN_LOG_LEVEL {level!r}, using default {DEFAULT_LOG_LEVEL}")
        return DEFAULT_LOG_LEVEL
    return level


def get_port() -> int:
    try:
        port = int(os.getenv("DYN_PORT", str(DEFAULT_PORT)))
    except ValueError:
        logger.warning(f"Invalid DYN_PORT, using default {DEFAULT_PORT}")
        return DEFAULT_PORT
    if not 1 <= port <= 65535:
        logger.warning(f"DYN_PORT must be 1-65535, using default {DEFAULT_PORT}")
        return DEFAULT_PORT
    return port


def load_config() -> Config:
    """
    Read server configuration from environment variables.

    Raises:
        ConfigError: If DYN_MASTER_SECRET or NOW_API_TKN is missing.
    """
    master_secret = os.getenv("DYN_MASTER_SECRET", "").strip()
    api_token = os.getenv("NOW_API_TKN", "").strip()

    if not master_secret:
        raise ConfigError("DYN_MASTER_SECRET is not set")
    if not api_token:
        raise ConfigError("NOW_API_TKN is not set")

    return Config(
        master_secret=master_secret,
        api_token=api_token,
        provider_url=os.getenv("DYN_PROVIDER_URL", "").strip() or VERCEL_API_BASE,
        host=os.getenv("DYN_HOST", "").strip() or DEFAULT_HOST,
        port=get_port(),
    )


def check_domain(name: str) -> None:
    """
    Check host name syntax (RFC 1034 section 3.5, RFC 1123 section 2.1).

    Raises:
        ValueError: Describing the first problem found.
    """
    if not name:
        raise ValueError("domain: empty domain name supplied")
    if len(name) > 255:
        raise ValueError(f"domain: name length is {len(name)}, can't exceed 255")

    labels = name.split(".")
    for offset, label in enumerate(labels):
        is_tld = offset == len(labels) - 1
        what = "top level domain" if is_tld else "label"
        if not label:
            if is_tld:
                raise ValueError("domain: missing top level domain, domain can't end with a period")
            raise ValueError(f"domain: empty label at position {offset}")
        if len(label) > 63:
            raise ValueError(f"domain: byte length of {what} {label!r} is {len(label)}, can't exceed 63")
        if not all(c.isascii() and (c.isalnum() or c == "-") for c in label):
            raise ValueError(f"domain: invalid character in {what} {label!r}")
        if label.startswith("-") or label.endswith("-"):
            raise ValueError(f"domain: {what} {label!r} begins or ends with a hyphen")
        if is_tld and label[0].isdigit():
            raise ValueError(f"domain: top level domain {label!r} begins with a digit")


def parse_ipv4(value: str | None) -> str | None:
    """Return value as a normalized IPv4 address, or None if it isn't one."""
    if not value:
        return None
    try:
        return str(ipaddress.IPv4Address(value.strip()))
    except ValueError:
        return None


def text_response(*parts: str) -> Response:
    return Response(" ".join(parts), status=200, mimetype="text/plain")


def create_app(verifier: CredentialVerifier, reconciler: RecordReconciler) -> Flask:
    """
    Build the Flask app serving /nic/update.

    Args:
        verifier: Checks client credentials
        reconciler: Applies address changes at the provider
    """
    app = Flask(__name__)

    @app.route("/nic/update", methods=["GET"])
    def nic_update() -> Response:
        auth = request.authorization
        if auth is None or auth.type != "basic":
            logger.warning(f"Missing or invalid Authorization header from {request.remote_addr}")
            return Response(
                "Unauthorized",
                status=401,
                headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
            )
        logger.debug(f"{request.method} {request.url} from {request.remote_addr}")

        myip = request.args.get(MYIP_PARAM, "")
        ip = parse_ipv4(myip)
        if ip is None:
            logger.warning(f"Couldn't parse 'myip' parameter {myip!r}, using remote address {request.remote_addr}")
            ip = parse_ipv4(request.remote_addr)
        if ip is None:
            logger.error(f"No usable IPv4 address for update request from {request.remote_addr}")
            return text_response(STATUS_911)

        hostname = request.args.get(HOSTNAME_PARAM, "")
        try:
            check_domain(hostname)
        except ValueError as e:
            logger.error(f"Bad 'hostname' supplied: {e}")
            return text_response(STATUS_NOTFQDN)

        result = verifier.verify_login(hostname, auth.username or "", auth.password or "")
        if not result:
            logger.warning(f"Failed login for {auth.username!r} on {hostname} from {request.remote_addr}")
            return text_response(STATUS_BADAUTH)

        try:
            changed = reconciler.set_address(hostname, ip)
        except DyngerError as e:
            logger.error(f"Address for {hostname} is not set: {e}")
            return text_response(STATUS_911)

        if not changed:
            logger.info(f"{hostname} already points to {ip}, request ignored")
            return text_response(STATUS_NOCHG, ip)

        logger.info(f"Update successful: {hostname} -> {ip}")
        return text_response(STATUS_GOOD, ip)

    return app


def main() -> int:
    """
    Main entry point for the update server.

    Returns:
        Exit code: 1 on configuration errors, 0 after a clean shutdown.
    """
    # Load .env from script's directory
    script_dir = Path(__file__).parent.resolve()
    env_file = script_dir / ".env"
    if env_file.exists():
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from {env_file}")

    logging.getLogger().setLevel(get_log_level())

    try:
        config = load_config()
        verifier = CredentialVerifier.from_b64(config.master_secret)
    except DyngerError as e:
        logger.error(f"Startup failed: {e}")
        return 1

    provider = VercelDNSClient(config.api_token, base_url=config.provider_url)
    app = create_app(verifier, RecordReconciler(provider))

    logger.info(f"Dynger {__version__} listening on {config.host}:{config.port}")
    app.run(host=config.host, port=config.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
