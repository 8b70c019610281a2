"""
Vercel (formerly Zeit) DNS API client.

Lists, creates and deletes records of a domain. Error responses look like
``{"error": {"code": "...", "message": "..."}}`` and are turned into
ProviderError before any other parsing is attempted.
"""

import logging
from typing import Any

import requests

from dynger_errors import ProviderError, ProviderUnavailable
from dynger_reconcile import DNSRecord

logger = logging.getLogger(__name__)

VERCEL_API_BASE = "https://api.vercel.com"

DEFAULT_TIMEOUT = 30


class VercelDNSClient:
    """ProviderClient for the Vercel DNS records API."""

    def __init__(self, token: str, base_url: str = VERCEL_API_BASE, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            }
        )

    def records_url(self, domain: str) -> str:
        return f"{self.base_url}/v2/domains/{domain}/records"

    def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Provider request {method} {url} failed: {e}")
            raise ProviderUnavailable(f"Can't reach DNS provider: {e}", operation) from e

        payload = _json_or_none(response)
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            code = str(error.get("code", ""))
            message = str(error.get("message", ""))
            logger.error(f"Provider rejected {operation} ({response.status_code}): {code} {message}")
            raise ProviderError(code, message, operation)

        if not response.ok:
            logger.error(f"Provider returned HTTP {response.status_code} for {operation}")
            raise ProviderError(str(response.status_code), response.reason or "", operation)

        return response

    def list_records(self, domain: str) -> list[DNSRecord]:
        """
        Fetch all records of a domain.

        Raises:
            ProviderUnavailable: On transport failure or an unreadable listing.
            ProviderError: On an error response.
        """
        response = self._request("list", "GET", self.records_url(domain))
        payload = _json_or_none(response)
        if not isinstance(payload, dict) or not isinstance(payload.get("records"), list):
            raise ProviderUnavailable(f"Can't read DNS records for {domain}: unexpected response", "list")

        records = []
        for item in payload["records"]:
            try:
                records.append(DNSRecord.from_api(item))
            except (KeyError, TypeError, AttributeError):
                logger.debug(f"Skipping malformed record in {domain} listing: {item!r}")
        logger.debug(f"Got {len(records)} record(s) for {domain}")
        return records

    def create_record(self, domain: str, name: str, record_type: str, value: str) -> None:
        payload = {"name": name, "type": record_type, "value": value}
        self._request("create", "POST", self.records_url(domain), json=payload)
        logger.debug(f"Created {record_type} record {name!r} in {domain}")

    def delete_record(self, domain: str, record_id: str) -> None:
        self._request("delete", "DELETE", f"{self.records_url(domain)}/{record_id}")
        logger.debug(f"Deleted record {record_id} in {domain}")


def _json_or_none(response: requests.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
