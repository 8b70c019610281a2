"""
Keep a host's address record in sync with the provider.

The reconciler lists the parent domain's records, finds the address record for
the host's label and makes the fewest provider calls needed: none when the
value already matches, a create when the record is missing, and a delete
followed by a create when the value differs.
"""

import logging
import threading
import weakref
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from dynger_errors import DyngerError, MalformedName

logger = logging.getLogger(__name__)

# Only IPv4 address records are managed
ADDRESS_TYPE = "A"


@dataclass(frozen=True)
class DNSRecord:
    """A provider-side DNS record. The id is assigned by the provider."""

    id: str
    type: str
    name: str
    value: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DNSRecord":
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            name=str(data["name"]),
            value=str(data.get("value") or ""),
        )


class ProviderClient(Protocol):
    """What the reconciler needs from a DNS provider."""

    def list_records(self, domain: str) -> list[DNSRecord]: ...

    def create_record(self, domain: str, name: str, record_type: str, value: str) -> None: ...

    def delete_record(self, domain: str, record_id: str) -> None: ...


def split_fqdn(fqdn: str) -> tuple[str, str]:
    """
    Split a host name into its first label and the parent domain.

    Host names are case-insensitive, both parts are returned in lower case.

    Example: "To.Example.com" -> ("to", "example.com")

    Raises:
        MalformedName: If there is no "." in the name, or either part is empty.
    """
    label, sep, parent = fqdn.lower().partition(".")
    if not sep or not label or not parent:
        raise MalformedName(f"Incorrect domain name supplied: {fqdn!r}")
    return label, parent


def find_record(records: Iterable[DNSRecord], record_type: str, name: str) -> DNSRecord | None:
    """Return the first record with the given type and name (ignoring case), or None."""
    name = name.lower()
    for record in records:
        if record.type == record_type and record.name.lower() == name:
            return record
    return None


class _NameLock:
    """A mutex that can be held in a WeakValueDictionary."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __enter__(self) -> "_NameLock":
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()


class RecordReconciler:
    """
    Converges a host's address record to a desired IP.

    Calls for the same host name are serialized so two concurrent updates
    can't both see a missing record and create it twice. A name's lock is
    dropped once no call is using it.
    """

    def __init__(self, provider: ProviderClient) -> None:
        self.provider = provider
        self._locks: weakref.WeakValueDictionary[str, _NameLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, fqdn: str) -> _NameLock:
        key = fqdn.lower()
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = _NameLock()
            return lock

    def set_address(self, fqdn: str, ip: str) -> bool:
        """
        Point fqdn's address record at ip.

        Args:
            fqdn: Host name, e.g. "home.example.com"
            ip: IPv4 address as text

        Returns:
            True if a record was created or replaced, False if it already
            held ip (no provider writes happen in that case).

        Raises:
            MalformedName: If fqdn has an empty label or no parent domain.
                           No provider call is made.
            ProviderUnavailable: If the provider can't be reached.
            ProviderError: If the provider rejects a call.
        """
        label, parent = split_fqdn(fqdn)

        with self._lock_for(fqdn):
            records = self.provider.list_records(parent)
            existing = find_record(records, ADDRESS_TYPE, label)

            if existing is None:
                logger.debug(f"No {ADDRESS_TYPE} record for {fqdn}, creating one")
                self.provider.create_record(parent, label, ADDRESS_TYPE, ip)
                logger.info(f"Created {ADDRESS_TYPE} record {fqdn} -> {ip}")
                return True

            if existing.value == ip:
                logger.debug(f"{fqdn} already points to {ip}, nothing to do")
                return False

            logger.debug(f"{fqdn} needs update: {existing.value} -> {ip}")
            self.provider.delete_record(parent, existing.id)
            try:
                self.provider.create_record(parent, label, ADDRESS_TYPE, ip)
            except DyngerError:
                logger.warning(
                    f"Deleted record {existing.id} for {fqdn} but could not create the new one; "
                    "the next update will recreate it"
                )
                raise
            logger.info(f"Replaced {ADDRESS_TYPE} record {fqdn}: {existing.value} -> {ip}")
            return True
