"""
Key-value backed site directory.

Reads the `_site:{site_id}` records the account layer writes. Used for
ownership checks on queries and origin checks on ingestion.
"""

from __future__ import annotations

from src.core.errors import ValidationError
from src.core.keys import is_valid_site_id, site_record_key
from src.core.ports.kv import KeyValueStorePort
from src.core.ports.sites import SiteRecord


def site_key(site_id: str) -> str:
    return site_record_key(site_id)


class KVSiteDirectory:
    """SiteDirectoryPort over the shared key-value store."""

    def __init__(self, store: KeyValueStorePort) -> None:
        self._store = store

    def get_site(self, site_id: str) -> SiteRecord | None:
        if not is_valid_site_id(site_id):
            return None
        data = self._store.get(site_key(site_id), as_json=True)
        if not isinstance(data, dict):
            return None
        return SiteRecord(
            site_id=site_id,
            owner_id=str(data.get("owner_id", "")),
            domain=str(data.get("domain", "")),
        )

    def register(self, site_id: str, owner_id: str, domain: str) -> SiteRecord:
        """Write a site record (account layer / seeding / tests)."""
        if not is_valid_site_id(site_id):
            raise ValidationError(
                "Site ID must be letters, digits, '.', '_' or '-', starting with a letter or digit",
                code="invalid_site_id",
                field_name="siteId",
            )
        self._store.set_json(
            site_key(site_id),
            {"id": site_id, "owner_id": owner_id, "domain": domain},
        )
        return SiteRecord(site_id=site_id, owner_id=owner_id, domain=domain)
