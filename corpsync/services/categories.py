"""
Catalog of the corporation data categories the engine knows how to sync.

Each category is pass-through configuration: where to fetch it, which
scopes the token needs, which fields must be present, and how to derive a
stable record key. Payload contents are stored as-is.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from corpsync.errors import ValidationError
from corpsync.schemas.sync import SyncProcessDescriptor

DEFAULT_INTERVAL_MINUTES = 1440  # ESI data is cached server-side for hours; daily is plenty


class CategorySpec:
    """How one category maps from ESI to stored rows."""

    def __init__(
        self,
        name: str,
        label: str,
        path: str,
        required_scopes: Sequence[str],
        required_fields: Sequence[str],
        key_fields: Sequence[str] = (),
        scalar_field: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        default_interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
    ):
        self.name = name
        self.label = label
        self.path = path
        self.required_scopes = tuple(required_scopes)
        self.required_fields = tuple(required_fields)
        self.key_fields = tuple(key_fields)
        self.scalar_field = scalar_field
        self.params = dict(params or {})
        self.default_interval_minutes = default_interval_minutes

    def path_for(self, tenant_id: int) -> str:
        return self.path.format(corporation_id=tenant_id)

    def transform(self, items: Iterable[Any]) -> List[Tuple[str, Dict[str, Any]]]:
        """Map raw ESI items to ``(record_key, payload)`` rows.

        Raises:
            ValidationError: an item is not an object or lacks a required field.
        """
        rows = []
        for index, item in enumerate(items):
            if not isinstance(item, dict):
                if self.scalar_field is None or not isinstance(item, (int, str)):
                    raise ValidationError(
                        f"{self.name} item #{index} is {type(item).__name__}, expected an object"
                    )
                item = {self.scalar_field: item}

            missing = [f for f in self.required_fields if item.get(f) is None]
            if missing:
                raise ValidationError(
                    f"{self.name} item #{index} is missing required field(s): {', '.join(missing)}"
                )

            if self.key_fields:
                key = ":".join(str(item[f]) for f in self.key_fields)
            else:
                key = str(index)
            rows.append((key, item))
        return rows


CATEGORIES: Dict[str, CategorySpec] = {
    spec.name: spec
    for spec in (
        CategorySpec(
            name="members",
            label="Corporation Members",
            path="/corporations/{corporation_id}/members/",
            required_scopes=["esi-corporations.read_corporation_membership.v1"],
            required_fields=["character_id"],
            key_fields=["character_id"],
            scalar_field="character_id",
        ),
        CategorySpec(
            name="assets",
            label="Corporation Assets",
            path="/corporations/{corporation_id}/assets/",
            required_scopes=["esi-assets.read_corporation_assets.v1"],
            required_fields=["item_id", "type_id", "location_id", "quantity"],
            key_fields=["item_id"],
        ),
        CategorySpec(
            name="industry_jobs",
            label="Industry Jobs",
            path="/corporations/{corporation_id}/industry/jobs/",
            required_scopes=["esi-industry.read_corporation_jobs.v1"],
            required_fields=["job_id", "blueprint_type_id", "activity_id", "status"],
            key_fields=["job_id"],
            params={"include_completed": "true"},
        ),
        CategorySpec(
            name="market_orders",
            label="Market Orders",
            path="/corporations/{corporation_id}/orders/",
            required_scopes=["esi-markets.read_corporation_orders.v1"],
            required_fields=["order_id", "type_id", "price", "volume_remain"],
            key_fields=["order_id"],
        ),
        CategorySpec(
            name="wallet_transactions",
            label="Wallet Transactions",
            path="/corporations/{corporation_id}/wallets/1/transactions/",
            required_scopes=["esi-wallet.read_corporation_wallets.v1"],
            required_fields=["transaction_id", "type_id", "quantity", "unit_price", "date"],
            key_fields=["transaction_id"],
        ),
        CategorySpec(
            name="mining_observers",
            label="Mining Observers",
            path="/corporation/{corporation_id}/mining/observers/",
            required_scopes=["esi-industry.read_corporation_mining.v1"],
            required_fields=["observer_id", "observer_type", "last_updated"],
            key_fields=["observer_id"],
        ),
        CategorySpec(
            name="container_logs",
            label="Container Logs",
            path="/corporations/{corporation_id}/containers/logs/",
            required_scopes=["esi-corporations.read_container_logs.v1"],
            required_fields=["container_id", "logged_at", "action", "character_id"],
            key_fields=["container_id", "logged_at", "character_id", "action"],
        ),
        CategorySpec(
            name="contracts",
            label="Corporation Contracts",
            path="/corporations/{corporation_id}/contracts/",
            required_scopes=["esi-contracts.read_corporation_contracts.v1"],
            required_fields=["contract_id", "type", "status", "date_issued"],
            key_fields=["contract_id"],
        ),
    )
}


def get_category(name: str) -> CategorySpec:
    spec = CATEGORIES.get(name)
    if spec is None:
        raise ValidationError(f"Unknown data category: {name}")
    return spec


def default_descriptors(tenant_id: Optional[int] = None) -> List[SyncProcessDescriptor]:
    """One descriptor per known category, using the catalog's default interval and scopes."""
    return [
        SyncProcessDescriptor(
            id=spec.name,
            label=spec.label,
            category=spec.name,
            tenant_id=tenant_id,
            interval_minutes=spec.default_interval_minutes,
            required_scopes=set(spec.required_scopes),
        )
        for spec in CATEGORIES.values()
    ]
