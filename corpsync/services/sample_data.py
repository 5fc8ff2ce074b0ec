"""
ESI-shaped sample rows shown on a fresh install, before any real data source
has ever been configured. Field names match the ESI responses for each category.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List

SAMPLE_CORPORATION_ID = 98000001

_SAMPLES: Dict[str, List[Dict[str, Any]]] = {
    "members": [
        {"character_id": 90000001},
        {"character_id": 90000002},
        {"character_id": 90000003},
    ],
    "assets": [
        {
            "item_id": 1000000001,
            "type_id": 34,
            "location_id": 60003760,
            "location_flag": "CorpSAG1",
            "location_type": "station",
            "quantity": 2500000,
            "is_singleton": False,
        },
        {
            "item_id": 1000000002,
            "type_id": 35,
            "location_id": 60003760,
            "location_flag": "CorpSAG1",
            "location_type": "station",
            "quantity": 640000,
            "is_singleton": False,
        },
        {
            "item_id": 1000000003,
            "type_id": 587,
            "location_id": 60003760,
            "location_flag": "CorpSAG2",
            "location_type": "station",
            "quantity": 1,
            "is_singleton": True,
        },
    ],
    "industry_jobs": [
        {
            "job_id": 500000001,
            "installer_id": 90000001,
            "facility_id": 60003760,
            "location_id": 60003760,
            "activity_id": 1,
            "blueprint_id": 1000000101,
            "blueprint_type_id": 688,
            "product_type_id": 587,
            "runs": 10,
            "status": "active",
            "start_date": "2024-01-01T00:00:00Z",
            "end_date": "2024-01-02T00:00:00Z",
            "duration": 86400,
        },
        {
            "job_id": 500000002,
            "installer_id": 90000002,
            "facility_id": 60003760,
            "location_id": 60003760,
            "activity_id": 3,
            "blueprint_id": 1000000102,
            "blueprint_type_id": 689,
            "runs": 5,
            "status": "delivered",
            "start_date": "2023-12-28T00:00:00Z",
            "end_date": "2023-12-30T00:00:00Z",
            "duration": 172800,
        },
    ],
    "market_orders": [
        {
            "order_id": 6000000001,
            "type_id": 34,
            "location_id": 60003760,
            "region_id": 10000002,
            "price": 5.25,
            "volume_total": 1000000,
            "volume_remain": 750000,
            "is_buy_order": False,
            "issued": "2024-01-01T12:00:00Z",
            "duration": 90,
            "range": "region",
            "wallet_division": 1,
        },
        {
            "order_id": 6000000002,
            "type_id": 35,
            "location_id": 60003760,
            "region_id": 10000002,
            "price": 11.8,
            "volume_total": 500000,
            "volume_remain": 500000,
            "is_buy_order": True,
            "issued": "2024-01-01T13:00:00Z",
            "duration": 30,
            "range": "station",
            "wallet_division": 1,
        },
    ],
    "wallet_transactions": [
        {
            "transaction_id": 7000000001,
            "client_id": 90000003,
            "date": "2024-01-01T14:00:00Z",
            "is_buy": False,
            "journal_ref_id": 8000000001,
            "location_id": 60003760,
            "quantity": 1,
            "type_id": 587,
            "unit_price": 350000.0,
        },
        {
            "transaction_id": 7000000002,
            "client_id": 90000002,
            "date": "2024-01-01T15:30:00Z",
            "is_buy": True,
            "journal_ref_id": 8000000002,
            "location_id": 60003760,
            "quantity": 100000,
            "type_id": 34,
            "unit_price": 5.1,
        },
    ],
    "mining_observers": [
        {
            "observer_id": 1020000000001,
            "observer_type": "structure",
            "last_updated": "2024-01-01",
        },
    ],
    "container_logs": [
        {
            "container_id": 1000000201,
            "container_type_id": 17366,
            "character_id": 90000001,
            "location_id": 60003760,
            "location_flag": "CorpSAG1",
            "logged_at": "2024-01-01T16:00:00Z",
            "action": "add",
            "type_id": 34,
            "quantity": 1000,
        },
    ],
    "contracts": [
        {
            "contract_id": 9000000001,
            "issuer_id": 90000001,
            "issuer_corporation_id": SAMPLE_CORPORATION_ID,
            "assignee_id": SAMPLE_CORPORATION_ID,
            "acceptor_id": 0,
            "type": "item_exchange",
            "status": "outstanding",
            "availability": "corporation",
            "date_issued": "2024-01-01T10:00:00Z",
            "date_expired": "2024-01-15T10:00:00Z",
            "for_corporation": True,
            "price": 1500000.0,
        },
    ],
}


def sample_rows(category: str) -> List[Dict[str, Any]]:
    """Sample payloads for ``category``; a fresh copy every call."""
    return copy.deepcopy(_SAMPLES.get(category, []))


def sample_categories() -> List[str]:
    return list(_SAMPLES)
