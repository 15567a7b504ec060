# prospect_intel/services/connectors/county_assessor.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from .base import BaseConnector, ConnectorResult
from ...core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountyDataset:
    name: str
    state: str
    portal: str
    dataset_id: str
    owner_field: str
    address_field: str
    value_field: str
    parcel_field: Optional[str] = None
    city_field: Optional[str] = None
    market_value_field: Optional[str] = None


# Socrata SODA datasets of county property appraisers.
COUNTY_DATASETS: Dict[str, CountyDataset] = {
    "st-johns-fl": CountyDataset(
        name="St. Johns County",
        state="FL",
        portal="https://data.sjcfl.us",
        dataset_id="t5gq-xrdh",
        owner_field="owner_name",
        address_field="situs_address",
        value_field="assessed_value",
        parcel_field="parcel_id",
        city_field="situs_city",
        market_value_field="just_value",
    ),
    "miami-dade-fl": CountyDataset(
        name="Miami-Dade County",
        state="FL",
        portal="https://opendata.miamidade.gov",
        dataset_id="uf4t-2xc8",
        owner_field="owner1",
        address_field="addr1",
        value_field="assessed_val",
        parcel_field="folio",
        city_field="city",
        market_value_field="just_val",
    ),
    "hillsborough-fl": CountyDataset(
        name="Hillsborough County",
        state="FL",
        portal="https://data.hcpafl.org",
        dataset_id="9fxv-t3y4",
        owner_field="owner_name_1",
        address_field="situs_address",
        value_field="assessed_value",
        parcel_field="folio",
        city_field="situs_city",
        market_value_field="just_value",
    ),
    "los-angeles-ca": CountyDataset(
        name="Los Angeles County",
        state="CA",
        portal="https://data.lacounty.gov",
        dataset_id="9trm-uz8i",
        owner_field="owner_name",
        address_field="situs_street",
        value_field="net_taxable_value",
        parcel_field="ain",
        city_field="situs_city",
    ),
    "san-francisco-ca": CountyDataset(
        name="San Francisco County",
        state="CA",
        portal="https://data.sfgov.org",
        dataset_id="wv5m-vpq2",
        owner_field="property_owner",
        address_field="property_address",
        value_field="assessed_land_value",
        parcel_field="block_lot",
    ),
}


def resolve_county(county: Optional[str], state: Optional[str]) -> Optional[str]:
    """'Miami-Dade County', 'FL' -> 'miami-dade-fl' when the dataset is supported."""
    if not county or not state:
        return None
    slug = re.sub(r"\s+county$", "", county.strip().lower())
    slug = re.sub(r"[^a-z0-9]+", "-", slug).strip("-")
    key = f"{slug}-{state.strip().lower()}"
    return key if key in COUNTY_DATASETS else None


def _to_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(str(value).replace(",", "").replace("$", ""))
    except ValueError:
        return None


def _soql_literal(value: str) -> str:
    return value.replace("'", "''").upper()


class CountyAssessorConnector(BaseConnector):
    """
    County property appraiser records via Socrata SODA.

    Operation ``search_owner`` params: {"owner_name", "county_key"}.

    Returns:
        {
          "county": "Miami-Dade County",
          "properties": [{"parcel_id", "owner", "address", "city",
                          "assessed_value", "market_value", "url"}],
          "property_count": int,
          "total_assessed_value": float,
        }
    """

    name = "county_assessor"
    operations = ("search_owner",)
    breaker_preset = "registry"

    def __init__(self) -> None:
        self.app_token: Optional[str] = getattr(settings, "SOCRATA_APP_TOKEN", None)
        self.max_results: int = int(getattr(settings, "SOCRATA_MAX_RESULTS", 25) or 25)

    def _where_clause(self, dataset: CountyDataset, owner_name: str) -> str:
        # Assessor rolls store owners as "LAST FIRST"; require every name token.
        tokens = [t for t in re.split(r"[\s,.]+", owner_name) if len(t) > 1]
        return " AND ".join(
            f"upper({dataset.owner_field}) like '%{_soql_literal(t)}%'" for t in tokens
        )

    async def invoke(
        self,
        client: httpx.AsyncClient,
        operation: str,
        params: Dict[str, Any],
        credential: Optional[str] = None,
    ) -> ConnectorResult:
        owner_name = (params.get("owner_name") or "").strip()
        dataset = COUNTY_DATASETS.get(params.get("county_key") or "")
        if not owner_name or dataset is None:
            return ConnectorResult({})

        headers = {"accept": "application/json"}
        if self.app_token:
            headers["X-App-Token"] = self.app_token

        resource_url = f"{dataset.portal}/resource/{dataset.dataset_id}.json"
        resp = await client.get(
            resource_url,
            params={
                "$where": self._where_clause(dataset, owner_name),
                "$limit": self.max_results,
            },
            headers=headers,
        )
        resp.raise_for_status()
        rows = resp.json() or []

        properties: List[Dict[str, Any]] = []
        for row in rows:
            assessed = _to_float(row.get(dataset.value_field))
            market = _to_float(row.get(dataset.market_value_field)) if dataset.market_value_field else None
            properties.append(
                {
                    "parcel_id": row.get(dataset.parcel_field) if dataset.parcel_field else None,
                    "owner": row.get(dataset.owner_field),
                    "address": row.get(dataset.address_field),
                    "city": row.get(dataset.city_field) if dataset.city_field else None,
                    "assessed_value": assessed,
                    "market_value": market,
                    "url": f"{dataset.portal}/d/{dataset.dataset_id}",
                }
            )

        total = sum((p["market_value"] or p["assessed_value"] or 0.0) for p in properties)
        logger.info(
            "County assessor returned %d properties",
            len(properties),
            extra={"provider": self.name, "step": dataset.name},
        )
        return ConnectorResult(
            {
                "county": dataset.name,
                "properties": properties,
                "property_count": len(properties),
                "total_assessed_value": total,
            }
        )
