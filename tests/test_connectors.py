"""
Tests for the public-record connectors.

Each connector is invoked directly against httpx.MockTransport so the request
shape and the normalised result can both be checked.
"""
import asyncio

import httpx

from prospect_intel.services.connectors import ConnectorRegistry
from prospect_intel.services.connectors.county_assessor import (
    CountyAssessorConnector,
    resolve_county,
)
from prospect_intel.services.connectors.exa_websets import ExaWebsetsConnector
from prospect_intel.services.connectors.fec import FECConnector
from prospect_intel.services.connectors.propublica import ProPublicaConnector
from prospect_intel.services.connectors.sec_edgar import SECEdgarConnector
from prospect_intel.services.connectors.wikidata import WikidataConnector
from tests.fixtures.provider_payloads import (
    FEC_SCHEDULE_A,
    MIAMI_DADE_ROWS,
    PROPUBLICA_SEARCH,
    SEC_EFTS,
    counting_handler,
    mock_http_client,
)


def _invoke(connector, handler, operation, params, credential=None):
    async def go():
        async with mock_http_client(handler) as client:
            return await connector.invoke(client, operation, params, credential)

    return asyncio.run(go())


class TestFEC:
    """OpenFEC Schedule A contributions."""

    def test_aggregates_contributions(self):
        """Totals, recipients and party counts are derived from the rows."""
        handler, calls = counting_handler(httpx.Response(200, json=FEC_SCHEDULE_A))
        result = _invoke(
            FECConnector(), handler, "contributions", {"contributor_name": "Jane Smith", "state": "fl"}, "k"
        )

        assert result["contribution_count"] == 3
        assert result["total_amount"] == 4300.5
        assert result["recipients"] == ["FRIENDS OF JANE SMITH", "SENATE MAJORITY FUND"]
        assert result["party_counts"] == {"DEM": 2, "REP": 1}
        assert result["contributions"][0]["employer"] == "ACME ROBOTICS"

        params = calls[0].url.params
        assert calls[0].url.path.endswith("/schedules/schedule_a/")
        assert params["contributor_state"] == "FL"
        assert params["sort"] == "-contribution_receipt_date"

    def test_blank_name_makes_no_request(self):
        """No contributor name means no lookup."""
        handler, calls = counting_handler(httpx.Response(200, json=FEC_SCHEDULE_A))
        assert _invoke(FECConnector(), handler, "contributions", {"contributor_name": " "}, "k") == {}
        assert calls == []


class TestProPublica:
    """Nonprofit Explorer search."""

    def test_maps_organizations(self):
        """Organizations carry EIN and a profile URL."""
        handler, calls = counting_handler(httpx.Response(200, json=PROPUBLICA_SEARCH))
        result = _invoke(ProPublicaConnector(), handler, "search_organizations", {"query": "Smith", "state": "FL"})

        assert result["total_results"] == 2
        first = result["organizations"][0]
        assert first["ein"] == "12-3456789"
        assert first["url"] == "https://projects.propublica.org/nonprofits/organizations/123456789"
        assert calls[0].url.params["state[id]"] == "FL"

    def test_404_means_no_results(self):
        """A 404 search is an empty result, not an error."""
        handler, _ = counting_handler(httpx.Response(404))
        result = _invoke(ProPublicaConnector(), handler, "search_organizations", {"query": "Nobody"})
        assert result == {"organizations": [], "total_results": 0}


class TestCountyAssessor:
    """Socrata assessor datasets."""

    def test_resolve_county(self):
        """County names and states resolve to dataset keys."""
        assert resolve_county("Miami-Dade County", "FL") == "miami-dade-fl"
        assert resolve_county("St. Johns", "fl") == "st-johns-fl"
        assert resolve_county("Cook County", "IL") is None
        assert resolve_county(None, "FL") is None

    def test_owner_search(self):
        """Every name token is required in the owner field."""
        handler, calls = counting_handler(httpx.Response(200, json=MIAMI_DADE_ROWS))
        result = _invoke(
            CountyAssessorConnector(),
            handler,
            "search_owner",
            {"owner_name": "Jane Smith", "county_key": "miami-dade-fl"},
        )

        where = calls[0].url.params["$where"]
        assert "upper(owner1) like '%JANE%'" in where
        assert "upper(owner1) like '%SMITH%'" in where
        assert result["county"] == "Miami-Dade County"
        assert result["property_count"] == 2
        # market value preferred, assessed value when market is missing
        assert result["total_assessed_value"] == 1_500_000
        assert result["properties"][0]["parcel_id"] == "01-0000-000-0001"

    def test_unknown_county_returns_empty(self):
        """Unsupported datasets make no request."""
        handler, calls = counting_handler(httpx.Response(200, json=[]))
        result = _invoke(
            CountyAssessorConnector(), handler, "search_owner", {"owner_name": "Jane", "county_key": "nowhere"}
        )
        assert result == {}
        assert calls == []

    def test_quotes_escaped(self):
        """Apostrophes in names are escaped for SoQL."""
        handler, calls = counting_handler(httpx.Response(200, json=[]))
        _invoke(
            CountyAssessorConnector(),
            handler,
            "search_owner",
            {"owner_name": "Pat O'Brien", "county_key": "miami-dade-fl"},
        )
        assert "'%O''BRIEN%'" in calls[0].url.params["$where"]


class TestSECEdgar:
    """EDGAR full-text search for insider forms."""

    def test_issuers_exclude_reporting_person(self):
        """Issuer companies are extracted; the filer's own name is skipped."""
        handler, calls = counting_handler(httpx.Response(200, json=SEC_EFTS))
        result = _invoke(SECEdgarConnector(), handler, "insider_filings", {"person_name": "Jane Smith"})

        assert result["filing_count"] == 2
        assert result["companies"] == [{"name": "Acme Robotics Inc.", "ticker": "ACME"}]
        assert result["filings"][0]["url"] == (
            "https://www.sec.gov/Archives/edgar/data/1111111/000111111124000001/"
        )
        assert calls[0].url.params["forms"] == "3,4,5"


class TestWikidata:
    """Wikidata person lookup."""

    def test_person_profile(self):
        """Search hit, entity claims and labels are combined."""

        def handler(request):
            params = request.url.params
            if params["action"] == "wbsearchentities":
                return httpx.Response(200, json={"search": [{"id": "Q42", "label": "Jane Smith"}]})
            if "claims" in params.get("props", ""):
                return httpx.Response(
                    200,
                    json={
                        "entities": {
                            "Q42": {
                                "labels": {"en": {"value": "Jane Smith"}},
                                "descriptions": {"en": {"value": "American roboticist"}},
                                "claims": {
                                    "P569": [{"mainsnak": {"datavalue": {"value": {"time": "+1970-01-02T00:00:00Z"}}}}],
                                    "P108": [{"mainsnak": {"datavalue": {"value": {"id": "Q1"}}}}],
                                    "P69": [{"mainsnak": {"datavalue": {"value": {"id": "Q2"}}}}],
                                },
                            }
                        }
                    },
                )
            return httpx.Response(
                200,
                json={
                    "entities": {
                        "Q1": {"labels": {"en": {"value": "Acme Robotics"}}},
                        "Q2": {"labels": {"en": {"value": "Stanford University"}}},
                    }
                },
            )

        result = _invoke(WikidataConnector(), handler, "person_profile", {"name": "Jane Smith"})
        assert result["entity_id"] == "Q42"
        assert result["birth_year"] == 1970
        assert result["employers"] == ["Acme Robotics"]
        assert result["education"] == ["Stanford University"]
        assert result["occupations"] == []
        assert result["url"] == "https://www.wikidata.org/wiki/Q42"

    def test_no_hits(self):
        """No search hits is an empty result."""
        handler, _ = counting_handler(httpx.Response(200, json={"search": []}))
        assert _invoke(WikidataConnector(), handler, "person_profile", {"name": "Nobody"}) == {}


class TestRegistry:
    """ConnectorRegistry lookup."""

    def test_default_registry(self):
        """All providers are registered and discovery is found by type."""
        registry = ConnectorRegistry()
        assert set(registry.names()) == {
            "exa_websets",
            "fec",
            "propublica",
            "wikidata",
            "sec_edgar",
            "county_assessor",
        }
        assert isinstance(registry.discovery(), ExaWebsetsConnector)
        assert "fec" in registry
        assert registry.get("nope") is None

    def test_registry_without_discovery(self):
        """A registry may omit the discovery provider."""
        registry = ConnectorRegistry([FECConnector()])
        assert registry.discovery() is None
        assert registry["fec"].name == "fec"
