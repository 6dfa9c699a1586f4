"""Unit tests for CloudflareProvider."""

from typing import Any, Dict, Optional
from unittest.mock import MagicMock, patch

import pytest
import requests

from trafego_dns.errors import (
    NetworkError,
    ProviderAuthError,
    ProviderTimeoutError,
    RecordAlreadyExistsError,
    ZoneNotFoundError,
)
from trafego_dns.providers.cloudflare import MANAGED_COMMENT, CloudflareProvider
from trafego_dns.records import DesiredRecord, ProviderRecord

API = "https://api.cloudflare.com/client/v4"


def make_response(status: int = 200, payload: Optional[Dict[str, Any]] = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {"success": True, "result": {}}
    return response


def make_provider() -> CloudflareProvider:
    provider = CloudflareProvider("token", "example.com")
    provider.zone_id = "zone123"
    provider._initialized = True
    return provider


class TestCloudflareInit:
    """Tests for zone resolution."""

    def test_init_resolves_zone_id(self) -> None:
        """Test the zone id is looked up by name."""
        provider = CloudflareProvider("token", "example.com")

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.return_value = make_response(
                payload={"success": True, "result": [{"id": "zone123", "name": "example.com"}]}
            )

            provider.init()

            assert provider.zone_id == "zone123"
            mock_request.assert_called_once_with(
                "GET", f"{API}/zones", timeout=10.0, params={"name": "example.com"}
            )

    def test_init_zone_not_found(self) -> None:
        """Test an empty zone listing raises ZoneNotFoundError."""
        provider = CloudflareProvider("token", "example.com")

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.return_value = make_response(payload={"success": True, "result": []})

            with pytest.raises(ZoneNotFoundError):
                provider.init()

    def test_init_bad_token(self) -> None:
        """Test 403 responses raise ProviderAuthError."""
        provider = CloudflareProvider("token", "example.com")

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.return_value = make_response(
                403, {"success": False, "errors": [{"code": 9109, "message": "Invalid access token"}]}
            )

            with pytest.raises(ProviderAuthError):
                provider.init()

    def test_timeout(self) -> None:
        """Test request timeouts raise ProviderTimeoutError."""
        provider = CloudflareProvider("token", "example.com")

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.side_effect = requests.exceptions.Timeout("slow")

            with pytest.raises(ProviderTimeoutError):
                provider.init()

    def test_connection_error(self) -> None:
        """Test connection failures raise NetworkError."""
        provider = CloudflareProvider("token", "example.com")

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.side_effect = requests.exceptions.ConnectionError("refused")

            with pytest.raises(NetworkError):
                provider.init()


class TestCloudflareFetch:
    """Tests for paginated record listing."""

    def test_follows_page_numbers(self) -> None:
        """Test every page up to total_pages is fetched."""
        provider = make_provider()
        pages = [
            make_response(
                payload={
                    "success": True,
                    "result": [{"id": "1", "type": "A", "name": "a.example.com", "content": "1.2.3.4", "ttl": 1, "proxied": True}],
                    "result_info": {"page": 1, "total_pages": 2},
                }
            ),
            make_response(
                payload={
                    "success": True,
                    "result": [{"id": "2", "type": "TXT", "name": "b.example.com", "content": "hello", "ttl": 300}],
                    "result_info": {"page": 2, "total_pages": 2},
                }
            ),
        ]

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.side_effect = pages

            records = provider.fetch_all_records()

            assert [r.id for r in records] == ["1", "2"]
            assert mock_request.call_count == 2
            assert mock_request.call_args.kwargs["params"] == {"per_page": 100, "page": 2}

    def test_follows_next_page_url(self) -> None:
        """Test a next_page_url in result_info is followed."""
        provider = make_provider()
        next_url = f"{API}/zones/zone123/dns_records?page=2&per_page=100"
        pages = [
            make_response(
                payload={
                    "success": True,
                    "result": [{"id": "1", "type": "A", "name": "a.example.com", "content": "1.2.3.4"}],
                    "result_info": {"page": 1, "total_pages": 2, "next_page_url": next_url},
                }
            ),
            make_response(
                payload={
                    "success": True,
                    "result": [{"id": "2", "type": "A", "name": "b.example.com", "content": "1.2.3.5"}],
                    "result_info": {"page": 2, "total_pages": 2},
                }
            ),
        ]

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.side_effect = pages

            records = provider.fetch_all_records()

            assert len(records) == 2
            assert mock_request.call_count == 2
            assert mock_request.call_args.args == ("GET", next_url)

    def test_srv_and_caa_read_from_data(self) -> None:
        """Test structured SRV and CAA data is mapped onto the record."""
        provider = make_provider()
        srv = provider.from_wire(
            {
                "id": "s",
                "type": "SRV",
                "name": "_sip._tcp.example.com",
                "content": "1 5 5060 sip.example.com",
                "data": {"priority": 1, "weight": 5, "port": 5060, "target": "sip.example.com"},
            }
        )
        caa = provider.from_wire(
            {
                "id": "c",
                "type": "CAA",
                "name": "example.com",
                "content": '0 issue "letsencrypt.org"',
                "data": {"flags": 0, "tag": "issue", "value": "letsencrypt.org"},
            }
        )

        assert (srv.priority, srv.weight, srv.port, srv.content) == (1, 5, 5060, "sip.example.com")
        assert (caa.flags, caa.tag, caa.content) == (0, "issue", "letsencrypt.org")


class TestCloudflareMutations:
    """Tests for create, update and delete."""

    def test_create_sends_marker_and_updates_cache(self) -> None:
        """Test created records carry the ownership comment and enter the cache."""
        provider = make_provider()
        record = DesiredRecord(type="CNAME", name="app.example.com", content="example.com", ttl=1, proxied=True)
        created = {
            "id": "new1",
            "type": "CNAME",
            "name": "app.example.com",
            "content": "example.com",
            "ttl": 1,
            "proxied": True,
            "comment": MANAGED_COMMENT,
        }

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.return_value = make_response(payload={"success": True, "result": created})

            result = provider.create_record(record)

            method, url = mock_request.call_args.args
            payload = mock_request.call_args.kwargs["json"]
            assert (method, url) == ("POST", f"{API}/zones/zone123/dns_records")
            assert payload["comment"] == MANAGED_COMMENT
            assert payload["proxied"] is True
            assert result.id == "new1"
            assert provider.find_record_in_cache("CNAME", "app.example.com").id == "new1"

    def test_srv_payload(self) -> None:
        """Test SRV records are sent with a structured data block."""
        provider = make_provider()
        record = DesiredRecord(
            type="SRV", name="_sip._tcp.example.com", content="sip.example.com",
            ttl=300, priority=1, weight=5, port=5060,
        )

        payload = provider.to_wire(record)

        assert "proxied" not in payload
        assert payload["data"] == {"priority": 1, "weight": 5, "port": 5060, "target": "sip.example.com"}

    def test_update_uses_put(self) -> None:
        """Test updates replace the record by id."""
        provider = make_provider()
        record = DesiredRecord(type="A", name="a.example.com", content="5.6.7.8", ttl=1, proxied=False)
        updated = {"id": "1", "type": "A", "name": "a.example.com", "content": "5.6.7.8", "ttl": 1, "proxied": False}

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.return_value = make_response(payload={"success": True, "result": updated})

            provider.update_record("1", record)

            assert mock_request.call_args.args == ("PUT", f"{API}/zones/zone123/dns_records/1")

    def test_delete_removes_from_cache(self) -> None:
        """Test deleting a record drops it from the cache."""
        provider = make_provider()
        provider.cache.replace([ProviderRecord(id="1", type="A", name="a.example.com", content="1.2.3.4")])

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.return_value = make_response(payload={"success": True, "result": {"id": "1"}})

            provider.delete_record("1")

            assert provider.find_record_in_cache("A", "a.example.com") is None

    def test_duplicate_record_error(self) -> None:
        """Test Cloudflare's duplicate record error code is recognised."""
        provider = make_provider()
        record = DesiredRecord(type="A", name="a.example.com", content="1.2.3.4", ttl=1, proxied=False)

        with patch.object(provider._api._session, "request") as mock_request:
            mock_request.return_value = make_response(
                400, {"success": False, "errors": [{"code": 81057, "message": "Record already exists."}]}
            )

            with pytest.raises(RecordAlreadyExistsError):
                provider.create_record(record)


class TestCloudflareValidation:
    """Tests for validate_record and ownership detection."""

    def test_low_ttl_raised_to_minimum(self) -> None:
        """Test TTLs below 60 (other than automatic) are raised to 60."""
        provider = make_provider()
        record = DesiredRecord(type="A", name="a.example.com", content="1.2.3.4", ttl=30)

        provider.validate_record(record)

        assert record.ttl == 60

    def test_automatic_ttl_kept(self) -> None:
        """Test TTL 1 means automatic and is left alone."""
        provider = make_provider()
        record = DesiredRecord(type="A", name="a.example.com", content="1.2.3.4", ttl=1)

        provider.validate_record(record)

        assert record.ttl == 1

    def test_proxied_cleared_for_mx(self) -> None:
        """Test MX records can never be proxied."""
        provider = make_provider()
        record = DesiredRecord(type="MX", name="example.com", content="mail.example.com", ttl=1, proxied=True)

        provider.validate_record(record)

        assert record.proxied is False
        assert record.priority == 10

    def test_is_managed_checks_comment(self) -> None:
        """Test only records carrying the marker comment are ours."""
        provider = make_provider()

        assert provider.is_managed(ProviderRecord(id="1", type="A", name="a", comment=MANAGED_COMMENT))
        assert not provider.is_managed(ProviderRecord(id="2", type="A", name="b", comment="hand made"))

    def test_proxied_record_ttl_difference_ignored(self) -> None:
        """Test a proxied record with TTL 1 satisfies a desired TTL of 300."""
        provider = make_provider()
        existing = ProviderRecord(id="1", type="A", name="a.example.com", content="1.2.3.4", ttl=1, proxied=True)
        desired = DesiredRecord(type="A", name="a.example.com", content="1.2.3.4", ttl=300, proxied=True)

        assert provider.record_needs_update(existing, desired) is False
