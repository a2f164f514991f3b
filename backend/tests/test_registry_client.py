# Overview: Pytest coverage for the registry HTTP client.

"""
Registry Client Tests

Drives RegistryClient through httpx.MockTransport: no network access.
"""

import base64
import json

import httpx
import pytest

from canopy.registry import (
    RegistryClient,
    RegistryApiError,
    RegistryError,
    RegistryTimeoutError,
    RegistryTransportError,
    TAG_TYPE_PLANT,
    is_transport_failure,
)


def make_client(handler, license_number="LIC-100"):
    return RegistryClient(
        vendor_key="vendor",
        user_key="user",
        base_url="https://sandbox-api-co.example.com/",
        license_number=license_number,
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )


class TestListResponses:
    """List endpoints accept both the paged envelope and bare arrays."""

    def test_envelope_response(self):
        def handler(request):
            return httpx.Response(200, json={"Data": [{"Id": 1}, {"Id": 2}], "Total": 2})

        with make_client(handler) as client:
            assert client.list_items() == [{"Id": 1}, {"Id": 2}]

    def test_bare_list_response(self):
        def handler(request):
            return httpx.Response(200, json=[{"Id": 7}])

        with make_client(handler) as client:
            assert client.list_facilities() == [{"Id": 7}]

    def test_empty_body_is_empty_list(self):
        with make_client(lambda request: httpx.Response(200)) as client:
            assert client.list_item_categories() == []

    def test_unexpected_shape_raises(self):
        def handler(request):
            return httpx.Response(200, json={"Message": "ok"})

        with make_client(handler) as client:
            with pytest.raises(RegistryApiError):
                client.list_items()


class TestRequestShape:
    """Auth header, license binding and query parameters."""

    def test_basic_auth_and_license_param(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["license"] = request.url.params.get("licenseNumber")
            seen["path"] = request.url.path
            return httpx.Response(200, json=[])

        with make_client(handler) as client:
            client.list_tags(TAG_TYPE_PLANT)

        expected = base64.b64encode(b"vendor:user").decode("ascii")
        assert seen["auth"] == f"Basic {expected}"
        assert seen["license"] == "LIC-100"
        assert seen["path"] == "/tags/v2/plant/available"

    def test_last_modified_window_passed_through(self):
        seen = {}

        def handler(request):
            seen.update(dict(request.url.params))
            return httpx.Response(200, json=[])

        with make_client(handler) as client:
            client.list_plant_batches(active=False, last_modified_start="2024-03-01", last_modified_end="2024-03-08")

        assert seen["lastModifiedStart"] == "2024-03-01"
        assert seen["lastModifiedEnd"] == "2024-03-08"

    def test_strain_endpoints(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"Data": [{"Id": 3, "Name": "Blue Dream"}]})

        with make_client(handler) as client:
            assert client.list_strains()[0]["Name"] == "Blue Dream"
            client.list_strains(active=False)

        assert paths == ["/strains/v2/active", "/strains/v2/inactive"]

    def test_plantings_body_is_a_list(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.read())
            return httpx.Response(200)

        with make_client(handler) as client:
            assert client.create_plant_batches([{"Name": "B-1", "Count": 5}]) is None

        assert seen["method"] == "POST"
        assert seen["path"] == "/plantbatches/v2/plantings"
        assert seen["body"] == [{"Name": "B-1", "Count": 5}]

    def test_facility_endpoint_requires_license(self):
        with make_client(lambda request: httpx.Response(200, json=[]), license_number=None) as client:
            with pytest.raises(RegistryError):
                client.list_items()

    def test_unknown_tag_type_rejected(self):
        with make_client(lambda request: httpx.Response(200, json=[])) as client:
            with pytest.raises(ValueError):
                client.list_tags("Seed")


class TestErrors:
    """Status codes and transport failures map to typed errors."""

    def test_401_is_invalid_api_key(self):
        with make_client(lambda request: httpx.Response(401)) as client:
            with pytest.raises(RegistryApiError) as exc:
                client.list_facilities()
        assert exc.value.message == "Invalid API key"
        assert exc.value.is_auth_error
        assert is_transport_failure(exc.value)

    def test_validation_message_returned_verbatim(self):
        def handler(request):
            return httpx.Response(400, json=[{"row": 0, "message": "Tag ABC is not available"}])

        with make_client(handler) as client:
            with pytest.raises(RegistryApiError) as exc:
                client.create_package({"Tag": "ABC"})
        assert exc.value.message == "Tag ABC is not available"
        assert exc.value.is_validation_error
        assert not is_transport_failure(exc.value)

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with make_client(handler) as client:
            with pytest.raises(RegistryTimeoutError) as exc:
                client.list_items()
        assert isinstance(exc.value, RegistryTransportError)
        assert is_transport_failure(exc.value)

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with make_client(handler) as client:
            with pytest.raises(RegistryTransportError):
                client.list_facilities()

    def test_server_error_is_transport_failure(self):
        with make_client(lambda request: httpx.Response(503, text="maintenance")) as client:
            with pytest.raises(RegistryApiError) as exc:
                client.list_facilities()
        assert exc.value.message == "maintenance"
        assert is_transport_failure(exc.value)

    def test_missing_package_returns_none(self):
        with make_client(lambda request: httpx.Response(404)) as client:
            assert client.get_package_by_label("1A4000000000000000000001") is None
