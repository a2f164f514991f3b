# Overview: Synchronous httpx client for the registry (seed-to-sale) REST API.

"""
Registry API client.

One client is bound to one set of credentials and, for facility-scoped
endpoints, one license number. Every request carries a bounded timeout and
is attempted exactly once: retry policy belongs to the caller.

Records are returned as plain dicts using the registry's field names
(PascalCase), list endpoints accept both the paged v2 envelope
({"Data": [...], "Total": n, ...}) and bare arrays.
"""

from __future__ import annotations

import base64
import logging
import time

import httpx

from .errors import RegistryApiError, RegistryError, RegistryTimeoutError, RegistryTransportError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

TAG_TYPE_PLANT = "Plant"
TAG_TYPE_PACKAGE = "Package"

_LIMITS = httpx.Limits(
    max_connections=10,
    max_keepalive_connections=5,
    keepalive_expiry=30,
)


def build_basic_auth(vendor_key: str, user_key: str) -> str:
    token = base64.b64encode(f"{vendor_key}:{user_key}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def _error_message(response: httpx.Response) -> str:
    """Extract the registry's message from an error body, falling back to the status text."""
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or response.reason_phrase or f"HTTP {response.status_code}"

    if isinstance(body, dict):
        for key in ("Message", "message", "error"):
            if body.get(key):
                return str(body[key])
    if isinstance(body, list) and body:
        # Validation failures come back as [{"row": 0, "message": "..."}]
        messages = [str(entry.get("message") or entry.get("Message")) for entry in body if isinstance(entry, dict)]
        messages = [m for m in messages if m and m != "None"]
        if messages:
            return "; ".join(messages)
    return response.reason_phrase or f"HTTP {response.status_code}"


class RegistryClient:
    """Thin typed wrapper over the registry v2 endpoints."""

    def __init__(
        self,
        *,
        vendor_key: str,
        user_key: str,
        base_url: str,
        license_number: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ):
        self.license_number = license_number
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0)),
            limits=_LIMITS,
            follow_redirects=False,
            headers={
                "Authorization": build_basic_auth(vendor_key, user_key),
                "Accept": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # -- transport --

    def request(self, method: str, path: str, *, params: dict | None = None, json=None):
        started = time.monotonic()
        try:
            response = self._http.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            log.warning("Registry %s %s timed out after %.1fs", method, path, self.timeout)
            raise RegistryTimeoutError(f"Registry request timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            log.warning("Registry %s %s failed: %s", method, path, e)
            raise RegistryTransportError(f"Network error contacting registry: {e}") from e

        elapsed_ms = (time.monotonic() - started) * 1000
        log.debug("Registry %s %s -> %s (%.0fms)", method, path, response.status_code, elapsed_ms)

        if response.status_code == 401:
            raise RegistryApiError("Invalid API key", status_code=401)
        if response.status_code >= 400:
            raise RegistryApiError(_error_message(response), status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise RegistryApiError("Registry returned a non-JSON response", status_code=response.status_code) from e

    def request_list(self, path: str, *, params: dict | None = None) -> list[dict]:
        body = self.request("GET", path, params=params)
        if body is None:
            return []
        if isinstance(body, list):
            return body
        if isinstance(body, dict) and isinstance(body.get("Data"), list):
            return body["Data"]
        raise RegistryApiError("Unexpected list response shape from registry", status_code=200)

    def _facility_params(self, **extra) -> dict:
        if not self.license_number:
            raise RegistryError("Client is not bound to a facility license")
        params = {"licenseNumber": self.license_number}
        params.update({k: v for k, v in extra.items() if v is not None})
        return params

    # -- facilities --

    def list_facilities(self) -> list[dict]:
        return self.request_list("/facilities/v2/")

    def validate_credentials(self) -> list[dict]:
        """Cheapest authenticated call; returns the visible facilities."""
        return self.list_facilities()

    # -- items --

    def list_items(self, *, last_modified_start: str | None = None, last_modified_end: str | None = None) -> list[dict]:
        return self.request_list(
            "/items/v2/active",
            params=self._facility_params(
                lastModifiedStart=last_modified_start,
                lastModifiedEnd=last_modified_end,
            ),
        )

    def list_item_categories(self) -> list[dict]:
        return self.request_list("/items/v2/categories", params=self._facility_params())

    # -- strains --

    def list_strains(self, *, active: bool = True) -> list[dict]:
        path = "/strains/v2/active" if active else "/strains/v2/inactive"
        return self.request_list(path, params=self._facility_params())

    # -- tags --

    def list_tags(self, tag_type: str) -> list[dict]:
        if tag_type == TAG_TYPE_PLANT:
            path = "/tags/v2/plant/available"
        elif tag_type == TAG_TYPE_PACKAGE:
            path = "/tags/v2/package/available"
        else:
            raise ValueError(f"Unknown tag type: {tag_type}")
        return self.request_list(path, params=self._facility_params())

    # -- plant batches --

    def list_plant_batches(
        self,
        *,
        active: bool = True,
        last_modified_start: str | None = None,
        last_modified_end: str | None = None,
    ) -> list[dict]:
        path = "/plantbatches/v2/active" if active else "/plantbatches/v2/inactive"
        return self.request_list(
            path,
            params=self._facility_params(
                lastModifiedStart=last_modified_start,
                lastModifiedEnd=last_modified_end,
            ),
        )

    def create_plant_batches(self, batches: list[dict]):
        """batches: [{"Name", "Type", "Count", "Strain", "Location", "ActualDate", "SourcePackage"?, "SourcePlants"?}]"""
        return self.request("POST", "/plantbatches/v2/plantings", params=self._facility_params(), json=batches)

    def change_plant_batch_phase(self, changes: list[dict]):
        """changes: [{"Name", "Count", "StartingTag", "GrowthPhase", "NewLocation", "GrowthDate"}]"""
        return self.request("POST", "/plantbatches/v2/growthphase", params=self._facility_params(), json=changes)

    # -- packages --

    def create_package(self, package: dict):
        """package: {"Tag", "Item", "Quantity", "UnitOfMeasure", "PackagedDate", "Note"?}"""
        return self.request("POST", "/packages/v2/create", params=self._facility_params(), json=[package])

    def get_package_by_label(self, label: str) -> dict | None:
        try:
            return self.request("GET", f"/packages/v2/{label}", params=self._facility_params())
        except RegistryApiError as e:
            if e.status_code == 404:
                return None
            raise
