"""REST client for the dashboard's location and coverage-area endpoints."""

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from coverage_engine.core.errors import FetchFailedError, IntegrityViolationError, NotFoundError
from coverage_engine.schemas.coverage_area import (
    CoverageArea,
    CoverageAreaCreate,
    CoverageAreaUpdate,
    UserCoverageAssignment,
)
from coverage_engine.schemas.location import LocationCreate, LocationNode, LocationType, LocationUpdate
from coverage_engine.services.datasource.adapter import (
    coverage_area_payload,
    flatten_location_payload,
    location_create_payload,
    location_update_payload,
    normalize_assignment,
    normalize_coverage_area,
    normalize_coverage_area_list,
    normalize_location,
)
from coverage_engine.services.datasource.base import LocationDataSource

logger = logging.getLogger(__name__)


class RestLocationDataSource(LocationDataSource):
    """Client for the dashboard backend (JSON over HTTP, ``{success, data}`` envelopes)."""

    name = "rest"

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the REST data source.

        Args:
            base_url: Backend root URL (without the ``/api`` prefix)
            token: Optional bearer token sent with every request
            timeout: Request timeout in seconds
            max_retries: Maximum number of retry attempts for transient errors
            retry_backoff: Backoff factor between retries
            session: Optional pre-configured session (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        if session is None:
            # Configure session with retry strategy
            session = requests.Session()
            retry_strategy = Retry(
                total=max_retries,
                backoff_factor=retry_backoff,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["GET", "PUT", "DELETE"],
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        self.session = session
        self.session.headers.update({"Accept": "application/json", "User-Agent": "coverage-engine/1.0"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Send a request and unwrap the response envelope.

        Returns:
            The ``data`` member of the envelope (None when absent)

        Raises:
            NotFoundError: On HTTP 404
            IntegrityViolationError: On HTTP 409 (backend refused a dependent delete)
            FetchFailedError: On any other transport or backend failure
        """
        url = f"{self.base_url}{path}"
        if params:
            params = {key: value for key, value in params.items() if value is not None}
        try:
            response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning(f"{method} {url} failed: {str(e)}")
            raise FetchFailedError(f"Request to {path} failed: {str(e)}") from e

        if response.status_code == 404:
            raise NotFoundError("Resource", path.rsplit("/", 1)[-1])
        if response.status_code == 409:
            raise IntegrityViolationError(self._message(response) or f"Backend refused {method} {path}")
        if response.status_code >= 400:
            message = self._message(response) or f"HTTP {response.status_code}"
            logger.warning(f"{method} {url} returned {response.status_code}: {message}")
            raise FetchFailedError(f"{method} {path} failed: {message}")

        if response.status_code == 204 or not response.content:
            return None
        try:
            body = response.json()
        except ValueError as e:
            raise FetchFailedError(f"Invalid JSON from {path}") from e

        if isinstance(body, dict) and "success" in body:
            if not body["success"]:
                raise FetchFailedError(body.get("message") or f"{method} {path} was not successful")
            return body.get("data")
        return body

    @staticmethod
    def _message(response: requests.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            return body.get("message") or body.get("detail")
        return None

    @staticmethod
    def _bool(value: Optional[bool]) -> Optional[str]:
        return None if value is None else str(value).lower()

    # Locations

    def list_locations(
        self,
        type: Optional[LocationType] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[LocationNode]:
        data = self._request(
            "GET",
            "/api/locations",
            params={
                "type": type.value if type is not None else None,
                "isActive": self._bool(is_active),
                "search": search or None,
            },
        )
        return flatten_location_payload(data)

    def get_location_tree(self, include_inactive: bool = False) -> List[LocationNode]:
        data = self._request(
            "GET", "/api/locations/tree", params={"includeInactive": self._bool(include_inactive)}
        )
        return flatten_location_payload(data)

    def get_children(self, parent_id: str) -> List[LocationNode]:
        data = self._request("GET", f"/api/locations/lazy-children/{parent_id}")
        return [normalize_location(raw, parent_id=parent_id) for raw in (data or [])]

    def get_location(self, location_id: str) -> LocationNode:
        data = self._request("GET", f"/api/locations/{location_id}")
        if not data:
            raise NotFoundError("Location", location_id)
        return normalize_location(data)

    def create_location(self, payload: LocationCreate) -> LocationNode:
        data = self._request("POST", "/api/locations", json=location_create_payload(payload))
        logger.info(f"Created location {payload.name} ({payload.type.value})")
        return normalize_location(data)

    def update_location(self, location_id: str, payload: LocationUpdate) -> LocationNode:
        data = self._request("PUT", f"/api/locations/{location_id}", json=location_update_payload(payload))
        return normalize_location(data)

    def delete_location(self, location_id: str) -> None:
        self._request("DELETE", f"/api/locations/{location_id}")
        logger.info(f"Deleted location {location_id}")

    # Coverage areas

    def list_coverage_areas(
        self,
        geographic_unit_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> List[CoverageArea]:
        if geographic_unit_id is not None:
            data = self._request("GET", f"/api/geographic-units/{geographic_unit_id}/coverage-areas")
            areas = normalize_coverage_area_list(data)
            # The per-unit endpoint takes no filters
            return [
                area for area in areas
                if (is_active is None or area.is_active == is_active)
                and (organization_id is None or area.organization_id == organization_id)
            ]

        data = self._request(
            "GET",
            "/api/coverage-areas",
            params={"organizationId": organization_id, "isActive": self._bool(is_active)},
        )
        return normalize_coverage_area_list(data)

    def get_coverage_area(self, coverage_area_id: str) -> CoverageArea:
        data = self._request("GET", f"/api/coverage-areas/{coverage_area_id}")
        if not data:
            raise NotFoundError("CoverageArea", coverage_area_id)
        return normalize_coverage_area(data)

    def create_coverage_area(self, payload: CoverageAreaCreate) -> CoverageArea:
        data = self._request("POST", "/api/coverage-areas", json=coverage_area_payload(payload))
        logger.info(f"Created coverage area {payload.name} with {len(payload.geographic_unit_ids)} units")
        return normalize_coverage_area(data)

    def update_coverage_area(self, coverage_area_id: str, payload: CoverageAreaUpdate) -> CoverageArea:
        data = self._request(
            "PUT", f"/api/coverage-areas/{coverage_area_id}", json=coverage_area_payload(payload)
        )
        return normalize_coverage_area(data)

    def delete_coverage_area(self, coverage_area_id: str) -> None:
        self._request("DELETE", f"/api/coverage-areas/{coverage_area_id}")
        logger.info(f"Deleted coverage area {coverage_area_id}")

    def get_coverage_area_users(self, coverage_area_id: str) -> List[UserCoverageAssignment]:
        data = self._request("GET", f"/api/coverage-areas/{coverage_area_id}/users")
        return [normalize_assignment(raw) for raw in (data or [])]
