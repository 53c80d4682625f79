"""
REST client repository for a remote compliance backend.

Talks JSON to the backend's /api routes using requests. The backend speaks
camelCase keys and status codes (COMPLIANT, NON_COMPLIANT, ...); this module
converts both directions so the engine only ever sees gaplens models.

Error mapping:
    connection error / timeout / 5xx / 429  -> TransientIOError
    401 / 403                                -> BackendAuthenticationError
    404                                      -> UnknownEntityError
    409                                      -> ConflictingWriteError
    other 4xx                                -> requests.HTTPError

Reads are retried with exponential backoff on TransientIOError. Writes are
never retried: a failed write is reported to the caller, which restores its
optimistic snapshot and keeps the edit for resubmission.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from gaplens.errors import (
    ConflictingWriteError,
    EngineError,
    TransientIOError,
    UnknownEntityError,
)
from gaplens.storage.models import (
    Assessment,
    AssessmentStatus,
    BaselineEntry,
    CapabilityCentre,
    Framework,
    Product,
    RiskLevel,
    System,
)
from gaplens.storage.repository import ComplianceRepository

logger = logging.getLogger(__name__)


class BackendAuthenticationError(EngineError):
    """Raised when the backend rejects the configured credentials."""

    pass


# -----------------------------------------------------------------------------
# Wire conversion
# -----------------------------------------------------------------------------


def _system_from_api(data: dict[str, Any], product_id: str | None = None) -> System:
    return System(
        id=str(data["id"]),
        name=data.get("name", str(data["id"])),
        product_id=str(data.get("productId") or product_id or ""),
        criticality=str(data.get("criticality") or "MEDIUM").upper(),
        environment=str(data.get("environment") or "PRODUCTION").upper(),
        data_classification=str(data.get("dataClassification") or "INTERNAL").upper(),
    )


def _system_to_api(system: System) -> dict[str, Any]:
    return {
        "id": system.id,
        "name": system.name,
        "productId": system.product_id,
        "criticality": system.criticality,
        "environment": system.environment,
        "dataClassification": system.data_classification,
    }


def _product_from_api(data: dict[str, Any], framework_id: str | None = None) -> Product:
    product_id = str(data["id"])
    return Product(
        id=product_id,
        name=data.get("name", product_id),
        framework_id=str(data.get("frameworkId") or framework_id or ""),
        systems=tuple(_system_from_api(s, product_id) for s in data.get("systems", [])),
    )


def _framework_from_api(data: dict[str, Any], centre_id: str | None = None) -> Framework:
    framework_id = str(data["id"])
    return Framework(
        id=framework_id,
        name=data.get("name", framework_id),
        capability_centre_id=str(data.get("capabilityCentreId") or centre_id or ""),
        products=tuple(
            _product_from_api(p, framework_id) for p in data.get("products", [])
        ),
    )


def _centre_from_api(data: dict[str, Any]) -> CapabilityCentre:
    centre_id = str(data["id"])
    return CapabilityCentre(
        id=centre_id,
        name=data.get("name", centre_id),
        frameworks=tuple(
            _framework_from_api(f, centre_id) for f in data.get("frameworks", [])
        ),
    )


def _baseline_from_api(data: dict[str, Any], product_id: str) -> BaselineEntry:
    return BaselineEntry.from_dict(
        {
            "control_id": data["subcategoryId"],
            "applicable": data.get("applicable", True),
            "priority": data.get("categoryLevel"),
            "justification": data.get("justification"),
        },
        product_id,
    )


def _baseline_to_api(entry: BaselineEntry) -> dict[str, Any]:
    return {
        "subcategoryId": entry.control_id,
        "applicable": entry.applicable,
        "categoryLevel": entry.priority.value,
        "justification": entry.justification,
    }


def _assessment_from_api(data: dict[str, Any]) -> Assessment:
    return Assessment.from_dict(
        {
            "id": data["id"],
            "system_id": data["systemId"],
            "control_id": data["subcategoryId"],
            "status": data.get("status"),
            "risk_level": data.get("riskLevel"),
            "notes": data.get("details"),
            "evidence": data.get("evidence"),
            "remediation_plan": data.get("remediationPlan"),
            "assessed_date": data.get("assessedDate"),
            "updated_at": data.get("updatedAt"),
            "version": data.get("version", 1),
        }
    )


_PATCH_KEYS = {
    "status": "status",
    "risk_level": "riskLevel",
    "notes": "details",
    "evidence": "evidence",
    "remediation_plan": "remediationPlan",
    "assessed_date": "assessedDate",
}


def _patch_to_api(patch: dict[str, Any]) -> dict[str, Any]:
    body: dict[str, Any] = {}
    for key, value in patch.items():
        if key == "status":
            value = AssessmentStatus.parse(value).backend_code
        elif key == "risk_level":
            level = RiskLevel.parse(value)
            value = level.value.upper() if level else None
        elif key == "assessed_date" and value is not None and not isinstance(value, str):
            value = value.isoformat()
        body[_PATCH_KEYS[key]] = value
    return body


def _assessment_to_api(assessment: Assessment) -> dict[str, Any]:
    body = _patch_to_api(
        {
            "status": assessment.status,
            "risk_level": assessment.risk_level,
            "notes": assessment.notes,
            "evidence": assessment.evidence,
            "remediation_plan": assessment.remediation_plan,
            "assessed_date": assessment.assessed_date,
        }
    )
    body.update(
        {
            "id": assessment.id,
            "systemId": assessment.system_id,
            "subcategoryId": assessment.control_id,
        }
    )
    return body


def _unwrap(payload: Any, key: str = "data") -> Any:
    if isinstance(payload, dict) and key in payload:
        return payload[key]
    return payload


# -----------------------------------------------------------------------------
# Repository
# -----------------------------------------------------------------------------


class HttpRepository(ComplianceRepository):
    """
    ComplianceRepository backed by a REST API.

    Example:
        repo = HttpRepository("https://compliance.example.com", token="...")
        tree = repo.get_organization_tree()
    """

    default_max_retries: int = 3
    default_retry_base_delay: float = 1.0
    default_retry_max_delay: float = 30.0

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: int = 30,
        max_retries: int | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Backend root URL (without the /api suffix).
            token: Optional bearer token.
            timeout: Per-request timeout in seconds.
            max_retries: Retries for idempotent reads.
        """
        url = base_url.strip()
        if not url.startswith("http"):
            url = f"https://{url}"
        self.base_url = url.rstrip("/")
        self.timeout = timeout
        self.max_retries = (
            max_retries if max_retries is not None else self.default_max_retries
        )
        self._token = token
        self._session: requests.Session | None = None

    def _get_session(self) -> requests.Session:
        if self._session is not None:
            return self._session

        self._session = requests.Session()
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._session.headers.update(headers)
        return self._session

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
        entity: tuple[str, str] | None = None,
    ) -> Any:
        """
        Make a single API request.

        Args:
            method: HTTP method.
            endpoint: Path below the base URL.
            params: Query parameters.
            body: JSON body.
            entity: (entity_type, entity_id) reported on 404.

        Returns:
            Parsed JSON response, or an empty dict for empty responses.
        """
        session = self._get_session()
        url = f"{self.base_url}{endpoint}"
        operation = f"{method} {endpoint}"

        start_time = time.time()
        try:
            response = session.request(
                method, url, params=params, json=body, timeout=self.timeout
            )
        except requests.exceptions.ConnectionError as e:
            raise TransientIOError(f"Failed to connect to backend: {e}", operation) from e
        except requests.exceptions.Timeout as e:
            raise TransientIOError(f"Backend request timed out: {e}", operation) from e

        duration_ms = (time.time() - start_time) * 1000
        logger.info("API call: %s -> %d (%.0fms)", operation, response.status_code, duration_ms)

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientIOError(f"Backend unavailable (HTTP {status})", operation)
        if status in (401, 403):
            raise BackendAuthenticationError(
                f"Backend rejected credentials (HTTP {status}) for {operation}"
            )
        if status == 404:
            entity_type, entity_id = entity or ("resource", endpoint)
            raise UnknownEntityError(entity_type, entity_id)
        if status == 409:
            detail = self._json_or_empty(response)
            raise ConflictingWriteError(
                entity[1] if entity else endpoint,
                expected=detail.get("expectedVersion") if isinstance(detail, dict) else None,
                actual=detail.get("currentVersion") if isinstance(detail, dict) else None,
            )

        response.raise_for_status()

        if status == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _json_or_empty(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {}

    def _get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        entity: tuple[str, str] | None = None,
    ) -> Any:
        """GET with retry and exponential backoff on transient failures."""
        last_error: TransientIOError | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return self._request("GET", endpoint, params=params, entity=entity)
            except TransientIOError as e:
                last_error = e
                if attempt < self.max_retries:
                    delay = min(
                        self.default_retry_base_delay * (2**attempt),
                        self.default_retry_max_delay,
                    )
                    logger.warning(
                        "Transient backend error, retrying in %.1fs (attempt %d/%d): %s",
                        delay,
                        attempt + 1,
                        self.max_retries,
                        e,
                    )
                    time.sleep(delay)
        assert last_error is not None
        raise last_error

    # -------------------------------------------------------------------------
    # Organisation tree
    # -------------------------------------------------------------------------

    def get_organization_tree(self) -> list[CapabilityCentre]:
        payload = self._get("/api/capability-centres/hierarchy/full")
        centres = [_centre_from_api(c) for c in _unwrap(payload) or []]
        return sorted(centres, key=lambda c: c.name.lower())

    def get_framework(self, framework_id: str) -> Framework:
        payload = self._get(
            f"/api/frameworks/{framework_id}", entity=("framework", framework_id)
        )
        return _framework_from_api(_unwrap(payload))

    def get_product(self, product_id: str) -> Product:
        payload = self._get(f"/api/products/{product_id}", entity=("product", product_id))
        return _product_from_api(_unwrap(payload))

    def get_system(self, system_id: str) -> System:
        payload = self._get(f"/api/systems/{system_id}", entity=("system", system_id))
        return _system_from_api(_unwrap(payload))

    def create_system(self, system: System) -> System:
        payload = self._request(
            "POST",
            "/api/systems",
            body=_system_to_api(system),
            entity=("product", system.product_id),
        )
        return _system_from_api(_unwrap(payload) or _system_to_api(system))

    def update_system(self, system_id: str, patch: dict[str, Any]) -> System:
        body = {
            "dataClassification" if key == "data_classification" else key: value
            for key, value in patch.items()
        }
        payload = self._request(
            "PUT", f"/api/systems/{system_id}", body=body, entity=("system", system_id)
        )
        return _system_from_api(_unwrap(payload))

    def delete_system(self, system_id: str) -> None:
        self._request("DELETE", f"/api/systems/{system_id}", entity=("system", system_id))

    # -------------------------------------------------------------------------
    # Baselines
    # -------------------------------------------------------------------------

    def get_baseline_entries(self, product_id: str) -> list[BaselineEntry]:
        payload = self._get(
            f"/api/baselines/product/{product_id}", entity=("product", product_id)
        )
        entries = (_unwrap(payload) or {}).get("entries", [])
        return [_baseline_from_api(e, product_id) for e in entries]

    def save_baseline_entries(
        self, product_id: str, entries: list[BaselineEntry]
    ) -> list[BaselineEntry]:
        payload = self._request(
            "PUT",
            f"/api/baselines/product/{product_id}",
            body={"entries": [_baseline_to_api(e) for e in entries]},
            entity=("product", product_id),
        )
        confirmed = (_unwrap(payload) or {}).get("entries")
        if confirmed is None:
            return list(entries)
        return [_baseline_from_api(e, product_id) for e in confirmed]

    # -------------------------------------------------------------------------
    # Assessments
    # -------------------------------------------------------------------------

    def get_assessments(
        self, system_id: str | None = None, product_id: str | None = None
    ) -> list[Assessment]:
        params: dict[str, Any] = {}
        if system_id is not None:
            params["systemId"] = system_id
        if product_id is not None:
            params["productId"] = product_id
        payload = self._get("/api/assessments", params=params or None)
        rows = _unwrap(payload, "assessments") or []
        return [_assessment_from_api(a) for a in rows]

    def create_assessment(self, assessment: Assessment) -> Assessment:
        payload = self._request(
            "POST",
            "/api/assessments",
            body=_assessment_to_api(assessment),
            entity=("system", assessment.system_id),
        )
        return _assessment_from_api(_unwrap(payload) or _assessment_to_api(assessment))

    def update_assessment(
        self,
        assessment_id: str,
        patch: dict[str, Any],
        expected_version: int | None = None,
    ) -> Assessment:
        body = _patch_to_api(patch)
        if expected_version is not None:
            body["expectedVersion"] = expected_version
        payload = self._request(
            "PUT",
            f"/api/assessments/{assessment_id}",
            body=body,
            entity=("assessment", assessment_id),
        )
        return _assessment_from_api(_unwrap(payload))

    def delete_assessment(self, assessment_id: str) -> None:
        self._request(
            "DELETE",
            f"/api/assessments/{assessment_id}",
            entity=("assessment", assessment_id),
        )
