"""
Demo dataset generator for Gaplens.

Builds a sample multi-centre organisation with baselines and assessments
in the dataset format InMemoryRepository loads, for demonstrations and
evaluation without a backend.

The organisation deliberately includes:
    - two frameworks named "Security" under different capability centres
    - a product without a baseline
    - a product whose systems have no assessments

Profiles:
    - startup: few controls implemented, many gaps
    - growing: moderate implementation, some gaps
    - mature: most controls implemented, few gaps

Output is deterministic for a given seed, profile and reference time.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from gaplens.catalog.controls import ControlCatalog, get_default_catalog
from gaplens.catalog.templates import MINIMAL_STARTUP, STANDARD_ENTERPRISE
from gaplens.storage.models import AssessmentStatus, BaselinePriority, RiskLevel

logger = logging.getLogger(__name__)


class DemoProfile(Enum):
    """Demo organisation profiles with different implementation levels."""

    STARTUP = "startup"
    GROWING = "growing"
    MATURE = "mature"


# Relative weights of (Implemented, Partial, Not Implemented, N/A, unassessed)
STATUS_WEIGHTS: dict[DemoProfile, tuple[int, int, int, int, int]] = {
    DemoProfile.STARTUP: (25, 20, 35, 5, 15),
    DemoProfile.GROWING: (50, 20, 15, 5, 10),
    DemoProfile.MATURE: (75, 12, 5, 5, 3),
}

_STATUS_CHOICES = (
    AssessmentStatus.IMPLEMENTED,
    AssessmentStatus.PARTIALLY_IMPLEMENTED,
    AssessmentStatus.NOT_IMPLEMENTED,
    AssessmentStatus.NOT_APPLICABLE,
    None,
)

# centre -> framework -> product -> (baseline template, [(system, criticality, data class)])
DEMO_ORGANISATION: list[dict[str, Any]] = [
    {
        "id": "cc-platform",
        "name": "Platform Engineering",
        "frameworks": [
            {
                "id": "fw-platform-security",
                "name": "Security",
                "products": [
                    {
                        "id": "prod-payments",
                        "name": "Payments API",
                        "template": STANDARD_ENTERPRISE.id,
                        "systems": [
                            ("sys-api-gateway", "api-gateway", "CRITICAL", "RESTRICTED"),
                            ("sys-payments-db", "payments-db", "CRITICAL", "RESTRICTED"),
                            ("sys-ledger-worker", "ledger-worker", "HIGH", "CONFIDENTIAL"),
                        ],
                    },
                    {
                        "id": "prod-portal",
                        "name": "Customer Portal",
                        "template": MINIMAL_STARTUP.id,
                        "systems": [
                            ("sys-web-frontend", "web-frontend", "HIGH", "INTERNAL"),
                            ("sys-auth-service", "auth-service", "CRITICAL", "CONFIDENTIAL"),
                        ],
                    },
                ],
            },
            {
                "id": "fw-platform-privacy",
                "name": "Privacy",
                "products": [
                    {
                        "id": "prod-data-platform",
                        "name": "Data Platform",
                        "template": MINIMAL_STARTUP.id,
                        "systems": [
                            ("sys-warehouse", "warehouse", "HIGH", "RESTRICTED"),
                            ("sys-etl-runner", "etl-runner", "MEDIUM", "CONFIDENTIAL"),
                        ],
                    },
                ],
            },
        ],
    },
    {
        "id": "cc-corporate",
        "name": "Corporate IT",
        "frameworks": [
            {
                "id": "fw-corporate-security",
                "name": "Security",
                "products": [
                    {
                        "id": "prod-workplace",
                        "name": "Workplace Devices",
                        "template": MINIMAL_STARTUP.id,
                        "systems": [
                            ("sys-laptop-fleet", "laptop-fleet", "MEDIUM", "INTERNAL"),
                            ("sys-mdm-console", "mdm-console", "HIGH", "CONFIDENTIAL"),
                        ],
                    },
                    {
                        "id": "prod-internal-tools",
                        "name": "Internal Tools",
                        "template": None,
                        "systems": [
                            ("sys-wiki", "wiki", "LOW", "INTERNAL"),
                            ("sys-ticketing", "ticketing", "LOW", "PUBLIC"),
                        ],
                    },
                ],
            },
            {
                "id": "fw-corporate-resilience",
                "name": "Resilience",
                "products": [
                    {
                        "id": "prod-backup",
                        "name": "Backup Service",
                        "template": MINIMAL_STARTUP.id,
                        "assessed": False,
                        "systems": [
                            ("sys-backup-vault", "backup-vault", "HIGH", "RESTRICTED"),
                        ],
                    },
                ],
            },
        ],
    },
]


@dataclass
class DemoConfig:
    """Configuration for demo data generation."""

    profile: DemoProfile = DemoProfile.GROWING
    seed: int = 42
    days_of_history: int = 30
    now: datetime = field(default_factory=lambda: datetime.now(UTC))


class DemoGenerator:
    """
    Generates a demo organisation dataset.

    Example:
        generator = DemoGenerator(DemoConfig(profile=DemoProfile.STARTUP, seed=7))
        dataset = generator.generate()
        repository = InMemoryRepository.from_dict(dataset)
    """

    def __init__(
        self,
        config: DemoConfig | None = None,
        catalog: ControlCatalog | None = None,
    ) -> None:
        self.config = config or DemoConfig()
        self.catalog = catalog or get_default_catalog()
        self._rng = random.Random(self.config.seed)
        self._templates = {
            MINIMAL_STARTUP.id: MINIMAL_STARTUP.resolve(self.catalog),
            STANDARD_ENTERPRISE.id: STANDARD_ENTERPRISE.resolve(self.catalog),
        }

    def generate(self) -> dict[str, Any]:
        """
        Generate the dataset.

        Returns:
            Dataset dictionary with capability_centres, baselines and
            assessments.
        """
        centres: list[dict[str, Any]] = []
        baselines: dict[str, list[dict[str, Any]]] = {}
        assessments: list[dict[str, Any]] = []

        for centre in DEMO_ORGANISATION:
            frameworks = []
            for framework in centre["frameworks"]:
                products = []
                for product in framework["products"]:
                    products.append(
                        {
                            "id": product["id"],
                            "name": product["name"],
                            "systems": [
                                {
                                    "id": system_id,
                                    "name": name,
                                    "criticality": criticality,
                                    "data_classification": classification,
                                }
                                for system_id, name, criticality, classification in product["systems"]
                            ],
                        }
                    )
                    if product["template"] is None:
                        continue
                    control_ids = self._templates[product["template"]]
                    baselines[product["id"]] = self._baseline_entries(control_ids)
                    if product.get("assessed", True):
                        for system_id, *_ in product["systems"]:
                            assessments.extend(
                                self._assessments(system_id, control_ids, len(assessments))
                            )
                frameworks.append(
                    {"id": framework["id"], "name": framework["name"], "products": products}
                )
            centres.append({"id": centre["id"], "name": centre["name"], "frameworks": frameworks})

        logger.info(
            "Generated demo dataset (%s, seed %d): %d baselines, %d assessments",
            self.config.profile.value,
            self.config.seed,
            len(baselines),
            len(assessments),
        )
        return {
            "capability_centres": centres,
            "baselines": baselines,
            "assessments": assessments,
        }

    def _baseline_entries(self, control_ids: list[str]) -> list[dict[str, Any]]:
        entries = []
        for control_id in control_ids:
            must_have = control_id.startswith(("PR.", "GV."))
            entries.append(
                {
                    "control_id": control_id,
                    "applicable": True,
                    "priority": (
                        BaselinePriority.MUST_HAVE if must_have else BaselinePriority.SHOULD_HAVE
                    ).value,
                }
            )
        return entries

    def _assessments(
        self, system_id: str, control_ids: list[str], offset: int
    ) -> list[dict[str, Any]]:
        weights = STATUS_WEIGHTS[self.config.profile]
        results = []
        for control_id in control_ids:
            status = self._rng.choices(_STATUS_CHOICES, weights=weights)[0]
            if status is None:
                continue
            risk_level = None
            remediation_plan = ""
            if status.is_gap:
                risk_level = self._rng.choice(
                    [None, RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]
                )
                remediation_plan = f"Close {control_id} gap on {system_id}"
            assessed = self.config.now - timedelta(
                days=self._rng.randint(0, self.config.days_of_history),
                hours=self._rng.randint(0, 23),
            )
            results.append(
                {
                    "id": f"asm-{offset + len(results) + 1:05d}",
                    "system_id": system_id,
                    "control_id": control_id,
                    "status": status.value,
                    "risk_level": risk_level.value if risk_level else None,
                    "remediation_plan": remediation_plan,
                    "assessed_date": assessed.isoformat(),
                    "updated_at": assessed.isoformat(),
                }
            )
        return results


def generate_demo_dataset(
    seed: int = 42,
    profile: str | DemoProfile = DemoProfile.GROWING,
    days: int = 30,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Generate a demo dataset with a single function call.

    Args:
        seed: Random seed; the same seed gives the same statuses.
        profile: Demo profile ("startup", "growing", "mature") or DemoProfile.
        days: Spread of assessment dates back from now.
        now: Reference time for assessment dates. Defaults to the current time.

    Returns:
        Dataset dictionary loadable with InMemoryRepository.from_dict().
    """
    if isinstance(profile, str):
        profile = DemoProfile(profile.lower())

    config = DemoConfig(profile=profile, seed=seed, days_of_history=days)
    if now is not None:
        config.now = now
    return DemoGenerator(config).generate()
