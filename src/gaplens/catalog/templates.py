"""
Predefined baseline templates.

A template is a named list of controls that can be applied to a product to
populate its baseline in one step. The "comprehensive" template has no
explicit list and expands to every control in the catalog.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from gaplens.catalog.controls import ControlCatalog
from gaplens.errors import UnknownEntityError


@dataclass(frozen=True)
class BaselineTemplate:
    """
    A reusable baseline definition.

    Attributes:
        id: Template identifier.
        name: Display name.
        description: What kind of organisation the template suits.
        control_ids: Controls included; empty means the whole catalog.
    """

    id: str
    name: str
    description: str
    control_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def includes_all_controls(self) -> bool:
        return not self.control_ids

    def resolve(self, catalog: ControlCatalog) -> list[str]:
        """
        Expand the template to concrete control codes in catalog order.

        Raises:
            UnknownEntityError: If the template names a control the
                catalog does not define.
        """
        if self.includes_all_controls:
            return [control.id for control in catalog.controls]
        for control_id in self.control_ids:
            catalog.get_control(control_id)
        return sorted(self.control_ids, key=catalog.sort_key)

    def to_dict(self, catalog: ControlCatalog | None = None) -> dict[str, Any]:
        """Convert to dictionary, counting controls against a catalog if given."""
        if catalog is not None:
            control_count = len(self.resolve(catalog))
        else:
            control_count = len(self.control_ids)
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "control_count": control_count,
        }


MINIMAL_STARTUP = BaselineTemplate(
    id="minimal-startup",
    name="Minimal Startup",
    description="Essential controls for early-stage organizations",
    control_ids=(
        "GV.OC-01", "GV.RM-01", "GV.RR-01",
        "ID.AM-01", "ID.AM-02", "ID.RA-01", "ID.RA-02",
        "PR.AA-01", "PR.AA-02", "PR.DS-01", "PR.DS-02",
        "DE.CM-01", "DE.AE-02",
        "RS.MA-01", "RS.AN-03",
        "RC.RP-01",
    ),
)

STANDARD_ENTERPRISE = BaselineTemplate(
    id="standard-enterprise",
    name="Standard Enterprise",
    description="Broad control set for established organizations",
    control_ids=(
        # Govern
        "GV.OC-01", "GV.OC-02", "GV.OC-03", "GV.OC-04", "GV.OC-05",
        "GV.RM-01", "GV.RM-02", "GV.RM-03", "GV.RM-04", "GV.RM-05", "GV.RM-06",
        "GV.RM-07",
        "GV.RR-01", "GV.RR-02", "GV.RR-03", "GV.RR-04",
        "GV.PO-01", "GV.PO-02",
        "GV.SC-01", "GV.SC-02", "GV.SC-03", "GV.SC-04", "GV.SC-05", "GV.SC-06",
        "GV.SC-07", "GV.SC-08", "GV.SC-09", "GV.SC-10",
        # Identify
        "ID.AM-01", "ID.AM-02", "ID.AM-03", "ID.AM-04", "ID.AM-05", "ID.AM-07",
        "ID.AM-08",
        "ID.RA-01", "ID.RA-02", "ID.RA-03", "ID.RA-04", "ID.RA-05", "ID.RA-06",
        "ID.RA-07", "ID.RA-08", "ID.RA-09", "ID.RA-10",
        "ID.IM-01", "ID.IM-02", "ID.IM-03", "ID.IM-04",
        # Protect
        "PR.AA-01", "PR.AA-02", "PR.AA-03", "PR.AA-04", "PR.AA-05", "PR.AA-06",
        "PR.AT-01", "PR.AT-02",
        "PR.DS-01", "PR.DS-02", "PR.DS-10", "PR.DS-11",
        "PR.PS-01", "PR.PS-02", "PR.PS-03", "PR.PS-04", "PR.PS-05", "PR.PS-06",
        "PR.IR-01", "PR.IR-02", "PR.IR-03", "PR.IR-04",
        # Detect
        "DE.CM-01", "DE.CM-02", "DE.CM-03", "DE.CM-06", "DE.CM-09",
        "DE.AE-02", "DE.AE-03", "DE.AE-04", "DE.AE-06", "DE.AE-07", "DE.AE-08",
        # Respond
        "RS.MA-01", "RS.MA-02", "RS.MA-03", "RS.MA-04", "RS.MA-05",
        "RS.AN-03", "RS.AN-06", "RS.AN-07", "RS.AN-08",
        "RS.CO-02", "RS.CO-03",
        "RS.MI-01", "RS.MI-02",
        # Recover
        "RC.RP-01", "RC.RP-02", "RC.RP-03", "RC.RP-04", "RC.RP-05", "RC.RP-06",
        "RC.CO-03", "RC.CO-04",
    ),
)

COMPREHENSIVE = BaselineTemplate(
    id="comprehensive",
    name="Comprehensive (All Controls)",
    description="Every subcategory in the control catalog",
)

BASELINE_TEMPLATES: dict[str, BaselineTemplate] = {
    template.id: template
    for template in (MINIMAL_STARTUP, STANDARD_ENTERPRISE, COMPREHENSIVE)
}


def get_template(template_id: str) -> BaselineTemplate:
    """
    Look up a baseline template by ID.

    Raises:
        UnknownEntityError: If no template has this ID.
    """
    template = BASELINE_TEMPLATES.get(template_id)
    if template is None:
        raise UnknownEntityError("baseline template", template_id)
    return template
