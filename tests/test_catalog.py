"""
Tests for the control catalog and baseline templates.

Uses Python's unittest module.
"""

from __future__ import annotations

import json
import shutil
import tempfile
import unittest
from pathlib import Path

from gaplens.catalog.controls import (
    ControlCatalog,
    get_default_catalog,
    load_catalog,
)
from gaplens.catalog.templates import (
    BASELINE_TEMPLATES,
    COMPREHENSIVE,
    MINIMAL_STARTUP,
    BaselineTemplate,
    get_template,
)
from gaplens.errors import UnknownEntityError
from gaplens.storage.models import RiskLevel


class TestDefaultCatalog(unittest.TestCase):
    """Tests for the packaged CSF 2.0 catalog."""

    def setUp(self) -> None:
        self.catalog = get_default_catalog()

    def test_statistics(self) -> None:
        """Packaged catalog has 6 functions, 22 categories, 106 controls."""
        self.assertEqual(
            self.catalog.statistics(),
            {"functions": 6, "categories": 22, "controls": 106},
        )

    def test_function_order(self) -> None:
        """Test function order."""
        ids = [f.id for f in self.catalog.functions]
        self.assertEqual(ids, ["GV", "ID", "PR", "DE", "RS", "RC"])

    def test_default_catalog_is_shared(self) -> None:
        """Test default catalog is shared."""
        self.assertIs(get_default_catalog(), self.catalog)

    def test_get_control(self) -> None:
        """Test get control."""
        control = self.catalog.get_control("PR.AA-01")
        self.assertEqual(control.category_id, "PR.AA")
        self.assertEqual(control.function_id, "PR")

    def test_get_control_case_insensitive(self) -> None:
        """Test get control case insensitive."""
        self.assertEqual(self.catalog.get_control("pr.aa-01").id, "PR.AA-01")
        self.assertTrue(self.catalog.has_control("gv.oc-01"))

    def test_unknown_entities_raise(self) -> None:
        """Test unknown entities raise."""
        with self.assertRaises(UnknownEntityError):
            self.catalog.get_control("XX.YY-99")
        with self.assertRaises(UnknownEntityError):
            self.catalog.get_function("ZZ")
        with self.assertRaises(UnknownEntityError):
            self.catalog.get_category("PR.ZZ")

    def test_controls_inherit_function_risk(self) -> None:
        """Test controls inherit function risk."""
        self.assertEqual(self.catalog.get_control("PR.AA-01").risk_level, RiskLevel.HIGH)
        self.assertEqual(self.catalog.get_control("RC.RP-01").risk_level, RiskLevel.LOW)
        self.assertEqual(self.catalog.get_control("GV.OC-01").risk_level, RiskLevel.MEDIUM)

    def test_sort_key_orders_by_function_first(self) -> None:
        """Test sort key orders by function first."""
        ordered = sorted(["RC.RP-01", "PR.AA-02", "GV.OC-01", "PR.AA-01"], key=self.catalog.sort_key)
        self.assertEqual(ordered, ["GV.OC-01", "PR.AA-01", "PR.AA-02", "RC.RP-01"])


class TestLoadCatalog(unittest.TestCase):
    """Tests for loading catalogs from disk."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self) -> None:
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write(self, data: object) -> Path:
        path = Path(self.temp_dir) / "catalog.json"
        path.write_text(json.dumps(data))
        return path

    def test_load_custom_catalog(self) -> None:
        """Test load custom catalog."""
        path = self._write(
            {
                "version": "test",
                "functions": [
                    {
                        "id": "pr",
                        "name": "Protect",
                        "default_risk_level": "High",
                        "categories": [
                            {
                                "id": "pr.aa",
                                "name": "Access",
                                "controls": [
                                    {"id": "pr.aa-01", "name": "Identities"},
                                    {"id": "pr.aa-02", "risk_level": "Critical"},
                                ],
                            }
                        ],
                    }
                ],
            }
        )

        catalog = load_catalog(path)

        self.assertIsInstance(catalog, ControlCatalog)
        self.assertEqual(catalog.version, "test")
        self.assertEqual([c.id for c in catalog.controls], ["PR.AA-01", "PR.AA-02"])
        self.assertEqual(catalog.get_control("PR.AA-01").risk_level, RiskLevel.HIGH)
        self.assertEqual(catalog.get_control("PR.AA-02").risk_level, RiskLevel.CRITICAL)
        self.assertEqual(catalog.get_control("PR.AA-02").name, "PR.AA-02")

    def test_catalog_without_functions(self) -> None:
        """Test catalog without functions."""
        with self.assertRaises(ValueError):
            load_catalog(self._write({"functions": []}))

    def test_invalid_json(self) -> None:
        """Test invalid json."""
        path = Path(self.temp_dir) / "broken.json"
        path.write_text("{not json")
        with self.assertRaises(ValueError):
            load_catalog(path)


class TestBaselineTemplates(unittest.TestCase):
    """Tests for predefined baseline templates."""

    def setUp(self) -> None:
        self.catalog = get_default_catalog()

    def test_registry(self) -> None:
        """Test registry."""
        self.assertEqual(
            set(BASELINE_TEMPLATES),
            {"minimal-startup", "standard-enterprise", "comprehensive"},
        )

    def test_get_template(self) -> None:
        """Test get template."""
        self.assertIs(get_template("minimal-startup"), MINIMAL_STARTUP)
        with self.assertRaises(UnknownEntityError):
            get_template("nonexistent")

    def test_minimal_resolves_in_canonical_order(self) -> None:
        """Test minimal resolves in canonical order."""
        controls = MINIMAL_STARTUP.resolve(self.catalog)

        self.assertEqual(len(controls), 16)
        self.assertEqual(controls[0], "GV.OC-01")
        self.assertEqual(controls[-1], "RC.RP-01")
        self.assertLess(controls.index("DE.AE-02"), controls.index("DE.CM-01"))

    def test_every_template_resolves(self) -> None:
        """Test every template resolves."""
        for template in BASELINE_TEMPLATES.values():
            with self.subTest(template=template.id):
                self.assertTrue(template.resolve(self.catalog))

    def test_comprehensive_expands_to_catalog(self) -> None:
        """Test comprehensive expands to catalog."""
        self.assertTrue(COMPREHENSIVE.includes_all_controls)
        self.assertEqual(len(COMPREHENSIVE.resolve(self.catalog)), 106)

    def test_unknown_control_in_template(self) -> None:
        """Test unknown control in template."""
        template = BaselineTemplate("bad", "Bad", "Broken", control_ids=("XX.YY-01",))
        with self.assertRaises(UnknownEntityError):
            template.resolve(self.catalog)

    def test_to_dict_counts_controls(self) -> None:
        """Test to dict counts controls."""
        self.assertEqual(COMPREHENSIVE.to_dict()["control_count"], 0)
        self.assertEqual(COMPREHENSIVE.to_dict(self.catalog)["control_count"], 106)
        self.assertEqual(MINIMAL_STARTUP.to_dict()["control_count"], 16)


if __name__ == "__main__":
    unittest.main()
