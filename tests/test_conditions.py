from __future__ import annotations

import json
from pathlib import Path

import pytest

from exposure_chain.domain.conditions import (
    DEFAULT_INCUBATION_DAYS,
    ConditionCatalog,
    conditions_match,
    load_catalog,
    overlapping_conditions,
    parse_condition_types,
)


class TestParseConditionTypes:
    def test_list_passthrough(self) -> None:
        assert parse_condition_types(["HIV", " SYPHILIS "]) == ["HIV", "SYPHILIS"]

    def test_json_string(self) -> None:
        assert parse_condition_types('["HIV","HPV"]') == ["HIV", "HPV"]

    def test_single_string(self) -> None:
        assert parse_condition_types("HIV") == ["HIV"]

    @pytest.mark.parametrize("value", [None, "", "[not json", 42, {"HIV": 1}])
    def test_garbage_is_empty(self, value: object) -> None:
        assert parse_condition_types(value) == []


class TestMatching:
    def test_overlap_is_case_insensitive(self) -> None:
        assert overlapping_conditions(["hiv", "HPV"], ["HIV"]) == ["hiv"]

    def test_empty_side_matches_everything(self) -> None:
        assert conditions_match(None, ["HIV"])
        assert conditions_match(["HIV"], [])

    def test_disjoint_does_not_match(self) -> None:
        assert not conditions_match(["HIV"], ["HPV"])


class TestConditionCatalog:
    def test_defaults(self) -> None:
        catalog = ConditionCatalog()
        assert catalog.incubation_for("syphilis") == 90
        assert catalog.incubation_for("UNLISTED") == DEFAULT_INCUBATION_DAYS
        assert catalog.max_incubation_days(["GONORRHEA", "SYPHILIS"]) == 90
        assert catalog.max_incubation_days([]) == DEFAULT_INCUBATION_DAYS

    def test_from_mapping(self) -> None:
        catalog = ConditionCatalog.from_mapping(
            {"stiTypes": [{"id": "hiv", "maxIncubationDays": 45}], "defaultIncubationDays": 20}
        )
        assert catalog.incubation_for("HIV") == 45
        assert catalog.incubation_for("other") == 20
        assert catalog.is_known("hiv")

    def test_from_mapping_rejects_bad_entries(self) -> None:
        with pytest.raises(ValueError):
            ConditionCatalog.from_mapping({"conditions": [{"id": "HIV", "maxIncubationDays": 0}]})

    def test_load_catalog_falls_back_on_bad_file(self, tmp_path: Path) -> None:
        path = tmp_path / "conditions.json"
        path.write_text("{broken", encoding="utf-8")
        assert load_catalog(str(path)) == ConditionCatalog()

    def test_load_catalog_reads_file(self, tmp_path: Path) -> None:
        path = tmp_path / "conditions.json"
        path.write_text(json.dumps({"conditions": [{"id": "HPV", "maxIncubationDays": 200}]}), encoding="utf-8")
        assert load_catalog(str(path)).incubation_for("HPV") == 200
