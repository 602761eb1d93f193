"""Tests for the configuration layer: effective view, overrides, validation and logging."""

import json

from crosscheck import config
from crosscheck.config import (
    build_effective_config,
    category_priority,
    get_collision_config,
    get_logging_config,
    infer_machine_profile,
    list_getters,
    validate_config,
)
from crosscheck.config_overrides import apply_overrides_to_config, load_overrides, save_overrides


class TestMachineProfiles:
    """Test machine identification from the TPS machine id."""

    def test_known_ids(self):
        assert infer_machine_profile("Halcyon2741") == "HALCYON"
        assert infer_machine_profile("TrueBeamSN6368") == "EDGE"
        assert infer_machine_profile("TrueBeamSN4625") == "TRUEBEAM_STX"
        assert infer_machine_profile("My_STX_Linac") == "TRUEBEAM_STX"

    def test_unknown_ids(self):
        assert infer_machine_profile("Linac99") is None
        assert infer_machine_profile("") is None
        assert infer_machine_profile(None) is None

    def test_unknown_profile_has_no_collision_config(self):
        assert get_collision_config(None) is None
        assert get_collision_config("edge")["mode"] == "distance"


class TestEffectiveConfig:
    """Test the defaults + overrides view."""

    def test_effective_is_a_deep_copy(self):
        effective = build_effective_config()
        effective["params"]["COLLISION_CONFIG"]["EDGE"]["error_cm"] = 1.0
        assert config.COLLISION_CONFIG["EDGE"]["error_cm"] == 38.0

    def test_inline_overrides_are_merged(self):
        effective = build_effective_config(
            overrides={
                "rules": {"CourseRule": False},
                "params": {"COLLISION_CONFIG": {"EDGE": {"error_cm": 38.5}}},
            }
        )
        assert effective["rules"]["CourseRule"] is False
        assert effective["params"]["COLLISION_CONFIG"]["EDGE"]["error_cm"] == 38.5
        assert effective["params"]["COLLISION_CONFIG"]["EDGE"]["warning_cm"] == 37.0

    def test_unknown_keys_are_ignored(self):
        effective = build_effective_config()
        apply_overrides_to_config(
            effective,
            {
                "rules": {"NoSuchRule": True},
                "params": {"NO_SUCH_SECTION": {}, "DOSE_CONFIG": {"grid_max": 1.0}},
            },
        )
        assert "NoSuchRule" not in effective["rules"]
        assert "NO_SUCH_SECTION" not in effective["params"]
        assert "grid_max" not in effective["params"]["DOSE_CONFIG"]

    def test_list_sections_are_replaced(self):
        effective = build_effective_config(overrides={"params": {"CATEGORY_ORDER": [["Dose", 1]]}})
        assert effective["params"]["CATEGORY_ORDER"] == [["Dose", 1]]

    def test_overrides_file_round_trip(self, tmp_path):
        path = tmp_path / "overrides.json"
        save_overrides({"rules": {"CollisionRule": False}, "params": {}, "extra": 1}, path)
        assert json.loads(path.read_text(encoding="utf-8")) == {
            "rules": {"CollisionRule": False},
            "params": {},
        }
        effective = build_effective_config(overrides_path=path)
        assert effective["rules"]["CollisionRule"] is False


class TestOverridesFile:
    """Test that a bad overrides file never raises."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_overrides(tmp_path / "missing.json") == {"rules": {}, "params": {}}

    def test_broken_json_gives_defaults(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_overrides(path) == {"rules": {}, "params": {}}

    def test_wrong_shapes_are_normalized(self, tmp_path):
        path = tmp_path / "odd.json"
        path.write_text(json.dumps({"rules": [], "params": "x"}), encoding="utf-8")
        assert load_overrides(path) == {"rules": {}, "params": {}}


class TestValidateConfig:
    """Test configuration consistency checks."""

    def test_defaults_are_valid(self):
        check = validate_config()
        assert check == {"ok": True, "errors": [], "warnings": []}

    def test_inverted_distance_thresholds(self):
        effective = build_effective_config(
            overrides={"params": {"COLLISION_CONFIG": {"EDGE": {"error_cm": 36.0}}}}
        )
        check = validate_config(effective)
        assert not check["ok"]
        assert any("EDGE" in e and "distance" in e for e in check["errors"])

    def test_unknown_machine_key(self):
        effective = build_effective_config()
        effective["params"]["SETUP_FIELDS_CONFIG"]["LINAC99"] = {}
        check = validate_config(effective)
        assert any("LINAC99" in e for e in check["errors"])

    def test_invalid_regex(self):
        effective = build_effective_config(
            overrides={"params": {"FIELD_NAMING_CONFIG": {"static_pattern": "^G(\\d+"}}}
        )
        check = validate_config(effective)
        assert any("static_pattern" in e for e in check["errors"])

    def test_unknown_switch_is_warning_and_strict_fails(self):
        effective = build_effective_config()
        effective["rules"]["NoSuchRule"] = True
        assert validate_config(effective)["ok"]
        assert not validate_config(effective, strict=True)["ok"]


class TestCategoryPriority:
    """Test prefix based category priorities."""

    def test_prefix_match(self):
        assert category_priority("Fields.Geometry.Collimator") == 80
        assert category_priority("CT.Curve") == 20
        assert category_priority("CT.UserOrigin") == 70

    def test_unknown_category(self):
        assert category_priority("Misc") == 999


class TestLogging:
    """Test the dictConfig-ready logging configuration."""

    def test_default_levels(self):
        cfg = get_logging_config()
        assert cfg["loggers"]["crosscheck"]["level"] == "INFO"
        assert cfg["handlers"]["console"]["formatter"] == "simple"

    def test_verbose_is_debug(self):
        cfg = get_logging_config(verbose=True)
        assert cfg["loggers"]["crosscheck"]["level"] == "DEBUG"
        assert cfg["handlers"]["console"]["level"] == "DEBUG"
        assert config.LOGGING_CONFIG["loggers"]["crosscheck"]["level"] == "INFO"

    def test_getter_registry(self):
        assert "get_collision_config" in list_getters()
        assert list_getters() == sorted(list_getters())
