"""Costing settings: YAML loading, overrides and validation."""

from decimal import Decimal

import pytest
import yaml

from cogs_config import (
    CONFIG_PATH_ENV,
    DEFAULT_SETTINGS_FILE,
    CostingSettings,
    get_costing_settings,
)
from cogs_config.loader import compute_checksum, parse_settings
from cogs_engines import OverheadMethod, OverheadPolicy
from cogs_modules.production import ProductionService


def _write(tmp_path, data) -> str:
    path = tmp_path / "costing.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


class TestLoading:

    def test_builtin_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        settings = get_costing_settings()
        assert settings.labor_rate == Decimal("0")
        assert settings.overhead_policy.method == OverheadMethod.NONE
        assert settings.source == "defaults"

    def test_shipped_default_file(self):
        settings = get_costing_settings(DEFAULT_SETTINGS_FILE)
        assert settings.labor_rate == Decimal("30.00")
        assert settings.overhead_policy == OverheadPolicy.percent_of_labor(Decimal("50"))
        assert settings.money_places == 2
        assert settings.unit_cost_places == 4

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"labor_rate": "18.5"})
        monkeypatch.setenv(CONFIG_PATH_ENV, path)
        settings = get_costing_settings()
        assert settings.labor_rate == Decimal("18.5")
        assert settings.source == path

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_costing_settings(tmp_path / "absent.yaml")

    def test_load_is_traced(self, tmp_path, captured_logs):
        path = _write(tmp_path, {"labor_rate": "10"})
        get_costing_settings(path)
        traces = [r for r in captured_logs() if r["message"] == "COGS_CONFIG_TRACE"]
        assert traces[-1]["source"] == path
        assert len(traces[-1]["checksum"]) == 64

    def test_checksum_ignores_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})


class TestValidation:

    @pytest.mark.parametrize("data", [
        {"labour_rate": "10"},
        {"labor_rate": "ten"},
        {"labor_rate": "-1"},
        {"overhead": {"method": "per_widget", "rate": "1"}},
        {"overhead": {"method": "per_labor_hour", "rate": "-2"}},
        {"overhead": "percent"},
        {"precision": {"money_places": "two"}},
        {"history_page_size": 0},
        {"organizations": {"acme": "cheap"}},
    ])
    def test_invalid_settings(self, data):
        with pytest.raises(ValueError):
            parse_settings(data)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "costing.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            get_costing_settings(path)


class TestOrganizationOverrides:

    def test_override_replaces_only_given_fields(self, org_id, other_org_id):
        settings = parse_settings({
            "labor_rate": "30",
            "overhead": {"method": "percent_of_labor", "rate": "50"},
            "organizations": {
                str(org_id): {
                    "labor_rate": "42.50",
                    "precision": {"unit_cost_places": 6},
                },
            },
        })

        effective = settings.for_organization(org_id)
        assert effective.labor_rate == Decimal("42.50")
        assert effective.unit_cost_places == 6
        assert effective.overhead_policy.rate == Decimal("50")
        assert settings.for_organization(other_org_id) is settings

    def test_runs_snapshot_organization_rates(
        self, session, deterministic_clock, org_id, bar, test_actor_id,
    ):
        settings = CostingSettings(
            labor_rate=Decimal("30"),
            organizations={
                str(org_id): parse_settings({
                    "organizations": {"x": {
                        "labor_rate": "42.50",
                        "overhead": {"method": "per_labor_hour", "rate": "5"},
                    }},
                }).organizations["x"],
            },
        )
        production = ProductionService(session, clock=deterministic_clock, settings=settings)
        run = production.create_run(org_id, bar.id, Decimal("10"), actor_id=test_actor_id)

        started = production.start_run(org_id, run.id, actor_id=test_actor_id)

        assert started.labor_rate == Decimal("42.50")
        assert started.overhead_policy == OverheadPolicy.per_labor_hour(Decimal("5"))
