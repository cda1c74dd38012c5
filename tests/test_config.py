# tests/test_config.py
import pytest

from offers.config import AVAILABLE_COORDINATORS, EngineSettings, make_settings_from_cfg
from offers.enums import Language
from offers.errors import ConfigError
from utils.config import load_cfg, resolve_env


def test_currencies_are_mapped_to_ids():
    s = EngineSettings(coordinators="moon", target_currencies="usd, EUR ,SAT")
    assert [c.code for c in s.target_currencies] == ["USD", "EUR", "SAT"]
    assert s.currency_ids == frozenset({1, 2, 1000})
    assert s.currency_code(2) == "EUR"
    assert s.filters.currencies == s.currency_ids


def test_all_expands_to_federation():
    s = EngineSettings(coordinators="all", target_currencies="USD")
    assert s.coordinators == AVAILABLE_COORDINATORS
    assert "mock" not in s.coordinators


def test_coordinators_deduplicated_in_order():
    s = EngineSettings(coordinators="Moon,lake,moon", target_currencies="USD")
    assert s.coordinators == ("moon", "lake")


def test_language_from_locale_string():
    s = EngineSettings(coordinators="moon", target_currencies="USD", language="es_ES.UTF-8")
    assert s.language is Language.ES


def test_offer_type_by_name():
    s = EngineSettings(coordinators="moon", target_currencies="USD", offer_type="sell")
    assert s.offer_type == 1
    assert s.filters.offer_type == 1


def test_mock_mode_defaults():
    s = EngineSettings(use_mock=True)
    assert s.coordinators == ("mock",)
    assert [c.code for c in s.target_currencies] == ["USD"]


def test_derived_values(tmp_path):
    s = EngineSettings(coordinators="moon", target_currencies="USD", check_interval_minutes=2,
                       fallback_ttl_hours=1, data_dir=str(tmp_path))
    assert s.check_interval_s == 120.0
    assert s.fallback_ttl_ms == 3_600_000
    assert s.store_path == tmp_path / "seen_offers.json"


def test_settings_are_immutable():
    s = EngineSettings(coordinators="moon", target_currencies="USD")
    with pytest.raises(Exception):
        s.enabled = False


@pytest.mark.parametrize("engine", [
    {"target_currencies": "XYZ"},
    {"target_currencies": "USD", "check_interval_minutes": 0},
    {"target_currencies": "USD", "language": "FR"},
])
def test_invalid_values_raise_config_error(engine):
    with pytest.raises(ConfigError):
        make_settings_from_cfg({"robosats": {"coordinators": "moon"}, "engine": engine})


def test_unknown_currency_lists_available():
    with pytest.raises(ConfigError) as ei:
        make_settings_from_cfg({"robosats": {"coordinators": "moon"}, "engine": {"target_currencies": "XYZ"}})
    assert "Available currencies" in str(ei.value)


def test_make_settings_from_cfg_sections():
    cfg = {
        "robosats": {"coordinators": "moon,lake", "api_url": "http://proxy:12596",
                     "onion_url": "http://x.onion", "host_header": "", "use_mock": "false"},
        "engine": {"target_currencies": "USD,EUR", "check_interval_minutes": "3",
                   "enabled": "true", "delete_inactive": "false", "offer_type": ""},
        "timeouts": {"rest_ms": 5000},
    }
    s = make_settings_from_cfg(cfg)
    assert s.coordinators == ("moon", "lake")
    assert s.check_interval_minutes == 3
    assert s.delete_inactive is False
    assert s.offer_type is None
    assert s.host_header is None
    assert s.timeout_ms == 5000


def test_resolve_env_with_defaults(monkeypatch):
    monkeypatch.setenv("NOTIFIER_TEST_URL", "http://from-env")
    monkeypatch.delenv("NOTIFIER_TEST_MISSING", raising=False)
    out = resolve_env({
        "a": "${NOTIFIER_TEST_URL}",
        "b": ["${NOTIFIER_TEST_MISSING:-fallback}", "${NOTIFIER_TEST_MISSING}"],
        "c": 5,
    })
    assert out == {"a": "http://from-env", "b": ["fallback", ""], "c": 5}


def test_load_cfg_reads_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("NOTIFIER_TEST_COORDS", "temple")
    p = tmp_path / "config.yaml"
    p.write_text("robosats:\n  coordinators: ${NOTIFIER_TEST_COORDS}\nengine:\n  target_currencies: EUR\n",
                 encoding="utf-8")
    cfg = load_cfg(str(p))
    assert cfg["robosats"]["coordinators"] == "temple"
    assert make_settings_from_cfg(cfg).coordinators == ("temple",)
