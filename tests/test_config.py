"""
Test suite for DOMEX configuration loading.
"""

import pytest

from domex.config import DomexConfig, load_config
from domex.exceptions import ConfigurationError
from domex.exchange.amounts import FixedPointAmount

ENV_VARS = [
    "DOMEX_CONFIG",
    "DOMEX_POOL_FEE_BPS",
    "DOMEX_POOL_IMBALANCE_TOLERANCE_BPS",
    "DOMEX_RATE_LIMIT_THRESHOLD",
    "DOMEX_RATE_LIMIT_WINDOW",
    "DOMEX_RATE_LIMIT_COOLDOWN",
    "DOMEX_ADMINS",
    "DOMEX_PROTECTED_CONTRACTS",
    "DOMEX_START_OPERATIONAL",
    "DOMEX_LOG_LEVEL",
    "DOMEX_LOG_FILE",
]

SAMPLE = """
[pool]
fee_bps = 25
imbalance_tolerance_bps = 50

[rate_limiter]
threshold = "2500.5"
window_duration = 120
cooldown_period = 600

[circuit_breaker]
admins = ["0xAD"]
protected_contracts = ["0xPOOL"]
start_operational = false

[logging]
level = "DEBUG"
file = "logs/domex.log"
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(SAMPLE)
    return path


class TestDefaults:

    def test_defaults_validate(self):
        cfg = DomexConfig()
        assert cfg.validate()
        assert cfg.pool.fee_bps == 30
        assert cfg.rate_limiter.threshold_amount == FixedPointAmount.from_units(1000)
        assert cfg.rate_limiter.cooldown_period == 3600
        assert cfg.circuit_breaker.start_operational

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = DomexConfig.from_file(str(tmp_path / "absent.toml"))
        assert cfg.to_dict() == DomexConfig().to_dict()


class TestFromFile:

    def test_sections_loaded(self, config_file):
        cfg = DomexConfig.from_file(str(config_file))
        assert cfg.pool.fee_bps == 25
        assert cfg.pool.imbalance_tolerance_bps == 50
        assert cfg.rate_limiter.threshold_amount == FixedPointAmount.from_units("2500.5")
        assert cfg.rate_limiter.window_duration == 120
        assert cfg.circuit_breaker.admins == ["0xAD"]
        assert cfg.circuit_breaker.protected_contracts == ["0xPOOL"]
        assert cfg.circuit_breaker.start_operational is False
        assert cfg.logging.level == "DEBUG"
        assert cfg.validate()

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[pool\nfee_bps = ")
        with pytest.raises(ConfigurationError):
            DomexConfig.from_file(str(path))

    def test_numeric_threshold(self):
        cfg = DomexConfig.from_dict({"rate_limiter": {"threshold": 42}})
        assert cfg.rate_limiter.threshold_amount == FixedPointAmount.from_units(42)


class TestEnvOverrides:

    def test_env_beats_file(self, config_file, monkeypatch):
        monkeypatch.setenv("DOMEX_POOL_FEE_BPS", "10")
        monkeypatch.setenv("DOMEX_ADMINS", "0x1, 0x2,")
        monkeypatch.setenv("DOMEX_START_OPERATIONAL", "True")
        monkeypatch.setenv("DOMEX_LOG_LEVEL", "WARNING")
        cfg = DomexConfig.from_file(str(config_file))
        assert cfg.pool.fee_bps == 10
        assert cfg.circuit_breaker.admins == ["0x1", "0x2"]
        assert cfg.circuit_breaker.start_operational is True
        assert cfg.logging.level == "WARNING"

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("DOMEX_RATE_LIMIT_WINDOW", "soon")
        with pytest.raises(ConfigurationError):
            DomexConfig().apply_env()

    def test_load_config_from_env_path(self, config_file, monkeypatch):
        monkeypatch.setenv("DOMEX_CONFIG", str(config_file))
        assert load_config().pool.fee_bps == 25

    def test_load_config_explicit_path(self, config_file):
        assert load_config(str(config_file)).rate_limiter.cooldown_period == 600


class TestValidation:

    @pytest.mark.parametrize("section,key,value", [
        ("pool", "fee_bps", 10_000),
        ("pool", "fee_bps", -1),
        ("pool", "imbalance_tolerance_bps", 20_000),
        ("rate_limiter", "threshold", "0"),
        ("rate_limiter", "threshold", "many"),
        ("rate_limiter", "window_duration", 0),
        ("rate_limiter", "cooldown_period", -5),
        ("logging", "level", "LOUD"),
    ])
    def test_invalid_values(self, section, key, value):
        cfg = DomexConfig()
        setattr(getattr(cfg, section), key, value)
        with pytest.raises(ConfigurationError):
            cfg.validate()
