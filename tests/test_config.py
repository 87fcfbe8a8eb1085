import pytest

from play_alert_bot.config import build_config, load_config, validate_config
from play_alert_bot.errors import ConfigError

YAML = """
app:
  symbol: "ethusdt"
telegram:
  enabled: true
  token: "from-file"
scoring:
  weights:
    6: [1, 1, 1, 1, 2]
  gates:
    5: 7
lifecycle:
  mute_minutes: 45
"""

ENV_KEYS = (
    "SYMBOL", "SOFT_FAIL", "FETCH_TIMEOUT_S", "FETCH_RETRIES", "LIQUIDATIONS_URL",
    "TELEGRAM_BOT_TOKEN", "TELEGRAM_TOKEN", "TELEGRAM_CHAT_ID", "TELEGRAM_CHAT_IDS",
    "WEBHOOK_SECRET", "WEBHOOK_URL", "RISK_PCT", "ACCOUNT_EQUITY",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for k in ENV_KEYS:
        monkeypatch.delenv(k, raising=False)


def test_defaults():
    cfg = build_config()
    assert cfg.app.symbol == "ETHUSDT"
    assert cfg.app.asset == "ETH"
    assert cfg.telegram.chat_ids == []
    assert cfg.webhook.headers == {}
    assert cfg.scoring.gate_for(1) == 6
    assert cfg.scoring.gate_for(42) == 5
    assert cfg.scoring.weights_for(42) == [1.0] * 5
    assert cfg.lifecycle.ttl_minutes == 30
    assert cfg.structure.pivot_mode == "zigzag"


def test_scoring_overrides_merge_onto_defaults():
    cfg = build_config({"scoring": {"weights": {"3": [1, 1, 1, 1, 1]}, "gates": {"1": 8}}})
    assert cfg.scoring.weights[3] == [1.0] * 5
    assert cfg.scoring.weights[4] == [0.8, 1.0, 1.3, 0.7, 1.2]
    assert cfg.scoring.gate_for(1) == 8
    assert cfg.scoring.gate_for(2) == 6


def test_unknown_key_is_rejected():
    with pytest.raises(TypeError):
        build_config({"rules": {"no_such_knob": 1}})


def test_load_config_applies_env(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(YAML, encoding="utf-8")
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "1, 2")
    monkeypatch.setenv("RISK_PCT", "1.25")
    monkeypatch.setenv("SOFT_FAIL", "yes")

    cfg = load_config(str(path))
    assert cfg.app.symbol == "ETHUSDT"
    assert cfg.app.soft_fail is True
    assert cfg.telegram.token == "from-file"
    assert cfg.telegram.chat_ids == ["1", "2"]
    assert cfg.alerts.risk_pct == 1.25
    assert cfg.scoring.weights[6] == [1.0, 1.0, 1.0, 1.0, 2.0]
    assert cfg.scoring.gate_for(5) == 7
    assert cfg.lifecycle.mute_minutes == 45
    validate_config(cfg)


def test_bot_token_env_wins_over_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(YAML, encoding="utf-8")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")
    assert load_config(str(path)).telegram.token == "from-env"


def test_bad_numeric_env_keeps_file_value(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    monkeypatch.setenv("FETCH_RETRIES", "lots")
    assert load_config(str(path)).provider.rest_max_retries == 3


def test_validate_config_errors():
    cfg = build_config({"webhook": {"enabled": True}, "scoring": {"weights": {"2": [1, 1]}}})
    with pytest.raises(ConfigError) as exc:
        validate_config(cfg)
    msg = str(exc.value)
    assert "telegram.token" in msg
    assert "telegram.chat_ids" in msg
    assert "webhook.url" in msg
    assert "scoring.weights[2]" in msg


def test_dry_run_does_not_need_telegram_credentials():
    validate_config(build_config(), dry_run=True)
    cfg = build_config({"telegram": {"enabled": False}})
    validate_config(cfg)


def test_negative_weight_is_rejected():
    cfg = build_config({"scoring": {"weights": {"4": [-1, 1, 1, 1, 1]}}})
    with pytest.raises(ConfigError) as exc:
        validate_config(cfg, dry_run=True)
    assert "scoring.weights[4] must not contain negative entries" in str(exc.value)
    validate_config(build_config({"scoring": {"weights": {"4": [0, 1, 1, 1, 1]}}}), dry_run=True)
