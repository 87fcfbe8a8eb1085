from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml

from .errors import ConfigError


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _split_ids(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


def _default_weights() -> Dict[int, List[float]]:
    # align, momentum, crowd, structure, risk
    return {
        1: [1.0, 1.0, 1.0, 1.2, 0.8],
        2: [1.0, 1.0, 1.0, 1.2, 0.8],
        3: [0.7, 1.0, 1.5, 0.6, 1.2],
        4: [0.8, 1.0, 1.3, 0.7, 1.2],
        5: [1.0, 1.0, 1.2, 0.9, 0.9],
        6: [0.9, 1.1, 1.0, 1.0, 1.0],
        7: [0.9, 1.2, 1.1, 0.8, 1.0],
        8: [1.0, 1.0, 1.3, 1.0, 0.7],
        9: [1.0, 1.2, 1.2, 0.9, 0.7],
    }


def _default_gates() -> Dict[int, int]:
    return {1: 6, 2: 6, 3: 5, 4: 5, 5: 6, 6: 5, 7: 5, 8: 5, 9: 5}


@dataclass
class AppConfig:
    name: str = "Play Sentinel"
    log_level: str = "INFO"
    symbol: str = "ETHUSDT"
    soft_fail: bool = False

    @property
    def asset(self) -> str:
        sym = self.symbol.upper()
        return sym[:-4] if sym.endswith("USDT") else sym


@dataclass
class ProviderConfig:
    spot_base_url: str = "https://api.binance.com"
    futures_base_url: str = "https://fapi.binance.com"
    liquidations_url: str = ""
    global_url: str = "https://api.coingecko.com/api/v3/global"
    fear_greed_url: str = "https://api.alternative.me/fng/?limit=1"
    kline_limit: int = 250
    daily_limit: int = 220
    weekly_limit: int = 60
    funding_window: int = 42
    oi_history_limit: int = 500
    rest_timeout_s: int = 45
    rest_max_retries: int = 3
    rest_backoff_s: float = 0.5
    fetch_concurrency: int = 4


@dataclass
class StructureConfig:
    pivot_mode: str = "zigzag"  # zigzag | fractal
    zigzag_pct: float = 0.06
    fractal_n: int = 2
    lookback_bars: int = 60
    min_gap_bars: int = 5
    tolerance_pct: float = 0.006
    max_violations: int = 2
    min_slope: float = 0.02
    max_slope: float = 800.0
    containment: str = "pivots"  # pivots | bars
    envelope_recent_bars: int = 7
    last_two_min_gap_bars: int = 5
    last_two_min_delta_pct: float = 0.02
    profile_bucket: float = 50.0


@dataclass
class RegimeConfig:
    adx_strong: float = 25.0
    compression_band_pct: float = 2.0
    compression_atr_pct: float = 0.8


@dataclass
class ScoringConfig:
    weights: Dict[int, List[float]] = field(default_factory=_default_weights)
    gates: Dict[int, int] = field(default_factory=_default_gates)
    default_gate: int = 5
    alignment_tolerance: float = 0.0005
    structure_atr_mult: float = 0.35
    structure_min_pct: float = 0.5
    liq_bonus_strong: float = 80e6
    liq_bonus_weak: float = 40e6

    def weights_for(self, play_id: int) -> List[float]:
        return list(self.weights.get(play_id) or [1.0, 1.0, 1.0, 1.0, 1.0])

    def gate_for(self, play_id: int) -> int:
        return int(self.gates.get(play_id, self.default_gate))


@dataclass
class RulesConfig:
    near_level_pct: float = 5.0
    breakout_confirm_pct: float = 0.1
    avwap_max_age_days: float = 30.0
    funding_z_min: float = 2.0
    liq_sweep_min_usd: float = 25e6
    liq_sweep_max_atr_pct: float = 1.5
    oi_box_min_pct_rank: float = 95.0
    oi_box_max_delta_pct: float = 2.0
    pullback_min_adx: float = 20.0
    orb_minute: int = 20
    orb_max_atr_pct: float = 0.5
    orb_min_asia_rel_vol: float = 1.2
    fade_max_band_pct: float = 3.0
    fade_max_distance_pct: float = 3.0
    kick_hours: List[int] = field(default_factory=lambda: [8, 14])
    kick_min_roc_pct: float = 0.4
    kick_min_session_rel_vol: float = 1.5


@dataclass
class LifecycleConfig:
    mute_minutes: int = 60
    ttl_minutes: int = 30
    a_tier: int = 8
    dedupe_bucket: float = 50.0
    cache_path: str = "/tmp/alert_cache.json"


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"
    timezone: str = "UTC+1"
    risk_pct: float = 0.5
    account_equity: float = 10_000.0
    stress_liq_divisor: float = 1e6
    footer: str = ""


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    structure: StructureConfig
    regime: RegimeConfig
    scoring: ScoringConfig
    rules: RulesConfig
    lifecycle: LifecycleConfig
    telegram: TelegramConfig
    webhook: WebhookConfig
    alerts: AlertsConfig


def _scoring_from_raw(raw: Dict[str, Any]) -> ScoringConfig:
    raw = dict(raw)
    cfg = ScoringConfig(**{k: v for k, v in raw.items() if k not in ("weights", "gates")})
    # YAML merges onto the defaults so a config can override a single play.
    for k, v in (raw.get("weights") or {}).items():
        cfg.weights[int(k)] = [float(x) for x in v]
    for k, v in (raw.get("gates") or {}).items():
        cfg.gates[int(k)] = int(v)
    return cfg


def build_config(raw: Optional[Dict[str, Any]] = None) -> Config:
    raw = raw or {}
    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        structure=StructureConfig(**raw.get("structure", {})),
        regime=RegimeConfig(**raw.get("regime", {})),
        scoring=_scoring_from_raw(raw.get("scoring", {})),
        rules=RulesConfig(**raw.get("rules", {})),
        lifecycle=LifecycleConfig(**raw.get("lifecycle", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        webhook=WebhookConfig(**raw.get("webhook", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}
    return cfg


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    cfg = build_config(raw)

    # env overrides (useful on CI runners)
    cfg.app.symbol = _env_override(cfg.app.symbol, "SYMBOL").upper()
    cfg.app.soft_fail = _env_override(cfg.app.soft_fail, "SOFT_FAIL")
    cfg.provider.rest_timeout_s = _env_override(cfg.provider.rest_timeout_s, "FETCH_TIMEOUT_S")
    cfg.provider.rest_max_retries = _env_override(cfg.provider.rest_max_retries, "FETCH_RETRIES")
    cfg.provider.liquidations_url = _env_override(cfg.provider.liquidations_url, "LIQUIDATIONS_URL")

    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_BOT_TOKEN")
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")

    # Allow TELEGRAM_CHAT_IDS="id1,id2" (TELEGRAM_CHAT_ID for a single chat)
    for key in ("TELEGRAM_CHAT_ID", "TELEGRAM_CHAT_IDS"):
        chat_env = os.getenv(key)
        if chat_env:
            cfg.telegram.chat_ids = _split_ids(chat_env)

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")

    cfg.alerts.risk_pct = _env_override(cfg.alerts.risk_pct, "RISK_PCT")
    cfg.alerts.account_equity = _env_override(cfg.alerts.account_equity, "ACCOUNT_EQUITY")

    return cfg


def validate_config(cfg: Config, *, dry_run: bool = False) -> None:
    errs = []
    if not (cfg.app.symbol or "").strip():
        errs.append("app.symbol is required")
    if cfg.telegram.enabled and not dry_run:
        if not (cfg.telegram.token or "").strip():
            errs.append("telegram.token (TELEGRAM_BOT_TOKEN) is required")
        if not cfg.telegram.chat_ids:
            errs.append("telegram.chat_ids (TELEGRAM_CHAT_ID) is required")
    if cfg.webhook.enabled and not cfg.webhook.url:
        errs.append("webhook.url is required when the webhook is enabled")
    for play_id, w in cfg.scoring.weights.items():
        if len(w) != 5:
            errs.append(f"scoring.weights[{play_id}] must have 5 entries, got {len(w)}")
        elif any(x < 0 for x in w):
            errs.append(f"scoring.weights[{play_id}] must not contain negative entries")
        elif sum(w) <= 0:
            errs.append(f"scoring.weights[{play_id}] must sum to a positive value")
    if errs:
        raise ConfigError("Invalid configuration: " + "; ".join(errs))
