# arbwatch/config.py
import yaml
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional, Tuple
from yarl import URL

from .errors import ConfigurationError

KNOWN_VENUE_KINDS = ("binance", "huobi")


@dataclass(frozen=True)
class ConnectionConfig:
    reconnect_delay_ms: int = 5000
    idle_timeout_ms: int = 60000
    # aiohttp protocol-level ping; 0 disables it
    ping_interval_ms: int = 0
    connect_timeout_ms: int = 10000


@dataclass(frozen=True)
class SkewConfig:
    window_size: int = 50
    base_multiplier: float = 1.5
    multiplier_cap: float = 3.0
    initial_floor_ms: float = 300.0


@dataclass(frozen=True)
class VenueConfig:
    name: str
    kind: str
    url: str
    explicit_subscribe: bool = False


@dataclass(frozen=True)
class ArbitrageConfig:
    """
    Everything the core consumes, passed explicitly into each component.
    `margin_threshold_percent` is in percent: 0.03 means 0.03%, not 3%.
    """
    instrument: str = "ethusdt"
    margin_threshold_percent: float = 0.03
    price_expiry_ms: int = 5000
    stats_interval_ms: int = 60000
    dispatch_queue_size: int = 1000
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    skew: SkewConfig = field(default_factory=SkewConfig)
    venues: Tuple[VenueConfig, ...] = ()
    audit_log: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ArbitrageConfig":
        if not isinstance(raw, dict):
            raise ConfigurationError("configuration root must be a mapping")

        detection = raw.get("detection", {}) or {}
        conn = raw.get("connection", {}) or {}
        skew = raw.get("skew", {}) or {}
        stats = raw.get("stats", {}) or {}
        dispatch = raw.get("dispatch", {}) or {}
        audit = raw.get("audit", {}) or {}
        logging_cfg = raw.get("logging", {}) or {}

        instrument = str(raw.get("instrument", cls.instrument)).strip().lower()
        try:
            cfg = cls(
                instrument=instrument,
                margin_threshold_percent=float(detection.get("margin_threshold_percent", cls.margin_threshold_percent)),
                price_expiry_ms=int(detection.get("price_expiry_ms", cls.price_expiry_ms)),
                stats_interval_ms=int(stats.get("interval_ms", cls.stats_interval_ms)),
                dispatch_queue_size=int(dispatch.get("queue_size", cls.dispatch_queue_size)),
                connection=ConnectionConfig(
                    reconnect_delay_ms=int(conn.get("reconnect_delay_ms", ConnectionConfig.reconnect_delay_ms)),
                    idle_timeout_ms=int(conn.get("idle_timeout_ms", ConnectionConfig.idle_timeout_ms)),
                    ping_interval_ms=int(conn.get("ping_interval_ms", ConnectionConfig.ping_interval_ms)),
                    connect_timeout_ms=int(conn.get("connect_timeout_ms", ConnectionConfig.connect_timeout_ms)),
                ),
                skew=SkewConfig(
                    window_size=int(skew.get("window_size", SkewConfig.window_size)),
                    base_multiplier=float(skew.get("base_multiplier", SkewConfig.base_multiplier)),
                    multiplier_cap=float(skew.get("multiplier_cap", SkewConfig.multiplier_cap)),
                    initial_floor_ms=float(skew.get("initial_floor_ms", SkewConfig.initial_floor_ms)),
                ),
                venues=_parse_venues(raw.get("venues", {}) or {}, instrument),
                audit_log=audit.get("opportunity_log"),
                log_level=str(logging_cfg.get("level", cls.log_level)).upper(),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid value in configuration: {e}") from e

        cfg.validate()
        return cfg

    def validate(self):
        if not self.instrument:
            raise ConfigurationError("instrument symbol is required")
        if self.margin_threshold_percent < 0:
            raise ConfigurationError(f"margin threshold must be >= 0, got {self.margin_threshold_percent}")
        if self.price_expiry_ms <= 0:
            raise ConfigurationError("price_expiry_ms must be > 0")
        if self.stats_interval_ms <= 0:
            raise ConfigurationError("stats interval must be > 0")
        if self.dispatch_queue_size <= 0:
            raise ConfigurationError("dispatch queue size must be > 0")

        c = self.connection
        if c.reconnect_delay_ms < 0 or c.idle_timeout_ms <= 0 or c.connect_timeout_ms <= 0 or c.ping_interval_ms < 0:
            raise ConfigurationError(f"invalid connection timings: {c}")

        s = self.skew
        if s.window_size <= 0:
            raise ConfigurationError("skew window size must be > 0")
        if s.base_multiplier <= 0 or s.multiplier_cap < s.base_multiplier:
            raise ConfigurationError(f"invalid skew multiplier base/cap: {s.base_multiplier}/{s.multiplier_cap}")
        if s.initial_floor_ms < 0:
            raise ConfigurationError("skew floor must be >= 0")

        if len(self.venues) < 2:
            raise ConfigurationError("need at least 2 venues for arbitrage")

    def select_venues(self, names) -> "ArbitrageConfig":
        """Copy of this config restricted to `names` (interactive selection)."""
        kept = tuple(v for v in self.venues if v.name in names)
        cfg = replace(self, venues=kept)
        cfg.validate()
        return cfg


def _parse_venues(raw: Dict[str, Any], instrument: str) -> Tuple[VenueConfig, ...]:
    if not isinstance(raw, dict):
        raise ConfigurationError("venues must be a mapping of name -> options")
    venues = []
    for name, opts in raw.items():
        opts = opts or {}
        kind = str(opts.get("kind", name)).lower()
        if kind not in KNOWN_VENUE_KINDS:
            raise ConfigurationError(f"unknown venue kind '{kind}' for '{name}'")

        url = str(opts.get("url", "")).replace("{symbol}", instrument)
        try:
            parsed = URL(url)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid url for venue '{name}': {url}") from e
        if parsed.scheme not in ("ws", "wss") or not parsed.host:
            raise ConfigurationError(f"venue '{name}' url must be ws:// or wss://, got '{url}'")

        venues.append(VenueConfig(
            name=str(name),
            kind=kind,
            url=url,
            explicit_subscribe=bool(opts.get("explicit_subscribe", False)),
        ))
    return tuple(venues)


def load_config(path: str = "config.yaml") -> ArbitrageConfig:
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"malformed YAML in {path}: {e}") from e
    return ArbitrageConfig.from_dict(raw or {})
