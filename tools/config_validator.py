"""
Configuration Validation Module

Validates config/funnel.yaml against Pydantic schemas and runs logical
sanity checks before a funnel run starts.

Usage:
    from tools.config_validator import load_funnel_config

    config = load_funnel_config("config/funnel.yaml")   # raises ConfigError

    python -m tools.config_validator config/funnel.yaml
"""
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config") / "funnel.yaml"
WEIGHT_TOLERANCE = 0.01


class ConfigError(ValueError):
    """Funnel configuration failed schema or sanity validation."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


# ===== Layer schemas =====
class ScreenerConfig(BaseModel):
    """Layer 1 eligibility screening"""
    min_candles: int = Field(default=50, ge=1, description="Minimum daily candles")
    min_price: float = Field(default=50.0, ge=0, description="Minimum latest close")
    max_price: float = Field(default=50_000.0, gt=0, description="Maximum latest close")
    exclude_penny_stocks: bool = Field(default=False, description="Apply min/max price filter")
    min_score: float = Field(default=0.0, ge=0, le=100, description="Minimum combined score")
    limit: int = Field(default=50, gt=0, description="Max candidates out of Layer 1")
    base_weight: float = Field(default=0.6, ge=0, le=1, description="Weight of base indicator score")
    mtf_weight: float = Field(default=0.4, ge=0, le=1, description="Weight of multi-timeframe score")
    use_ema200: bool = Field(default=True, description="Score the EMA200 trend")
    require_volume_confirmation: bool = Field(default=True, description="Score volume spikes")
    min_volume_spike: float = Field(default=1.5, gt=0, description="Volume / average ratio for a spike")

    @field_validator('max_price')
    @classmethod
    def validate_price_band(cls, v: float, info) -> float:
        """Ensure max_price > min_price"""
        min_price = info.data.get('min_price', 0)
        if v <= min_price:
            raise ValueError(f"max_price ({v}) must be > min_price ({min_price})")
        return v


class RankerWeights(BaseModel):
    quality: float = Field(default=0.6, ge=0, le=1)
    base: float = Field(default=0.25, ge=0, le=1)
    mtf: float = Field(default=0.15, ge=0, le=1)


class QualityRankerConfig(BaseModel):
    """Layer 2 quality ranking"""
    limit: int = Field(default=30, gt=0, description="Max candidates out of Layer 2")
    weights: RankerWeights = Field(default_factory=RankerWeights)


class AIProviderConfig(BaseModel):
    """One model provider in priority order"""
    provider: str = Field(pattern="^(openai|anthropic|ollama|mock)$", description="Provider name")
    model: Optional[str] = Field(default=None, description="Model name")
    base_url: Optional[str] = Field(default=None, description="Override endpoint")
    api_key_env: Optional[str] = Field(default=None, description="Env var holding the API key")
    fixed_response: Optional[str] = Field(default=None, description="Mock provider response")


class AIConfig(BaseModel):
    """Layer 3 AI scoring"""
    enabled: bool = Field(default=True)
    providers: List[AIProviderConfig] = Field(default_factory=list)
    temperature: float = Field(default=0.3, ge=0, le=2)
    max_tokens: int = Field(default=800, gt=0)
    timeout_s: float = Field(default=20.0, gt=0, description="Per-call timeout (seconds)")
    max_evaluations: int = Field(default=15, gt=0, description="Max candidates sent to the model")
    cache_ttl_hours: float = Field(default=24.0, ge=0, description="Response cache TTL (hours)")
    max_calls: Optional[int] = Field(default=None, gt=0, description="Per-run call budget")
    min_confidence: Optional[float] = Field(default=None, ge=0, le=10, description="Drop evaluations below")
    cost_rates: Optional[Dict[str, Dict[str, float]]] = Field(default=None, description="USD per 1K tokens")

    @field_validator('cost_rates')
    @classmethod
    def validate_cost_rates(cls, v: Optional[Dict[str, Dict[str, float]]]) -> Optional[Dict[str, Dict[str, float]]]:
        """Each model needs non-negative input and output rates"""
        if v is None:
            return v
        for model, rate in v.items():
            missing = {"input", "output"} - set(rate)
            if missing:
                raise ValueError(f"cost_rates.{model} missing {', '.join(sorted(missing))}")
            if any(r < 0 for r in rate.values()):
                raise ValueError(f"cost_rates.{model} rates must be >= 0")
        return v


class CapacityWeights(BaseModel):
    screener: float = Field(ge=0, le=1)
    ai: float = Field(ge=0, le=1)


class CapacityConfig(BaseModel):
    """Layer 4 capacity filter"""
    final_limit: Dict[str, int] = Field(default_factory=dict, description="Final picks by run type")
    weights: Dict[str, CapacityWeights] = Field(default_factory=dict, description="Score blend by run type")
    tier_1_min_score: float = Field(default=60.0, ge=0, le=100)
    tier_2_min_score: float = Field(default=40.0, ge=0, le=100)
    max_open_positions: int = Field(default=10, gt=0)
    max_exposure_pct: float = Field(default=80.0, gt=0, le=100)
    max_drawdown_pct: float = Field(default=15.0, gt=0, le=100)
    max_consecutive_losses: int = Field(default=3, gt=0)
    daily_loss_limit_pct: float = Field(default=2.0, gt=0, le=100)

    @field_validator('final_limit')
    @classmethod
    def validate_final_limit(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Final limits are non-negative and keyed by run type"""
        for run_type, limit in v.items():
            if run_type not in ("swing", "longterm"):
                raise ValueError(f"Unknown run type '{run_type}' in final_limit")
            if limit < 0:
                raise ValueError(f"final_limit.{run_type} must be >= 0, got {limit}")
        return v


class DecisionConfig(BaseModel):
    """Decision gate thresholds"""
    min_risk_reward: float = Field(default=2.0, gt=0)
    min_confidence: float = Field(default=60.0, ge=0, le=100)


class SizingConfig(BaseModel):
    """Trade intent levels and position sizing"""
    risk_pct: float = Field(default=0.75, gt=0, le=100, description="Capital risked per trade %")
    max_position_pct: float = Field(default=20.0, gt=0, le=100, description="Max capital per position %")
    tp_multiple: float = Field(default=2.5, gt=0)
    extended_multiple: float = Field(default=4.0, gt=0)
    atr_stop_multiple: float = Field(default=2.0, gt=0)
    ema_entry_band_pct: float = Field(default=2.0, ge=0)


class HealthConfig(BaseModel):
    """Run health thresholds"""
    min_compression: float = Field(default=2.0, ge=0, le=100)
    max_compression: float = Field(default=10.0, ge=0, le=100)
    min_eligible: int = Field(default=50, ge=0)
    max_eligible: int = Field(default=200, ge=0)
    min_final: int = Field(default=1, ge=0)
    max_final: int = Field(default=10, ge=0)
    max_overlap: float = Field(default=80.0, ge=0, le=100)
    max_ai_cost: float = Field(default=10.0, ge=0)


class UniverseConfig(BaseModel):
    file: Optional[str] = Field(default=None, description="Instrument list (YAML/JSON)")
    instruments: List[Dict[str, Any]] = Field(default_factory=list)
    exchanges: List[str] = Field(default_factory=list)
    segments: List[str] = Field(default_factory=list)
    exclude_symbols: List[str] = Field(default_factory=list)


class IndicatorsConfig(BaseModel):
    facts_file: Optional[str] = Field(default=None, description="Precomputed indicator facts (YAML/JSON)")


class StorageConfig(BaseModel):
    db_path: str = Field(default="data/funnel.db", min_length=1)


class AlertsConfig(BaseModel):
    enabled: bool = Field(default=False)
    webhook_url: Optional[str] = Field(default=None)
    webhook_env: str = Field(default="FUNNEL_ALERT_WEBHOOK_URL")
    min_severity: str = Field(default="warning")
    dry_run: bool = Field(default=False)
    timeout_seconds: float = Field(default=5.0, gt=0)
    dedupe_seconds: float = Field(default=300.0, ge=0)

    @field_validator('min_severity')
    @classmethod
    def validate_severity(cls, v: str) -> str:
        if v.lower() not in ("info", "warning", "critical"):
            raise ValueError(f"min_severity must be info, warning or critical, got '{v}'")
        return v.lower()


class MonitoringConfig(BaseModel):
    metrics_enabled: bool = Field(default=False)
    metrics_port: int = Field(default=9101, ge=1, le=65535)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    file: Optional[str] = Field(default="logs/funnel.log")


class AuditConfig(BaseModel):
    file: Optional[str] = Field(default="logs/funnel_audit.jsonl")


class FunnelConfigSchema(BaseModel):
    """Complete funnel configuration schema"""
    screener: ScreenerConfig = Field(default_factory=ScreenerConfig)
    quality_ranker: QualityRankerConfig = Field(default_factory=QualityRankerConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    capacity: CapacityConfig = Field(default_factory=CapacityConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    universe: UniverseConfig = Field(default_factory=UniverseConfig)
    indicators: IndicatorsConfig = Field(default_factory=IndicatorsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)


# ===== Validation Functions =====
def _format_yaml_error(file_path: Path, error: yaml.YAMLError) -> str:
    """Return enriched message with line/column context for YAML errors."""
    mark = getattr(error, "problem_mark", None)
    if mark is None:
        return f"Malformed YAML in {file_path}: {error}"

    problem = getattr(error, "problem", str(error))
    try:
        raw_lines = file_path.read_text().splitlines()
    except OSError:
        return f"Malformed YAML in {file_path}: line {mark.line + 1}, column {mark.column + 1}: {problem}"

    start = max(mark.line - 2, 0)
    end = min(mark.line + 3, len(raw_lines))
    snippet = "\n".join(
        f"{'▶' if idx == mark.line else ' '} {idx + 1:04d} | {raw_lines[idx]}"
        for idx in range(start, end)
    )
    return (
        f"Malformed YAML in {file_path}: line {mark.line + 1}, column {mark.column + 1}: {problem}\n"
        f"Context:\n{snippet}"
    )


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load YAML file and return as dict.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {file_path}")

    with open(file_path, 'r') as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise yaml.YAMLError(_format_yaml_error(file_path, e))


def validate_funnel_config(config: Dict[str, Any], source: str = "funnel.yaml") -> List[str]:
    """
    Validate a funnel config mapping against the schema.

    Returns:
        List of error messages (empty if valid)
    """
    if not isinstance(config, dict):
        return [f"{source}: top level must be a mapping, got {type(config).__name__}"]

    errors = []
    try:
        FunnelConfigSchema(**config)
    except ValidationError as e:
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            errors.append(f"{source}: {field}: {error['msg']}")
    return errors


def validate_sanity_checks(config: Dict[str, Any]) -> List[str]:
    """
    Logical consistency checks the schema cannot express.

    Detects:
    - Contradictions (tier_2 threshold above tier_1)
    - Score weights that do not sum to 1.0

    Advisory issues (AI evaluation cap above ranker output, final limit
    above max open positions) are logged as warnings only.

    Returns:
        List of sanity check error messages (empty if all pass)
    """
    errors = []
    schema = FunnelConfigSchema(**config)

    capacity = schema.capacity
    if capacity.tier_2_min_score >= capacity.tier_1_min_score:
        errors.append(
            f"CONTRADICTION: capacity.tier_2_min_score ({capacity.tier_2_min_score}) >= "
            f"tier_1_min_score ({capacity.tier_1_min_score}). Tier 2 must sit below tier 1."
        )

    for run_type, weights in capacity.weights.items():
        total = weights.screener + weights.ai
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            errors.append(f"UNSAFE: capacity.weights.{run_type} sum to {total:.2f}, expected 1.0")

    screener = schema.screener
    total = screener.base_weight + screener.mtf_weight
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        errors.append(f"UNSAFE: screener.base_weight + mtf_weight = {total:.2f}, expected 1.0")

    ranker_weights = schema.quality_ranker.weights
    total = ranker_weights.quality + ranker_weights.base + ranker_weights.mtf
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        errors.append(f"UNSAFE: quality_ranker.weights sum to {total:.2f}, expected 1.0")

    health = schema.health
    if health.min_compression > health.max_compression:
        errors.append(
            f"CONTRADICTION: health.min_compression ({health.min_compression}) > "
            f"max_compression ({health.max_compression})"
        )
    if health.min_eligible > health.max_eligible:
        errors.append(
            f"CONTRADICTION: health.min_eligible ({health.min_eligible}) > max_eligible ({health.max_eligible})"
        )
    if health.min_final > health.max_final:
        errors.append(f"CONTRADICTION: health.min_final ({health.min_final}) > max_final ({health.max_final})")

    if schema.ai.max_evaluations > schema.quality_ranker.limit:
        logger.warning(
            "ai.max_evaluations (%d) > quality_ranker.limit (%d); at most %d candidates reach the model",
            schema.ai.max_evaluations, schema.quality_ranker.limit, schema.quality_ranker.limit,
        )
    for run_type, limit in capacity.final_limit.items():
        if limit > capacity.max_open_positions:
            logger.warning(
                "capacity.final_limit.%s (%d) > max_open_positions (%d)",
                run_type, limit, capacity.max_open_positions,
            )
    if schema.ai.enabled and not schema.ai.providers:
        logger.warning("ai.enabled=true but no ai.providers configured; AI scoring will pass candidates through")

    if not errors:
        logger.info("✅ Configuration sanity checks passed")
    else:
        logger.warning(f"⚠️  {len(errors)} sanity check issue(s) found")
    return errors


def validate_config_file(config_path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> List[str]:
    """
    Validate a funnel config file: schema first, then sanity checks.

    Returns:
        List of all error messages (empty if valid)
    """
    path = Path(config_path)
    try:
        config = load_yaml_file(path)
    except FileNotFoundError as e:
        return [f"{path.name}: {e}"]
    except yaml.YAMLError as e:
        return [f"{path.name}: Invalid YAML - {e}"]

    errors = validate_funnel_config(config, source=path.name)
    if not errors:
        errors.extend(validate_sanity_checks(config))

    if not errors:
        logger.info(f"✅ {path.name} validated successfully")
    else:
        logger.error(f"❌ {len(errors)} validation error(s) found in {path}")
    return errors


def load_funnel_config(config_path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load and validate the funnel config.

    Returns:
        Config dict with every section present and defaults filled in

    Raises:
        ConfigError: on a missing file, malformed YAML, schema or sanity errors
    """
    errors = validate_config_file(config_path)
    if errors:
        raise ConfigError(errors)
    config = load_yaml_file(Path(config_path))
    return FunnelConfigSchema(**config).model_dump()


if __name__ == "__main__":
    """Run validation from command line"""
    import sys

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    config_file = sys.argv[1] if len(sys.argv) > 1 else str(DEFAULT_CONFIG_PATH)

    errors = validate_config_file(config_file)

    if errors:
        print("\n❌ Configuration Validation Failed:\n")
        for error in errors:
            print(f"  • {error}")
        print()
        sys.exit(1)
    else:
        print(f"\n✅ {config_file} is valid!\n")
        sys.exit(0)
