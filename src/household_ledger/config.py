"""
Configuration management (SSOT).

This module defines ALL configuration for the household ledger.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Provider credentials never appear in logs or API responses
- Thresholds are fractions in [0, 1]
- The sync window is expressed in whole days back from today
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class BankDataConfig:
    """Bank-data provider (account information API) configuration.

    The provider issues short-lived access tokens from a secret id/key pair;
    the client refreshes them on its own.
    """

    base_url: str = "https://bankaccountdata.gocardless.com/api/v2"
    secret_id: str = ""
    secret_key: str = ""
    # Request timeout (seconds)
    timeout_seconds: int = 30
    # Retries for 429/5xx responses
    max_retries: int = 3


@dataclass
class KeywordRule:
    """A keyword rule used by the keyword scorer."""

    keywords: list[str]
    flow: str
    major_category: str
    category: str
    sub_category: str
    # Higher priority wins when several rules match (1..10)
    priority: int = 5


@dataclass
class ScoringConfig:
    """Category scoring collaborator configuration.

    mode:
    - keywords: deterministic keyword rules (default)
    - remote: HTTP scoring service
    - off: never suggest, every machine-categorized record falls back to Unknown
    """

    mode: str = "keywords"
    url: str = "http://localhost:8500/score"
    # Optional authentication header value ("Bearer <token>")
    auth_header: str | None = None
    timeout_seconds: int = 10
    rules: list[KeywordRule] = field(default_factory=list)


@dataclass
class CategorizationConfig:
    """Categorization thresholds."""

    # Suggestions below this confidence fall back to the Unknown category
    min_confidence: float = 0.1
    # Confidence recorded on Unknown fallbacks
    unknown_confidence: float = 0.1


@dataclass
class ImportConfig:
    """Bulk import job settings."""

    # Jobs stuck in processing longer than this are failed by the watchdog
    job_timeout_minutes: int = 60
    # Uploads larger than this are rejected before parsing
    max_upload_mb: int = 10

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@dataclass
class SyncConfig:
    """Provider synchronization settings."""

    # Default sync window (days back from today)
    default_window_days: int = 30
    # Skip accounts synced more recently than this unless forced (0 = never skip)
    min_interval_minutes: int = 0
    # Origin used when the provider reports no account owner
    default_origin: str = "Shared"


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    bankdata: BankDataConfig = field(default_factory=BankDataConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    categorization: CategorizationConfig = field(default_factory=CategorizationConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.bankdata.base_url:
            errors.append("bankdata.base_url is required")

        if self.scoring.mode not in ("keywords", "remote", "off"):
            errors.append(f"scoring.mode must be keywords, remote or off (got {self.scoring.mode!r})")
        if self.scoring.mode == "remote" and not self.scoring.url:
            errors.append("scoring.url is required when scoring.mode is remote")

        for name in ("min_confidence", "unknown_confidence"):
            value = getattr(self.categorization, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"categorization.{name} must be between 0 and 1")

        if self.sync.default_window_days < 1:
            errors.append("sync.default_window_days must be at least 1")
        if self.imports.job_timeout_minutes < 1:
            errors.append("imports.job_timeout_minutes must be at least 1")
        if self.imports.max_upload_mb < 1:
            errors.append("imports.max_upload_mb must be at least 1")
        if not self.sync.default_origin.strip():
            errors.append("sync.default_origin must not be empty")

        return errors

    def require_valid(self) -> None:
        """Raise ConfigValidationError if the configuration is invalid."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def _parse_rules(raw_rules: list[dict[str, Any]] | None) -> list[KeywordRule]:
    rules = []
    for raw in raw_rules or []:
        rules.append(
            KeywordRule(
                keywords=[str(k).lower() for k in raw.get("keywords", [])],
                flow=raw.get("flow", "OUTFLOW"),
                major_category=raw.get("major_category", "VARIABLE_COSTS"),
                category=raw.get("category", ""),
                sub_category=raw.get("sub_category", ""),
                priority=int(raw.get("priority", 5)),
            )
        )
    return rules


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - BANKDATA_URL
    - BANKDATA_SECRET_ID
    - BANKDATA_SECRET_KEY
    - SCORING_MODE (keywords/remote/off)
    - SCORING_URL
    - LEDGER_STATE_DB
    - LEDGER_SYNC_WINDOW_DAYS
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Bank-data provider
    bank_data = data.get("bankdata", {})
    bankdata = BankDataConfig(
        base_url=os.environ.get(
            "BANKDATA_URL",
            bank_data.get("base_url", "https://bankaccountdata.gocardless.com/api/v2"),
        ),
        secret_id=os.environ.get("BANKDATA_SECRET_ID", bank_data.get("secret_id", "")),
        secret_key=os.environ.get("BANKDATA_SECRET_KEY", bank_data.get("secret_key", "")),
        timeout_seconds=bank_data.get("timeout_seconds", 30),
        max_retries=bank_data.get("max_retries", 3),
    )

    # Scoring collaborator
    scoring_data = data.get("scoring", {})
    scoring = ScoringConfig(
        mode=os.environ.get("SCORING_MODE", scoring_data.get("mode", "keywords")).lower(),
        url=os.environ.get("SCORING_URL", scoring_data.get("url", "http://localhost:8500/score")),
        auth_header=scoring_data.get("auth_header"),
        timeout_seconds=scoring_data.get("timeout_seconds", 10),
        rules=_parse_rules(scoring_data.get("rules")),
    )

    cat_data = data.get("categorization", {})
    categorization = CategorizationConfig(
        min_confidence=float(cat_data.get("min_confidence", 0.1)),
        unknown_confidence=float(cat_data.get("unknown_confidence", 0.1)),
    )

    imports_data = data.get("imports", {})
    imports = ImportConfig(
        job_timeout_minutes=imports_data.get("job_timeout_minutes", 60),
        max_upload_mb=imports_data.get("max_upload_mb", 10),
    )

    # Sync window
    sync_data = data.get("sync", {})
    window_days = sync_data.get("default_window_days", 30)
    window_env = os.environ.get("LEDGER_SYNC_WINDOW_DAYS", "")
    if window_env:
        try:
            window_days = int(window_env)
        except ValueError:
            pass  # Keep configured value

    sync = SyncConfig(
        default_window_days=window_days,
        min_interval_minutes=sync_data.get("min_interval_minutes", 0),
        default_origin=sync_data.get("default_origin", "Shared"),
    )

    state_db = os.environ.get("LEDGER_STATE_DB", data.get("state_db_path", "data/ledger.db"))

    return Config(
        bankdata=bankdata,
        scoring=scoring,
        categorization=categorization,
        imports=imports,
        sync=sync,
        state_db_path=Path(state_db),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Household ledger configuration

# Bank-data provider (account information API)
bankdata:
  base_url: "https://bankaccountdata.gocardless.com/api/v2"
  secret_id: "YOUR_SECRET_ID"
  secret_key: "YOUR_SECRET_KEY"
  timeout_seconds: 30
  max_retries: 3                           # Retries on 429/5xx

# Category scoring for provider transactions
scoring:
  mode: "keywords"                         # keywords, remote or off
  url: "http://localhost:8500/score"       # Used when mode is remote
  auth_header: null
  timeout_seconds: 10
  rules:
    - keywords: ["salary", "payroll"]
      flow: "INFLOW"
      major_category: "INCOME"
      category: "Salary"
      sub_category: "Net Salary"
      priority: 10
    - keywords: ["supermarket", "grocery", "lidl", "aldi"]
      flow: "OUTFLOW"
      major_category: "VARIABLE_COSTS"
      category: "Food"
      sub_category: "Groceries"
      priority: 10
    - keywords: ["electricity", "water", "internet"]
      flow: "OUTFLOW"
      major_category: "FIXED_COSTS"
      category: "Home"
      sub_category: "Utilities"
      priority: 9

# Categorization thresholds
categorization:
  min_confidence: 0.1                      # Below this, use the Unknown category
  unknown_confidence: 0.1                  # Confidence stored on Unknown fallbacks

# Bulk imports
imports:
  job_timeout_minutes: 60                  # Watchdog fails jobs stuck longer than this
  max_upload_mb: 10                        # Larger uploads are rejected

# Provider synchronization
sync:
  default_window_days: 30                  # Days back from today
  min_interval_minutes: 0                  # Skip recently synced accounts unless forced
  default_origin: "Shared"                 # Origin when the account has no owner

# State database path
state_db_path: "data/ledger.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
