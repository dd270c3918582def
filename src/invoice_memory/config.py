"""
Configuration management (SSOT).

This module defines ALL configuration for the invoice memory pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Thresholds are confidences in [0, 1]
- human_review_threshold <= auto_apply_threshold
- Storage paths configure the collaborators only, never the decision logic
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .confidence import ConfidenceSettings
from .rules.catalog import KNOWN_RULES, VendorRuleProfile, default_profiles

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class DuplicateSettings:
    """Duplicate detection settings."""

    # Similarity above which a fingerprint hit is appended to the lineage
    similarity_threshold: float = 0.8
    # Final confidence is multiplied by (1 - confidence_penalty) for duplicates
    confidence_penalty: float = 0.5
    # Recall-time factors for a previously seen fingerprint
    confirmed_factor: float = 0.3
    potential_factor: float = 0.7
    skip_learning_for_duplicates: bool = True


@dataclass
class StorageConfig:
    """Storage collaborator paths."""

    memory_path: Path = field(default_factory=lambda: Path("data/memory.json"))
    audit_log_path: Path = field(default_factory=lambda: Path("data/audit-log.jsonl"))


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    # Confidence thresholds
    auto_apply_threshold: float = 0.85
    human_review_threshold: float = 0.60

    confidence: ConfidenceSettings = field(default_factory=ConfidenceSettings)
    duplicates: DuplicateSettings = field(default_factory=DuplicateSettings)
    storage: StorageConfig = field(default_factory=StorageConfig)
    vendor_profiles: list[VendorRuleProfile] = field(default_factory=default_profiles)

    def validate(self) -> list[str]:
        """Validate configuration consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        for name in ("auto_apply_threshold", "human_review_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"{name} must be within [0, 1], got {value}")
        if self.human_review_threshold > self.auto_apply_threshold:
            errors.append("human_review_threshold must be <= auto_apply_threshold")

        c = self.confidence
        if not 0.0 <= c.memory_decay_rate < 1.0:
            errors.append("confidence.memory_decay_rate must be within [0, 1)")
        if not c.min_confidence < c.deactivation_threshold < c.initial < c.max_confidence:
            errors.append(
                "confidence bounds must satisfy "
                "min_confidence < deactivation_threshold < initial < max_confidence"
            )
        if c.max_confidence > 1.0:
            errors.append("confidence.max_confidence must be <= 1")
        if c.min_reinforcement_count < 0:
            errors.append("confidence.min_reinforcement_count must be >= 0")
        if not 0.0 <= c.max_contradiction_ratio <= 1.0:
            errors.append("confidence.max_contradiction_ratio must be within [0, 1]")

        d = self.duplicates
        if not 0.0 <= d.confidence_penalty <= 1.0:
            errors.append("duplicates.confidence_penalty must be within [0, 1]")

        for profile in self.vendor_profiles:
            if not profile.name_patterns:
                errors.append(f"vendor profile {profile.name!r} has no name_patterns")
            unknown = [r for r in profile.rules if r not in KNOWN_RULES]
            if unknown:
                errors.append(f"vendor profile {profile.name!r} has unknown rules: {unknown}")

        return errors


def _env_float(name: str, default: float) -> float:
    """Float from the environment; unparseable values keep the default."""
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - INVOICE_MEMORY_AUTO_APPLY_THRESHOLD
    - INVOICE_MEMORY_REVIEW_THRESHOLD
    - INVOICE_MEMORY_DECAY_RATE
    - INVOICE_MEMORY_STORE_PATH
    - INVOICE_MEMORY_AUDIT_LOG
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Confidence engine
    conf_data = data.get("confidence", {})
    defaults = ConfidenceSettings()
    confidence = ConfidenceSettings(
        initial=conf_data.get("initial", defaults.initial),
        max_confidence=conf_data.get("max_confidence", defaults.max_confidence),
        min_confidence=conf_data.get("min_confidence", defaults.min_confidence),
        reinforce_delta=conf_data.get("reinforce_delta", defaults.reinforce_delta),
        min_reinforce_step=conf_data.get("min_reinforce_step", defaults.min_reinforce_step),
        penalize_delta=conf_data.get("penalize_delta", defaults.penalize_delta),
        deactivation_threshold=conf_data.get(
            "deactivation_threshold", defaults.deactivation_threshold
        ),
        decay_grace_period_days=conf_data.get(
            "decay_grace_period_days", defaults.decay_grace_period_days
        ),
        memory_decay_rate=_env_float(
            "INVOICE_MEMORY_DECAY_RATE",
            conf_data.get("memory_decay_rate", defaults.memory_decay_rate),
        ),
        min_reinforcement_count=conf_data.get(
            "min_reinforcement_count", defaults.min_reinforcement_count
        ),
        max_contradiction_ratio=conf_data.get(
            "max_contradiction_ratio", defaults.max_contradiction_ratio
        ),
    )

    # Duplicate detection
    dup_data = data.get("duplicates", {})
    duplicates = DuplicateSettings(
        similarity_threshold=dup_data.get("similarity_threshold", 0.8),
        confidence_penalty=dup_data.get("confidence_penalty", 0.5),
        confirmed_factor=dup_data.get("confirmed_factor", 0.3),
        potential_factor=dup_data.get("potential_factor", 0.7),
        skip_learning_for_duplicates=dup_data.get("skip_learning_for_duplicates", True),
    )

    # Storage collaborators
    storage_data = data.get("storage", {})
    storage = StorageConfig(
        memory_path=Path(
            os.environ.get(
                "INVOICE_MEMORY_STORE_PATH", storage_data.get("memory_path", "data/memory.json")
            )
        ),
        audit_log_path=Path(
            os.environ.get(
                "INVOICE_MEMORY_AUDIT_LOG",
                storage_data.get("audit_log_path", "data/audit-log.jsonl"),
            )
        ),
    )

    # Vendor rule catalog
    if "vendor_profiles" in data:
        vendor_profiles = [VendorRuleProfile.from_dict(p) for p in data["vendor_profiles"] or []]
    else:
        vendor_profiles = default_profiles()

    return Config(
        auto_apply_threshold=_env_float(
            "INVOICE_MEMORY_AUTO_APPLY_THRESHOLD", data.get("auto_apply_threshold", 0.85)
        ),
        human_review_threshold=_env_float(
            "INVOICE_MEMORY_REVIEW_THRESHOLD", data.get("human_review_threshold", 0.60)
        ),
        confidence=confidence,
        duplicates=duplicates,
        storage=storage,
        vendor_profiles=vendor_profiles,
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Invoice Memory Pipeline Configuration
#
# Thresholds are confidences in [0, 1]:
# - at/above auto_apply_threshold a correction is applied without review
# - below human_review_threshold the whole invoice is escalated

auto_apply_threshold: 0.85
human_review_threshold: 0.60

# Confidence lifecycle
confidence:
  initial: 0.3                   # New memories: plausible, not trusted
  max_confidence: 0.95           # Memories are never fully certain
  min_confidence: 0.0
  reinforce_delta: 0.15          # Scaled by remaining headroom
  min_reinforce_step: 0.01
  penalize_delta: 0.2
  deactivation_threshold: 0.1    # Below this a memory is no longer recalled
  decay_grace_period_days: 7
  memory_decay_rate: 0.02        # Per day beyond the grace period
  min_reinforcement_count: 3     # Trust gate for auto-applying corrections
  max_contradiction_ratio: 0.3

# Duplicate detection
duplicates:
  similarity_threshold: 0.8
  confidence_penalty: 0.5        # Final confidence x (1 - penalty)
  confirmed_factor: 0.3
  potential_factor: 0.7
  skip_learning_for_duplicates: true

# Storage collaborators
storage:
  memory_path: "data/memory.json"
  audit_log_path: "data/audit-log.jsonl"

# Vendor rule catalog
# Rules: service_date_mapping, vat_inclusive, currency_from_text,
#        skonto_terms, freight_sku
vendor_profiles:
  - name: "Supplier GmbH"
    name_patterns: ["supplier gmbh", "supplier", "lieferant gmbh"]
    rules: ["service_date_mapping"]
    options:
      service_date_mapping:
        source_field: "Leistungsdatum"
  - name: "Parts AG"
    name_patterns: ["parts ag", "parts", "teile ag"]
    rules: ["vat_inclusive", "currency_from_text"]
  - name: "Freight & Co"
    name_patterns: ["freight & co", "freight and co", "freight co", "fracht & co"]
    rules: ["skonto_terms", "freight_sku"]
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
