"""Load, validate, and hot-reload the remindkit engine configuration.

The config lives in ``engine_config.yaml`` alongside this module.  It is
loaded once on first use and cached.  Call ``reload_engine_config()`` to
re-read from disk after an edit.

Usage::

    from remindkit.config_loader import get_engine_config

    config = get_engine_config()
    config.horizons.upcoming_days                 # 30
    config.menstrual.cycle_length.average_max_days  # 35
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path

logger = logging.getLogger("remindkit.config")

# Path to the YAML file sitting next to this module
_CONFIG_PATH = Path(__file__).parent / "engine_config.yaml"


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class HorizonConfig:
    """Scan horizons for occurrence enumeration.

    The two values are deliberately unrelated: one sizes "upcoming" lists,
    the other bounds one-shot materialization of every-N-days rules.
    """

    upcoming_days: int = 30
    interval_materialization_days: int = 60


@dataclass
class SchedulingConfig:
    """Trigger planner settings."""

    min_lead_seconds: int = 10
    retry_attempts: int = 3
    retry_base_delay_s: float = 0.5
    short_interval_max_days: int = 3
    short_interval_refresh_days: int = 7


@dataclass
class BirthdayConfig:
    """Times of day for the three birthday triggers."""

    reminder_time: time = time(9, 0)
    midnight_time: time = time(0, 1)
    congratulate_time: time = time(9, 0)


@dataclass
class LengthBounds:
    """Inclusive day-count bounds."""

    min_days: int
    max_days: int

    def contains(self, value: int | None) -> bool:
        return value is not None and self.min_days <= value <= self.max_days


@dataclass
class CycleLengthConfig:
    """Cycle length bounds.

    ``storage`` decides whether a computed length is kept at all;
    ``average`` decides whether a kept length feeds the running average.
    """

    storage: LengthBounds = field(default_factory=lambda: LengthBounds(21, 45))
    average: LengthBounds = field(default_factory=lambda: LengthBounds(21, 35))


@dataclass
class MenstrualConfig:
    """Menstrual cycle prediction settings."""

    default_cycle_length: int = 28
    default_period_length: int = 5
    luteal_phase_days: int = 14
    fertile_days_before_ovulation: int = 5
    fertile_days_after_ovulation: int = 1
    ovulation_band_days: int = 2
    late_tolerance_days: int = 7
    cycle_length: CycleLengthConfig = field(default_factory=CycleLengthConfig)
    period_length: LengthBounds = field(default_factory=lambda: LengthBounds(3, 10))
    regularity_max_std_days: float = 7.0
    regularity_min_cycles: int = 2


@dataclass
class LimitsConfig:
    """Domain limits enforced before persistence."""

    max_custom_reminders: int = 10


@dataclass
class EngineConfig:
    """Complete, validated engine configuration.

    This is the single in-memory representation of engine_config.yaml.

    Attributes:
        version:    Config schema version string.
        horizons:   Enumeration horizons.
        scheduling: Trigger planner settings.
        birthday:   Birthday trigger times.
        menstrual:  Cycle prediction settings.
        limits:     Domain limits.
    """

    version: str
    horizons: HorizonConfig = field(default_factory=HorizonConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    birthday: BirthdayConfig = field(default_factory=BirthdayConfig)
    menstrual: MenstrualConfig = field(default_factory=MenstrualConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    _raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when engine_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed.
    """
    import yaml

    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> EngineConfig:
    """Validate the raw YAML dict and construct an EngineConfig.

    Missing sections fall back to defaults.  Every problem found is
    collected and reported together.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated EngineConfig instance.

    Raises:
        ConfigValidationError: If any value is missing its type or range.
    """
    errors: list[str] = []

    def _int(d: dict, key: str, section: str, default: int, minimum: int = 0) -> int:
        val = d.get(key, default)
        try:
            n = int(val)
        except (TypeError, ValueError):
            errors.append(f"{section}.{key} must be an integer, got {val!r}")
            return default
        if n < minimum:
            errors.append(f"{section}.{key} = {n} is below the minimum of {minimum}")
        return n

    def _float(d: dict, key: str, section: str, default: float) -> float:
        val = d.get(key, default)
        try:
            x = float(val)
        except (TypeError, ValueError):
            errors.append(f"{section}.{key} must be a number, got {val!r}")
            return default
        if x < 0:
            errors.append(f"{section}.{key} = {x} must not be negative")
        return x

    def _time(d: dict, key: str, section: str, default: time) -> time:
        val = d.get(key)
        if val is None:
            return default
        try:
            hour, minute = str(val).split(":")
            return time(int(hour), int(minute))
        except ValueError:
            errors.append(f"{section}.{key} must be 'HH:MM', got {val!r}")
            return default

    def _bounds(d: dict, section: str, lo_key: str, hi_key: str, default: LengthBounds) -> LengthBounds:
        lo = _int(d, lo_key, section, default.min_days, minimum=1)
        hi = _int(d, hi_key, section, default.max_days, minimum=1)
        if lo > hi:
            errors.append(f"{section}.{lo_key} ({lo}) is greater than {section}.{hi_key} ({hi})")
        return LengthBounds(lo, hi)

    version = str(raw.get("version", "1.0"))

    # ── Horizons ──
    hz_raw = raw.get("horizons") or {}
    horizons = HorizonConfig(
        upcoming_days=_int(hz_raw, "upcoming_days", "horizons", 30, minimum=1),
        interval_materialization_days=_int(
            hz_raw, "interval_materialization_days", "horizons", 60, minimum=1
        ),
    )

    # ── Scheduling ──
    sc_raw = raw.get("scheduling") or {}
    scheduling = SchedulingConfig(
        min_lead_seconds=_int(sc_raw, "min_lead_seconds", "scheduling", 10),
        retry_attempts=_int(sc_raw, "retry_attempts", "scheduling", 3, minimum=1),
        retry_base_delay_s=_float(sc_raw, "retry_base_delay_s", "scheduling", 0.5),
        short_interval_max_days=_int(sc_raw, "short_interval_max_days", "scheduling", 3, minimum=1),
        short_interval_refresh_days=_int(
            sc_raw, "short_interval_refresh_days", "scheduling", 7, minimum=1
        ),
    )

    # ── Birthday ──
    bd_raw = raw.get("birthday") or {}
    birthday = BirthdayConfig(
        reminder_time=_time(bd_raw, "reminder_time", "birthday", time(9, 0)),
        midnight_time=_time(bd_raw, "midnight_time", "birthday", time(0, 1)),
        congratulate_time=_time(bd_raw, "congratulate_time", "birthday", time(9, 0)),
    )

    # ── Menstrual ──
    mc_raw = raw.get("menstrual") or {}
    cl_raw = mc_raw.get("cycle_length") or {}
    pl_raw = mc_raw.get("period_length") or {}
    rg_raw = mc_raw.get("regularity") or {}
    menstrual = MenstrualConfig(
        default_cycle_length=_int(mc_raw, "default_cycle_length", "menstrual", 28, minimum=1),
        default_period_length=_int(mc_raw, "default_period_length", "menstrual", 5, minimum=1),
        luteal_phase_days=_int(mc_raw, "luteal_phase_days", "menstrual", 14),
        fertile_days_before_ovulation=_int(mc_raw, "fertile_days_before_ovulation", "menstrual", 5),
        fertile_days_after_ovulation=_int(mc_raw, "fertile_days_after_ovulation", "menstrual", 1),
        ovulation_band_days=_int(mc_raw, "ovulation_band_days", "menstrual", 2),
        late_tolerance_days=_int(mc_raw, "late_tolerance_days", "menstrual", 7),
        cycle_length=CycleLengthConfig(
            storage=_bounds(
                cl_raw, "menstrual.cycle_length", "storage_min_days", "storage_max_days",
                LengthBounds(21, 45),
            ),
            average=_bounds(
                cl_raw, "menstrual.cycle_length", "average_min_days", "average_max_days",
                LengthBounds(21, 35),
            ),
        ),
        period_length=_bounds(
            pl_raw, "menstrual.period_length", "min_days", "max_days", LengthBounds(3, 10)
        ),
        regularity_max_std_days=_float(rg_raw, "max_std_days", "menstrual.regularity", 7.0),
        regularity_min_cycles=_int(rg_raw, "min_cycles", "menstrual.regularity", 2, minimum=1),
    )
    if menstrual.regularity_max_std_days == 0:
        errors.append("menstrual.regularity.max_std_days must be greater than 0")

    # ── Limits ──
    lm_raw = raw.get("limits") or {}
    limits = LimitsConfig(
        max_custom_reminders=_int(lm_raw, "max_custom_reminders", "limits", 10, minimum=1),
    )

    if errors:
        raise ConfigValidationError(
            f"engine_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return EngineConfig(
        version=version,
        horizons=horizons,
        scheduling=scheduling,
        birthday=birthday,
        menstrual=menstrual,
        limits=limits,
        _raw=raw,
    )


def load_engine_config(path: Path | None = None) -> EngineConfig:
    """Load and validate the engine config from disk.

    Args:
        path: Override path to YAML. Uses the bundled engine_config.yaml by default.

    Returns:
        Validated EngineConfig instance.
    """
    target = path or _CONFIG_PATH
    raw = _load_yaml(target)
    config = _validate_and_build(raw)
    logger.info("Loaded engine config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_config: EngineConfig | None = None
_config_lock = threading.Lock()


def get_engine_config() -> EngineConfig:
    """Return the global EngineConfig singleton, loading it on first call.

    Thread-safe.  Use ``reload_engine_config()`` to refresh after YAML changes.

    Returns:
        The current EngineConfig instance.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_engine_config()
    return _config


def reload_engine_config(path: Path | None = None) -> EngineConfig:
    """Reload the engine config from disk and replace the global singleton.

    If validation fails, the old config is retained and the error is re-raised.

    Args:
        path: Override path to YAML. Defaults to bundled engine_config.yaml.

    Returns:
        The newly loaded EngineConfig.

    Raises:
        ConfigValidationError: If the new config is invalid.
        FileNotFoundError:     If the config file is missing.
    """
    global _config
    new_config = load_engine_config(path)  # validate before acquiring lock
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded engine config: %s → %s", old_version, new_config.version)
    return new_config
