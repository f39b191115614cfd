"""Cycle regularity score.

The score maps the population standard deviation of logged cycle lengths
onto 0–100: σ = 0 scores 100, σ ≥ 7 days scores 0.
"""

from __future__ import annotations

import logging
import math
import statistics
from typing import Iterable

from remindkit.config_loader import MenstrualConfig, get_engine_config
from remindkit.models.menstrual import CycleRecord

logger = logging.getLogger("remindkit.menstrual.regularity")

# (minimum score, label), highest first
_LABELS = (
    (80, "Very regular"),
    (60, "Regular"),
    (40, "Moderate"),
)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (``round`` rounds to even)."""
    return math.floor(value + 0.5)


def calculate_cycle_regularity(
    records: Iterable[CycleRecord],
    config: MenstrualConfig | None = None,
) -> int | None:
    """Score how regular the logged cycles are.

    Args:
        records: Cycle records; only those with a positive ``cycle_length``
                 are used.
        config:  Menstrual settings (defaults to the global engine config).

    Returns:
        Integer score in [0, 100], or None with fewer than
        ``regularity_min_cycles`` usable lengths.
    """
    mc = config or get_engine_config().menstrual
    lengths = [r.cycle_length for r in records if r.cycle_length is not None and r.cycle_length > 0]
    if len(lengths) < mc.regularity_min_cycles:
        return None

    sigma = statistics.pstdev(lengths)
    score = round_half_up(100 * (1 - sigma / mc.regularity_max_std_days))
    score = max(0, min(100, score))
    logger.debug("Regularity over %d cycle(s): σ=%.2f score=%d", len(lengths), sigma, score)
    return score


def regularity_label(score: int | None) -> str:
    if score is None:
        return "Data insufficient"
    for minimum, label in _LABELS:
        if score >= minimum:
            return label
    return "Irregular"
