"""Sales pipeline bucketing and funnel statistics."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

PIPELINE_STAGES: tuple[str, ...] = (
    "prospect",
    "warm",
    "demo_scheduled",
    "demo_done",
    "negotiating",
    "active",
    "inactive",
    "lost",
)

# Partners in active sales motion
ACTIVE_PIPELINE_STAGES = ("warm", "demo_scheduled", "demo_done", "negotiating")
WON_STAGE = "active"
LOST_STAGE = "lost"
HIDDEN_STAGES = ("inactive", "lost")

# Assumed revenue per medallion, in dollars
UNIT_PRICE = 50
UNITS_FIELD = "total_medallions_ordered"


def _round_half_up(value: float, digits: int = 0) -> float:
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def _units(partner: dict[str, Any]) -> float:
    try:
        return float(partner.get(UNITS_FIELD) or 0)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class PipelineStats:
    total: int = 0
    active_pipeline: int = 0
    won: int = 0
    lost: int = 0
    conversion_rate: str = "0.0%"
    pipeline_value: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "activePipeline": self.active_pipeline,
            "won": self.won,
            "lost": self.lost,
            "conversionRate": self.conversion_rate,
            "pipelineValue": self.pipeline_value,
        }


@dataclass
class PipelineSummary:
    partners: list[dict[str, Any]]
    stages: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    stats: PipelineStats = field(default_factory=PipelineStats)

    def as_dict(self) -> dict[str, Any]:
        return {"partners": self.partners, "stages": self.stages, "stats": self.stats.as_dict()}


def bucket_by_stage(partners: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """Group partners under all eight stage labels, keeping input order.

    Rows whose ``pipeline_status`` is not a known stage are left out.
    """
    stages: dict[str, list[dict[str, Any]]] = {s: [] for s in PIPELINE_STAGES}
    for p in partners:
        bucket = stages.get(p.get("pipeline_status"))
        if bucket is not None:
            bucket.append(p)
    return stages


def pipeline_counts(partners: list[dict[str, Any]]) -> dict[str, int]:
    return {stage: len(rows) for stage, rows in bucket_by_stage(partners).items()}


def conversion_rate(won: int, total: int) -> str:
    if total == 0:
        return "0.0%"
    return f"{_round_half_up(won / total * 100, 1):.1f}%"


def aggregate_pipeline(
    partners: list[dict[str, Any]], hide_inactive_lost: bool = False,
) -> PipelineSummary:
    """Bucket partners by stage and compute funnel stats.

    With ``hide_inactive_lost`` the inactive and lost partners are removed
    before anything is counted.
    """
    if hide_inactive_lost:
        partners = [p for p in partners if p.get("pipeline_status") not in HIDDEN_STAGES]
    else:
        partners = list(partners)

    stages = bucket_by_stage(partners)
    total = len(partners)
    active_pipeline = sum(len(stages[s]) for s in ACTIVE_PIPELINE_STAGES)
    won_partners = stages[WON_STAGE]
    won = len(won_partners)

    avg_units = sum(_units(p) for p in won_partners) / won if won else 0.0
    value = active_pipeline * avg_units * UNIT_PRICE

    stats = PipelineStats(
        total=total,
        active_pipeline=active_pipeline,
        won=won,
        lost=len(stages[LOST_STAGE]),
        conversion_rate=conversion_rate(won, total),
        pipeline_value=int(_round_half_up(value)),
    )
    return PipelineSummary(partners=partners, stages=stages, stats=stats)
