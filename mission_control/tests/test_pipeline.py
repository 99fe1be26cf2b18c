"""Tests for sales pipeline bucketing and funnel statistics."""
from __future__ import annotations

from mission_control.pipeline import (
    PIPELINE_STAGES,
    aggregate_pipeline,
    bucket_by_stage,
    conversion_rate,
    pipeline_counts,
)


def partner(stage: str, units: int | None = 0, name: str = "") -> dict:
    return {"name": name or stage, "pipeline_status": stage, "total_medallions_ordered": units}


class TestBucketing:
    def test_all_eight_stages_present_even_when_empty(self):
        stages = bucket_by_stage([])
        assert list(stages) == list(PIPELINE_STAGES)
        assert all(rows == [] for rows in stages.values())

    def test_unknown_stage_dropped_and_order_kept(self):
        rows = [partner("warm", name="a"), partner("mystery"), partner("warm", name="b")]
        stages = bucket_by_stage(rows)
        assert [p["name"] for p in stages["warm"]] == ["a", "b"]
        assert sum(len(v) for v in stages.values()) == 2

    def test_counts(self):
        counts = pipeline_counts([partner("active"), partner("active"), partner("lost")])
        assert counts["active"] == 2
        assert counts["lost"] == 1
        assert counts["prospect"] == 0


class TestConversionRate:
    def test_formatting(self):
        assert conversion_rate(0, 0) == "0.0%"
        assert conversion_rate(1, 3) == "33.3%"
        assert conversion_rate(2, 3) == "66.7%"
        assert conversion_rate(3, 3) == "100.0%"

    def test_rounds_half_up(self):
        # 1/8 = 12.5% exactly; 1/16 = 6.25% rounds to 6.3
        assert conversion_rate(1, 8) == "12.5%"
        assert conversion_rate(1, 16) == "6.3%"


class TestAggregate:
    def test_ten_partner_funnel(self):
        partners = [
            partner("active", 10), partner("active", 20), partner("active", 30),
            partner("warm"), partner("warm"), partner("negotiating"),
            partner("prospect"), partner("prospect"), partner("lost"), partner("inactive"),
        ]
        stats = aggregate_pipeline(partners).stats
        assert stats.total == 10
        assert stats.active_pipeline == 3
        assert stats.won == 3
        assert stats.lost == 1
        assert stats.conversion_rate == "30.0%"
        assert stats.pipeline_value == 3000

    def test_no_won_partners_means_zero_value(self):
        stats = aggregate_pipeline([partner("warm"), partner("demo_done")]).stats
        assert stats.active_pipeline == 2
        assert stats.pipeline_value == 0

    def test_missing_units_count_as_zero(self):
        partners = [partner("active", None), partner("active", 40), partner("demo_scheduled")]
        assert aggregate_pipeline(partners).stats.pipeline_value == 1000

    def test_empty(self):
        summary = aggregate_pipeline([])
        assert summary.stats.as_dict() == {
            "total": 0, "activePipeline": 0, "won": 0, "lost": 0,
            "conversionRate": "0.0%", "pipelineValue": 0,
        }

    def test_hide_inactive_lost_applies_before_counting(self):
        partners = [partner("active", 10), partner("lost"), partner("inactive"), partner("warm")]
        summary = aggregate_pipeline(partners, hide_inactive_lost=True)
        assert summary.stats.total == 2
        assert summary.stats.lost == 0
        assert summary.stats.conversion_rate == "50.0%"
        assert summary.stages["lost"] == []
        assert summary.stages["inactive"] == []
        assert len(summary.partners) == 2

    def test_stage_sizes_add_up(self):
        partners = [partner(s) for s in PIPELINE_STAGES for _ in range(2)]
        summary = aggregate_pipeline(partners)
        assert sum(len(v) for v in summary.stages.values()) == summary.stats.total == 16

    def test_as_dict_shape(self):
        out = aggregate_pipeline([partner("warm")]).as_dict()
        assert set(out) == {"partners", "stages", "stats"}
        assert out["stats"]["activePipeline"] == 1
