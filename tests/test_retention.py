"""Tests for retention rules."""

from __future__ import annotations

from pathlib import Path

import pytest

from purger.core.retention import SECONDS_PER_DAY, KeepReason, RetentionFilter, decide
from purger.core.sizing import SizeEstimator
from purger.errors import SizeComputationError
from purger.models.config import MissingAgePolicy, ScanConfig
from purger.models.project import ProjectRecord

NOW = 1_700_000_000.0


def _record(root: Path, *, age_days: float | None = 0, with_target: bool = True) -> ProjectRecord:
    return ProjectRecord(
        root_path=root,
        manifest_path=root / "Cargo.toml",
        name=root.name,
        artifact_path=root / "target" if with_target else None,
        last_modified=None if age_days is None else NOW - age_days * SECONDS_PER_DAY,
    )


def _sized(size: int) -> SizeEstimator:
    return SizeEstimator(workers=1, size_fn=lambda rec: size)


class TestKeepDays:
    def test_recent_build_is_kept(self, tmp_path):
        rf = RetentionFilter(ScanConfig(root=tmp_path, keep_days=7), now=NOW)
        decision = rf.decide(_record(tmp_path / "p", age_days=2))
        assert decision.keep
        assert decision.reason is KeepReason.RECENTLY_BUILT

    def test_old_build_is_eligible(self, tmp_path):
        rf = RetentionFilter(ScanConfig(root=tmp_path, keep_days=7), now=NOW)
        assert rf.decide(_record(tmp_path / "p", age_days=30)).eligible

    def test_exactly_at_threshold_is_eligible(self, tmp_path):
        rf = RetentionFilter(ScanConfig(root=tmp_path, keep_days=7), now=NOW)
        assert rf.decide(_record(tmp_path / "p", age_days=7)).eligible

    def test_zero_days_keeps_nothing(self, tmp_path):
        rf = RetentionFilter(ScanConfig(root=tmp_path, keep_days=0), now=NOW)
        assert rf.decide(_record(tmp_path / "p", age_days=0)).eligible

    @pytest.mark.parametrize(
        ("policy", "keep"),
        [(MissingAgePolicy.ELIGIBLE, False), (MissingAgePolicy.KEEP, True)],
    )
    def test_unknown_age_follows_policy(self, tmp_path, policy, keep):
        config = ScanConfig(root=tmp_path, keep_days=7, missing_age_policy=policy)
        decision = RetentionFilter(config, now=NOW).decide(_record(tmp_path / "p", age_days=None))
        assert decision.keep is keep


class TestKeepSize:
    def test_small_is_kept(self, tmp_path):
        config = ScanConfig(root=tmp_path, keep_size_bytes=1000)
        decision = RetentionFilter(config, _sized(999)).decide(_record(tmp_path / "p"))
        assert decision.keep
        assert decision.reason is KeepReason.SMALL

    def test_at_threshold_is_eligible(self, tmp_path):
        config = ScanConfig(root=tmp_path, keep_size_bytes=1000)
        assert RetentionFilter(config, _sized(1000)).decide(_record(tmp_path / "p")).eligible

    def test_size_error_keeps(self, tmp_path):
        def failing(rec):
            raise SizeComputationError("unreadable")

        config = ScanConfig(root=tmp_path, keep_size_bytes=1)
        decision = RetentionFilter(config, SizeEstimator(workers=1, size_fn=failing)).decide(_record(tmp_path / "p"))
        assert decision.keep
        assert decision.reason is KeepReason.SIZE_UNKNOWN

    def test_size_only_computed_when_needed(self, tmp_path):
        calls = []
        estimator = SizeEstimator(workers=1, size_fn=lambda rec: calls.append(rec) or 10)
        config = ScanConfig(root=tmp_path, keep_days=7, keep_size_bytes=100)
        # Kept by age first, so the size rule never runs
        RetentionFilter(config, estimator, now=NOW).decide(_record(tmp_path / "p", age_days=1))
        assert calls == []


class TestOtherRules:
    def test_no_artifacts_always_kept(self, tmp_path):
        decision = decide(_record(tmp_path / "p", with_target=False), ScanConfig(root=tmp_path))
        assert decision.reason is KeepReason.NO_ARTIFACTS

    def test_no_rules_means_eligible(self, tmp_path):
        assert decide(_record(tmp_path / "p"), ScanConfig(root=tmp_path)).eligible

    def test_ignored_path_kept(self, tmp_path):
        (tmp_path / "keep" / "p").mkdir(parents=True)
        config = ScanConfig(root=tmp_path, ignore_paths=(tmp_path / "keep",))
        decision = decide(_record(tmp_path / "keep" / "p"), config)
        assert decision.reason is KeepReason.IGNORED_PATH

    def test_combined_rules(self, tmp_path):
        config = ScanConfig(root=tmp_path, keep_days=7, keep_size_bytes=500)
        sizes = {"old_big": 1000, "old_small": 10, "new_big": 1000}
        estimator = SizeEstimator(workers=1, size_fn=lambda rec: sizes[rec.name])
        rf = RetentionFilter(config, estimator, now=NOW)

        records = [
            _record(tmp_path / "old_big", age_days=30),
            _record(tmp_path / "old_small", age_days=30),
            _record(tmp_path / "new_big", age_days=1),
        ]
        kept, eligible = rf.partition(records)

        assert [r.name for r in eligible] == ["old_big"]
        assert {r.name: d.reason for r, d in kept} == {
            "old_small": KeepReason.SMALL,
            "new_big": KeepReason.RECENTLY_BUILT,
        }

    def test_eligible_records_satisfy_every_rule(self, tmp_path):
        config = ScanConfig(root=tmp_path, keep_days=3, keep_size_bytes=100)
        estimator = SizeEstimator(workers=1, size_fn=lambda rec: int(rec.name[1:]) * 40)
        rf = RetentionFilter(config, estimator, now=NOW)
        records = [_record(tmp_path / f"p{i}", age_days=i) for i in range(8)]

        _, eligible = rf.partition(records)

        for record in eligible:
            assert NOW - record.last_modified >= 3 * SECONDS_PER_DAY
            assert record.size_bytes >= 100
