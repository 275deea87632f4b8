"""Tests for parallel project discovery."""

from __future__ import annotations

import pytest

from conftest import fill_target, write_manifest
from purger.core.context import RunContext
from purger.core.discovery import (
    ProjectDiscovery,
    discover,
    discover_all,
    sort_by_size,
    with_artifacts,
)
from purger.errors import ConfigurationError


def _names(records) -> set[str]:
    return {r.name for r in records}


class TestBasicDiscovery:
    def test_finds_every_project_once(self, make_project, scan_config):
        make_project("alpha", target={"debug/a": 10})
        make_project("nested/beta")
        make_project("nested/deeper/gamma", target={"release/g": 5})

        records = discover_all(scan_config())

        assert sorted(r.name for r in records) == ["alpha", "beta", "gamma"]
        by_name = {r.name: r for r in records}
        assert by_name["alpha"].has_artifacts
        assert not by_name["beta"].has_artifacts
        assert by_name["gamma"].artifact_path.name == "target"

    def test_root_itself_can_be_a_project(self, tmp_path, make_project, scan_config):
        write_manifest(tmp_path, "rooted")
        records = discover_all(scan_config())
        assert _names(records) == {"rooted"}

    def test_does_not_descend_into_target(self, make_project, scan_config):
        project = make_project("app", target={})
        write_manifest(project / "target" / "package" / "app-0.1.0", "app-packaged")

        assert _names(discover_all(scan_config())) == {"app"}

    def test_nested_projects_inside_a_project_are_found(self, make_project, scan_config):
        make_project("outer")
        make_project("outer/examples/inner")
        assert _names(discover_all(scan_config())) == {"outer", "inner"}

    def test_corrupted_manifest_is_reported(self, tmp_path, scan_config):
        write_manifest(tmp_path / "broken", raw="[package\n")
        records = discover_all(scan_config())
        assert len(records) == 1
        assert records[0].name == "broken"
        assert records[0].manifest_error

    def test_records_carry_last_modified(self, make_project, scan_config):
        make_project("built", target={"debug/x": 1})
        make_project("unbuilt")
        for record in discover_all(scan_config()):
            assert record.last_modified is not None

    def test_discover_is_lazy_but_root_checked_eagerly(self, tmp_path, scan_config):
        with pytest.raises(ConfigurationError):
            discover(scan_config(root=tmp_path / "missing"))

    def test_root_must_be_a_directory(self, tmp_path, scan_config):
        file_root = tmp_path / "file"
        file_root.write_text("x")
        with pytest.raises(ConfigurationError):
            discover_all(scan_config(root=file_root))


class TestDepth:
    @pytest.fixture
    def tree(self, make_project):
        make_project("a")
        make_project("x/y")
        make_project("x/y/z/w")

    @pytest.mark.parametrize(
        ("max_depth", "expected"),
        [
            (1, set()),
            (2, {"a"}),
            (3, {"a", "y"}),
            (5, {"a", "y", "w"}),
            (None, {"a", "y", "w"}),
        ],
    )
    def test_max_depth_bounds_manifest_depth(self, tree, scan_config, max_depth, expected):
        assert _names(discover_all(scan_config(max_depth=max_depth))) == expected

    def test_depth_zero_finds_nothing(self, tmp_path, scan_config):
        write_manifest(tmp_path, "rooted")
        assert discover_all(scan_config(max_depth=0)) == []


class TestExclusions:
    def test_hidden_directories_skipped_by_default(self, make_project, scan_config):
        make_project(".cache/hidden")
        make_project("visible")
        assert _names(discover_all(scan_config())) == {"visible"}
        assert _names(discover_all(scan_config(skip_hidden=False))) == {"visible", "hidden"}

    def test_gitignored_directories_skipped(self, tmp_path, make_project, scan_config):
        (tmp_path / ".gitignore").write_text("vendor/\n")
        make_project("vendor/dep")
        make_project("src/app")

        assert _names(discover_all(scan_config())) == {"app"}
        assert _names(discover_all(scan_config(respect_ignore_rules=False))) == {"app", "dep"}

    def test_nested_ignore_file(self, tmp_path, make_project, scan_config):
        make_project("work/keep")
        make_project("work/scratch/tmp")
        (tmp_path / "work" / ".ignore").write_text("scratch\n")
        assert _names(discover_all(scan_config())) == {"keep"}

    def test_reincluded_directory_is_walked(self, tmp_path, make_project, scan_config):
        (tmp_path / ".gitignore").write_text("/a/*\n!/a/keep\n")
        make_project("a/keep/sub/proj")
        make_project("a/drop/other")
        assert _names(discover_all(scan_config())) == {"proj"}

    def test_ignore_paths_prune_subtrees(self, tmp_path, make_project, scan_config):
        make_project("archive/old")
        make_project("active/new")
        records = discover_all(scan_config(ignore_paths=(tmp_path / "archive",)))
        assert _names(records) == {"new"}


class TestWorkspaces:
    def test_members_fold_into_workspace_root(self, tmp_path, scan_config):
        ws = tmp_path / "ws"
        write_manifest(ws, members=["crates/*"])
        write_manifest(ws / "crates" / "core", "core")
        write_manifest(ws / "crates" / "cli", "cli")
        fill_target(ws)

        records = discover_all(scan_config())

        assert len(records) == 1
        root = records[0]
        assert root.name == "ws"
        assert root.is_workspace_root
        assert root.has_artifacts
        assert {p.name for p in root.member_paths} == {"core", "cli"}

    def test_package_workspace_root(self, tmp_path, scan_config):
        ws = tmp_path / "app"
        write_manifest(ws, "app", members=["plugin"])
        write_manifest(ws / "plugin", "plugin")

        records = discover_all(scan_config())

        assert _names(records) == {"app"}
        assert records[0].is_workspace_root

    def test_member_pointing_at_root_is_folded(self, tmp_path, scan_config):
        ws = tmp_path / "ws"
        write_manifest(ws, members=[])
        write_manifest(ws / "extra" / "member", "member", workspace_pointer="../..")

        assert _names(discover_all(scan_config())) == {"ws"}

    def test_member_of_root_outside_scan(self, tmp_path, scan_config):
        ws = tmp_path / "ws"
        write_manifest(ws, members=["member"])
        member = ws / "member"
        write_manifest(member, "member", workspace_pointer="..")
        fill_target(ws)

        records = discover_all(scan_config(root=member))

        assert len(records) == 1
        assert records[0].name == "member"
        assert records[0].is_workspace_member
        assert not records[0].has_artifacts

    def test_excluded_member_is_its_own_project(self, tmp_path, scan_config):
        ws = tmp_path / "ws"
        write_manifest(ws, members=["crates/*"], exclude=["crates/standalone"])
        write_manifest(ws / "crates" / "lib", "lib")
        write_manifest(ws / "crates" / "standalone", "standalone")

        assert _names(discover_all(scan_config())) == {"ws", "standalone"}


class TestRunBehaviour:
    def test_repeated_runs_agree(self, make_project, scan_config):
        for i in range(6):
            make_project(f"group{i % 2}/proj{i}", target={"debug/x": i + 1})
        config = scan_config()

        first = {r.key() for r in discover_all(config)}
        second = {r.key() for r in discover_all(config)}

        assert first == second
        assert len(first) == 6

    def test_found_events_are_emitted(self, make_project, scan_config, context):
        make_project("one")
        make_project("two")

        records = discover_all(scan_config(), context)

        found = [e for e in context.progress.drain() if e.kind == "discovery" and e.status == "found"]
        assert len(found) == len(records) == 2
        assert {e.payload.name for e in found} == {"one", "two"}

    def test_cancelled_before_start_returns_nothing(self, make_project, scan_config):
        make_project("one")
        context = RunContext()
        context.cancel.cancel()
        assert discover_all(scan_config(), context) == []

    def test_cancel_mid_walk_returns_partial_results(self, make_project, scan_config):
        for i in range(30):
            make_project(f"d{i}/p{i}")
        context = RunContext()

        def _cancel_on_first(event):
            if event.status == "found":
                context.cancel.cancel()

        context.progress.subscribe(_cancel_on_first)
        discovery = ProjectDiscovery(scan_config(), context)
        records = list(discovery.discover())

        assert 1 <= len(records) <= 30
        assert discovery.stats.cancelled

    def test_closing_the_iterator_early_stops_the_walk(self, make_project, scan_config):
        for i in range(10):
            make_project(f"p{i}")
        stream = discover(scan_config())
        first = next(stream)
        stream.close()
        assert first.name.startswith("p")

    def test_unreadable_directory_is_skipped(self, tmp_path, make_project, scan_config, context, requires_permission_bits):
        make_project("ok")
        locked = tmp_path / "locked"
        make_project("locked/hidden_inside")
        locked.chmod(0)
        try:
            discovery = ProjectDiscovery(scan_config(), context)
            records = list(discovery.discover())
        finally:
            locked.chmod(0o755)

        assert _names(records) == {"ok"}
        assert len(discovery.stats.errors) == 1
        assert any(e.kind == "error" for e in context.progress.drain())

    def test_symlink_loop_terminates_when_following(self, tmp_path, make_project, scan_config):
        make_project("real/proj")
        (tmp_path / "real" / "loop").symlink_to(tmp_path / "real", target_is_directory=True)
        (tmp_path / "alias").symlink_to(tmp_path / "real", target_is_directory=True)

        records = discover_all(scan_config(follow_symlinks=True))

        assert _names(records) == {"proj"}
        assert len(records) == 1

    def test_symlinks_not_followed_by_default(self, tmp_path, make_project, scan_config):
        make_project("elsewhere/proj")
        (tmp_path / "link").symlink_to(tmp_path / "elsewhere", target_is_directory=True)
        assert len(discover_all(scan_config())) == 1


class TestHelpers:
    def test_scan_single(self, make_project, scan_config):
        project = make_project("solo", target={"debug/a": 3})
        record = ProjectDiscovery(scan_config()).scan_single(project)
        assert record.name == "solo"
        assert record.has_artifacts

    def test_scan_single_rejects_non_project(self, tmp_path, scan_config):
        with pytest.raises(ConfigurationError):
            ProjectDiscovery(scan_config()).scan_single(tmp_path)

    def test_with_artifacts_and_sort_by_size(self, make_project, scan_config):
        make_project("small", target={"f": 10})
        make_project("big", target={"f": 1000})
        make_project("none")
        records = with_artifacts(discover_all(scan_config()))
        assert _names(records) == {"small", "big"}

        for record in records:
            record.size.claim()
            record.size.resolve(1000 if record.name == "big" else 10)
        assert [r.name for r in sort_by_size(records)] == ["big", "small"]
