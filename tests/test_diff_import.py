"""
Tests for patchkeeper.core.diff_import: diff parsing, minimal patterns,
bundle search and the PR import pipeline.
"""

import warnings
from pathlib import Path

import pytest
import yaml

from patchkeeper.core.diff_import import (
    find_minimal_pattern,
    find_patterns_in_bundles,
    hunks_to_block_format,
    import_pr,
    map_hunks,
    parse_pr_file_patch,
    parse_unified_diff,
    render_original_diff,
    render_programmable_stub,
    target_glob_for,
)
from patchkeeper.core.errors import ImportMappingError, PartialImportWarning, PRFetchError
from patchkeeper.core.hunks import parse_hunks
from patchkeeper.core.programmable import load_edit_module
from patchkeeper.models.hunk import Hunk
from patchkeeper.models.pr import PRFile, PRMetadata

# =========================================================================
# parse_pr_file_patch
# =========================================================================


class TestParsePRFilePatch:
    def test_modification(self):
        patch = "@@ -1,3 +1,3 @@\n context\n-old line\n+new line\n"
        hunks = parse_pr_file_patch(patch, "src/a.ts")
        assert len(hunks) == 1
        assert hunks[0].old_text == "old line"
        assert hunks[0].new_text == "new line"
        assert hunks[0].source_path == "src/a.ts"

    def test_deletion(self):
        hunks = parse_pr_file_patch("@@ -1,2 +1,1 @@\n keep\n-gone\n")
        assert [(h.old_text, h.new_text) for h in hunks] == [("gone", "")]

    def test_pure_insertion_anchored_on_last_three_context_lines(self):
        patch = (
            "@@ -1,4 +1,5 @@\n"
            " line1\n"
            " line2\n"
            " line3\n"
            " line4\n"
            "+inserted\n"
        )
        hunks = parse_pr_file_patch(patch)
        assert len(hunks) == 1
        assert hunks[0].old_text == "line2\nline3\nline4"
        assert hunks[0].new_text == "line2\nline3\nline4\ninserted"

    def test_insertion_without_context_dropped(self):
        assert parse_pr_file_patch("@@ -0,0 +1,2 @@\n+a\n+b\n") == []

    def test_context_after_change_starts_new_region(self):
        patch = (
            "@@ -1,5 +1,5 @@\n"
            "-first old\n"
            "+first new\n"
            " shared\n"
            "-second old\n"
            "+second new\n"
        )
        hunks = parse_pr_file_patch(patch)
        assert [(h.old_text, h.new_text) for h in hunks] == [
            ("first old", "first new"),
            ("second old", "second new"),
        ]

    def test_context_after_change_anchors_next_insertion(self):
        patch = "@@ -1,3 +1,4 @@\n-a\n+b\n anchor\n+added\n"
        hunks = parse_pr_file_patch(patch)
        assert hunks[1].old_text == "anchor"
        assert hunks[1].new_text == "anchor\nadded"

    def test_multiple_hunk_headers(self):
        patch = "@@ -1 +1 @@\n-a\n+b\n@@ -10 +10 @@\n-c\n+d\n"
        assert len(parse_pr_file_patch(patch)) == 2

    def test_no_newline_marker_ignored(self):
        patch = "@@ -1 +1 @@\n-a\n\\ No newline at end of file\n+b\n"
        hunks = parse_pr_file_patch(patch)
        assert [(h.old_text, h.new_text) for h in hunks] == [("a", "b")]


class TestParseUnifiedDiff:
    def test_multi_file(self):
        diff = (
            "diff --git a/src/a.ts b/src/a.ts\n"
            "--- a/src/a.ts\n"
            "+++ b/src/a.ts\n"
            "@@ -1,2 +1,2 @@\n"
            " ctx\n"
            "-old a\n"
            "+new a\n"
            "--- a/src/b.ts\n"
            "+++ b/src/b.ts\n"
            "@@ -5 +5 @@\n"
            "-old b\n"
            "+new b\n"
        )
        hunks = parse_unified_diff(diff)
        assert [(h.source_path, h.old_text, h.new_text) for h in hunks] == [
            ("src/a.ts", "old a", "new a"),
            ("src/b.ts", "old b", "new b"),
        ]

    def test_context_only_block_ignored(self):
        assert parse_unified_diff("+++ b/x.ts\n@@ -1 +1 @@\n same\n") == []


# =========================================================================
# find_minimal_pattern
# =========================================================================


class TestFindMinimalPattern:
    def test_prefers_marker_line(self):
        assert find_minimal_pattern("  \nfunction foo() {\n  return 1;\n}") == "function foo() {"

    def test_arrow_function_marker(self):
        assert find_minimal_pattern("x\nitems.map((i) => i.id)\n") == "items.map((i) => i.id)"

    def test_falls_back_to_long_line(self):
        text = "a;\nthis.scheduler.recompute(state);\n"
        assert find_minimal_pattern(text) == "this.scheduler.recompute(state);"

    def test_falls_back_to_first_nonblank(self):
        assert find_minimal_pattern("\n  x++;\n y--;") == "x++;"

    def test_min_length_configurable(self):
        assert find_minimal_pattern("ab;\nabcdef;", min_length=5) == "abcdef;"

    def test_all_blank_returns_prefix_of_text(self):
        assert find_minimal_pattern("   ") == "   "


# =========================================================================
# Bundle search and globs
# =========================================================================


class TestFindPatternsInBundles:
    def test_first_file_in_listing_order_wins(self, tmp_path):
        (tmp_path / "gateway-cli-b.js").write_text("shared pattern")
        (tmp_path / "gateway-cli-a.js").write_text("shared pattern\nonly in a")
        (tmp_path / "other-x.js").write_text("only in other")

        found = find_patterns_in_bundles(
            ["shared pattern", "only in a", "only in other"], tmp_path
        )
        assert found == {
            "shared pattern": tmp_path / "gateway-cli-a.js",
            "only in a": tmp_path / "gateway-cli-a.js",
        }

    def test_reads_each_bundle_once(self, tmp_path, monkeypatch):
        (tmp_path / "gateway-cli-a.js").write_text("p1 p2 p3")
        reads = []
        original = Path.read_text

        def counting_read(self, *args, **kwargs):
            reads.append(self.name)
            return original(self, *args, **kwargs)

        monkeypatch.setattr(Path, "read_text", counting_read)
        find_patterns_in_bundles(["p1", "p2", "p3", "p4"], tmp_path)
        assert reads == ["gateway-cli-a.js"]

    def test_missing_directory(self, tmp_path):
        assert find_patterns_in_bundles(["x"], tmp_path / "missing") == {}


class TestTargetGlob:
    def test_hash_replaced(self, tmp_path):
        path = tmp_path / "dist" / "gateway-cli-3f9a1c.js"
        assert target_glob_for(path, tmp_path) == "dist/gateway-cli-*.js"

    def test_other_naming_uses_hash_heuristic(self, tmp_path):
        path = tmp_path / "dist" / "reply-Dx81kQ.js"
        assert target_glob_for(path, tmp_path) == "dist/reply-*.js"


# =========================================================================
# Synthesis
# =========================================================================


class TestSynthesis:
    def test_block_format_drops_empty_old(self):
        hunks = [Hunk(old_text="", new_text="x"), Hunk(old_text="a", new_text="b")]
        assert parse_hunks(hunks_to_block_format(hunks)) == [Hunk(old_text="a", new_text="b")]

    def test_programmable_stub_is_loadable(self, tmp_path):
        hunks = [Hunk(old_text='say("hi")\n\tend', new_text="say('bye')\n\tend")]
        path = tmp_path / "stub" / "patch.py"
        path.parent.mkdir()
        path.write_text(render_programmable_stub(hunks, "PR #1"))

        edit = load_edit_module(path)
        buggy = 'x\nsay("hi")\n\tend\n'
        assert edit.check(buggy, "f.js") is True
        assert edit.is_resolved(buggy, "f.js") is False
        fixed = edit.apply(buggy, "f.js")
        assert fixed == "x\nsay('bye')\n\tend\n"
        assert edit.check(fixed, "f.js") is False
        assert edit.is_resolved("nothing here", "f.js") is True

    def test_deletion_only_stub_detects_defect(self, tmp_path):
        hunks = [Hunk(old_text="debugLog(state);", new_text="")]
        path = tmp_path / "stub" / "patch.py"
        path.parent.mkdir()
        path.write_text(render_programmable_stub(hunks))

        edit = load_edit_module(path)
        buggy = "a\ndebugLog(state);\nb\n"
        assert edit.check(buggy, "f.js") is True
        assert edit.is_resolved(buggy, "f.js") is False

        fixed = edit.apply(buggy, "f.js")
        assert fixed == "a\n\nb\n"
        assert edit.check(fixed, "f.js") is False
        assert edit.is_resolved(fixed, "f.js") is False

    def test_original_diff_reassembled(self):
        pr = PRMetadata(
            number=1,
            files=[
                PRFile(path="src/a.ts", patch="@@ -1 +1 @@\n-a\n+b"),
                PRFile(path="image.png", patch=""),
            ],
        )
        assert render_original_diff(pr) == "--- a/src/a.ts\n+++ b/src/a.ts\n@@ -1 +1 @@\n-a\n+b\n"


# =========================================================================
# import_pr
# =========================================================================


def _pr_with_patches(patches: dict[str, str]) -> PRMetadata:
    return PRMetadata(
        number=42,
        title="Fix cron stall",
        url="https://github.com/openclaw/openclaw/pull/42",
        files=[PRFile(path=p, patch=body) for p, body in patches.items()],
    )


@pytest.fixture
def five_hunk_pr():
    """Five single-line modifications; three of them exist in the sample bundle."""
    patch = (
        "@@ -1 +1 @@\n-async function onTimer(state) {\n+async function onTimer(state, opts) {\n"
        "@@ -2 +2 @@\n-\tif (x) return;\n+\tif (x) { armTimer(); return; }\n"
        "@@ -3 +3 @@\n-\tawait runDueJobs(state);\n+\tawait runDueJobs(state, opts);\n"
        "@@ -9 +9 @@\n-const missingOne = computeSomething();\n+const missingOne = 1;\n"
        "@@ -12 +12 @@\n-let missingTwo = computeSomethingElse();\n+let missingTwo = 2;\n"
    )
    return _pr_with_patches({"src/cron/timer.ts": patch, "README.md": "@@ -1 +1 @@\n-a\n+b\n"})


class TestImportPR:
    def test_partial_mapping(self, config, five_hunk_pr):
        with pytest.warns(PartialImportWarning):
            result = import_pr(42, config, fetcher=lambda n, r: five_hunk_pr)

        assert result.ok is True
        assert len(result.mapped_hunks) == 3
        assert len(result.unmapped_hunks) == 2
        for unmapped in result.unmapped_hunks:
            assert len(unmapped.preview) <= 100
            assert unmapped.reason == "pattern not found in any bundle file"

    def test_writes_hunks_patch(self, config, five_hunk_pr):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", PartialImportWarning)
            result = import_pr(42, config, fetcher=lambda n, r: five_hunk_pr)

        patch_dir = config.patches_dir / "pr-42"
        assert sorted(Path(p).name for p in result.files_written) == [
            "hunks.txt",
            "original.diff",
            "patch.yaml",
        ]
        record = yaml.safe_load((patch_dir / "patch.yaml").read_text())
        assert record["kind"] == "hunks"
        assert record["target_files"] == ["dist/gateway-cli-*.js"]
        assert record["issue"] == "https://github.com/openclaw/openclaw/pull/42"
        assert "Fix cron stall" in record["description"]

        hunks = parse_hunks((patch_dir / "hunks.txt").read_text())
        assert len(hunks) == 3
        assert "src/cron/timer.ts" in (patch_dir / "original.diff").read_text()

    def test_programmable_kind(self, config, five_hunk_pr):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", PartialImportWarning)
            result = import_pr(42, config, kind="programmable", name="cron", fetcher=lambda n, r: five_hunk_pr)

        assert result.ok is True
        assert (config.patches_dir / "cron" / "patch.py").exists()
        load_edit_module(config.patches_dir / "cron" / "patch.py")

    def test_dry_run_writes_nothing(self, config, five_hunk_pr):
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", PartialImportWarning)
            result = import_pr(42, config, dry_run=True, fetcher=lambda n, r: five_hunk_pr)

        assert result.ok is True
        assert result.dry_run is True
        assert len(result.files_written) == 3
        assert not (config.patches_dir / "pr-42").exists()

    def test_zero_mapped_fails(self, config):
        pr = _pr_with_patches({"src/x.ts": "@@ -1 +1 @@\n-const nowhere = 1;\n+const nowhere = 2;\n"})
        result = import_pr(42, config, fetcher=lambda n, r: pr)

        assert result.ok is False
        assert "None of 1 hunk(s)" in result.error
        assert not (config.patches_dir / "pr-42").exists()

    def test_map_hunks_raises_when_nothing_maps(self, config):
        with pytest.raises(ImportMappingError, match=r"None of 2 hunk\(s\)"):
            map_hunks([Hunk(old_text="const a = 1;", new_text=""), Hunk(old_text="", new_text="x")], config)

    def test_non_source_files_ignored(self, config):
        pr = _pr_with_patches({"docs/notes.md": "@@ -1 +1 @@\n-\tif (x) return;\n+fixed\n"})
        result = import_pr(42, config, fetcher=lambda n, r: pr)
        assert result.ok is False

    def test_fetch_failure(self, config):
        def failing(number, repo):
            raise PRFetchError("boom")

        result = import_pr(42, config, fetcher=failing)
        assert result.ok is False
        assert result.error == "boom"

    def test_existing_patch_not_overwritten(self, config, five_hunk_pr, make_patch):
        make_patch("pr-42", hunks="")
        result = import_pr(42, config, fetcher=lambda n, r: five_hunk_pr)
        assert result.ok is False
        assert "already exists" in result.error

    def test_repo_defaults_to_config(self, config, five_hunk_pr):
        seen = []

        def fetcher(number, repo):
            seen.append((number, repo))
            return five_hunk_pr

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", PartialImportWarning)
            import_pr(42, config, dry_run=True, fetcher=fetcher)
        assert seen == [(42, "openclaw/openclaw")]
