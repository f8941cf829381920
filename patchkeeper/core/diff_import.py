"""
Turn pull-request diffs into patches against built bundle files.

Upstream diffs reference source files (src/cron/service.ts) while the
install tree only contains rebuilt bundles (dist/gateway-cli-3f9a1c.js).
Each diff hunk is reduced to a short distinctive line that is likely to
survive bundling, every such pattern is searched for across the bundle
files in one pass, and the hunks that were found become a new patch whose
target globs wildcard the build hash.
"""

from __future__ import annotations

import logging
import re
import warnings
from pathlib import Path
from typing import Callable, Iterable

from patchkeeper.core.config import PatcherConfig
from patchkeeper.core.errors import ImportMappingError, PartialImportWarning, PRFetchError
from patchkeeper.core.hunks import format_hunks
from patchkeeper.models.hunk import Hunk
from patchkeeper.models.patch import (
    HUNKS_FILE,
    ORIGINAL_DIFF_FILE,
    PATCH_FILE,
    PROGRAM_FILE,
    PatchKind,
    PatchRecord,
    save_patch_record,
)
from patchkeeper.models.pr import ImportResult, MappedHunk, PRMetadata, UnmappedHunk

logger = logging.getLogger(__name__)

SOURCE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")
ANCHOR_CONTEXT_LINES = 3
DEFAULT_MIN_PATTERN_LENGTH = 20
FALLBACK_PATTERN_LENGTH = 100

# Fragments that mark declarations, exports, and arrow functions
PATTERN_MARKERS = ("function ", "class ", "const ", "let ", "var ", "export ", "=>")

_HASH_SEGMENT_RE = re.compile(r"-[A-Za-z0-9_]{4,}(?=\.[^.]+$)")


# =============================================================================
# Diff parsing
# =============================================================================


def _make_hunk(old_lines: list[str], new_lines: list[str], source_path: str | None) -> Hunk:
    return Hunk(old_text="\n".join(old_lines), new_text="\n".join(new_lines), source_path=source_path)


def parse_unified_diff(diff: str) -> list[Hunk]:
    """
    Parse a multi-file unified diff into changed-lines hunks.

    Each `@@` block yields one hunk holding its removed and added lines;
    context lines are ignored. Hunks are tagged with the `+++` file path.
    """
    hunks: list[Hunk] = []
    current_file: str | None = None
    in_hunk = False
    old_lines: list[str] = []
    new_lines: list[str] = []

    def flush() -> None:
        if in_hunk and (old_lines or new_lines):
            hunks.append(_make_hunk(old_lines, new_lines, current_file))

    for line in diff.split("\n"):
        if line.startswith("+++ "):
            flush()
            in_hunk = False
            old_lines, new_lines = [], []
            current_file = re.sub(r"^\+\+\+ (?:[ab]/)?", "", line).strip()
            continue
        if line.startswith("--- ") and not in_hunk:
            continue
        if line.startswith("@@"):
            flush()
            in_hunk = True
            old_lines, new_lines = [], []
            continue
        if not in_hunk:
            continue
        if line.startswith("-") and not line.startswith("---"):
            old_lines.append(line[1:])
        elif line.startswith("+") and not line.startswith("+++"):
            new_lines.append(line[1:])

    flush()
    return hunks


def parse_pr_file_patch(patch: str, file_path: str | None = None) -> list[Hunk]:
    """
    Parse a per-file patch (hunks only, no file headers) into BEFORE/AFTER pairs.

    Removed lines plus added lines form a modification or deletion. A run of
    added lines alone is anchored on up to three preceding context lines:
    the context becomes the old text and context + additions the new text.
    Insertions with no preceding context are dropped. A context line after a
    change closes the current region, so one `@@` block can yield several hunks.
    """
    hunks: list[Hunk] = []
    in_hunk = False
    old_lines: list[str] = []
    new_lines: list[str] = []
    context_before: list[str] = []
    seen_change = False

    def flush() -> None:
        if old_lines:
            hunks.append(_make_hunk(old_lines, new_lines, file_path))
        elif new_lines and context_before:
            anchor = context_before[-ANCHOR_CONTEXT_LINES:]
            hunks.append(_make_hunk(anchor, anchor + new_lines, file_path))
        elif new_lines:
            logger.debug(f"dropping context-free insertion in {file_path}")

    for line in patch.split("\n"):
        if line.startswith("@@"):
            flush()
            in_hunk = True
            old_lines, new_lines, context_before = [], [], []
            seen_change = False
            continue

        if not in_hunk or line.startswith("\\"):
            continue

        if line.startswith("-"):
            seen_change = True
            old_lines.append(line[1:])
        elif line.startswith("+"):
            seen_change = True
            new_lines.append(line[1:])
        elif line.startswith(" ") or line == "":
            context_line = line[1:]
            if seen_change:
                flush()
                old_lines, new_lines = [], []
                seen_change = False
                context_before = [context_line]
            else:
                context_before.append(context_line)

    flush()
    return hunks


# =============================================================================
# Pattern extraction and bundle search
# =============================================================================


def find_minimal_pattern(old_text: str, min_length: int = DEFAULT_MIN_PATTERN_LENGTH) -> str:
    """
    Pick the single line of old_text most likely to survive bundling.

    Priority: the first line containing a declaration/export/arrow marker,
    then the first line of at least min_length characters, then the first
    non-blank line, then the first 100 characters of the whole text.
    Returned lines are stripped.
    """
    lines = [line.strip() for line in old_text.split("\n") if line.strip()]

    for line in lines:
        if any(marker in line for marker in PATTERN_MARKERS):
            return line
    for line in lines:
        if len(line) >= min_length:
            return line
    if lines:
        return lines[0]
    return old_text[:FALLBACK_PATTERN_LENGTH]


def list_bundle_files(bundle_dir: Path, prefix: str, suffix: str) -> list[Path]:
    """Bundle files following the `<prefix><hash><suffix>` convention, in listing order."""
    try:
        names = sorted(p.name for p in bundle_dir.iterdir() if p.is_file())
    except OSError as e:
        logger.debug(f"error listing bundles in {bundle_dir}: {e}")
        return []
    return [bundle_dir / n for n in names if n.startswith(prefix) and n.endswith(suffix)]


def find_patterns_in_bundles(
    patterns: Iterable[str],
    bundle_dir: Path,
    prefix: str = "gateway-cli-",
    suffix: str = ".js",
) -> dict[str, Path]:
    """
    Map each pattern to the first bundle file containing it.

    Every bundle is read once; patterns found nowhere are absent from the result.
    """
    contents: list[tuple[Path, str]] = []
    for path in list_bundle_files(bundle_dir, prefix, suffix):
        try:
            contents.append((path, path.read_text(encoding="utf-8")))
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"skipping unreadable bundle {path}: {e}")

    results: dict[str, Path] = {}
    for pattern in patterns:
        if not pattern or pattern in results:
            continue
        for path, content in contents:
            if pattern in content:
                logger.debug(f"found pattern in {path.name}")
                results[pattern] = path
                break
    return results


def target_glob_for(bundle_path: Path, install_dir: Path, prefix: str = "gateway-cli-", suffix: str = ".js") -> str:
    """
    Derive a rebuild-proof target pattern from a concrete bundle path.

    dist/gateway-cli-3f9a1c.js -> dist/gateway-cli-*.js
    """
    try:
        rel = bundle_path.relative_to(install_dir)
    except ValueError:
        rel = Path(bundle_path.name)
    name = rel.name
    if name.startswith(prefix) and name.endswith(suffix) and len(name) > len(prefix) + len(suffix):
        name = f"{prefix}*{suffix}"
    else:
        name = _HASH_SEGMENT_RE.sub("-*", name)
    return (rel.parent / name).as_posix()


# =============================================================================
# Patch synthesis
# =============================================================================


def hunks_to_block_format(hunks: list[Hunk]) -> str:
    """Serialize hunks as BEFORE/AFTER blocks, dropping those with no old text."""
    return format_hunks([h for h in hunks if h.old_text])


def render_programmable_stub(hunks: list[Hunk], title: str = "") -> str:
    """Generate a patch.py whose check/is_resolved/apply embed the hunk literals."""
    pairs = "\n".join(f"    ({h.old_text!r}, {h.new_text!r})," for h in hunks if h.old_text)
    heading = f"Generated from {title}." if title else "Generated programmable patch."
    return f'''"""
{heading}

Review check() and is_resolved() before relying on them.
"""

HUNKS = [
{pairs}
]


def check(content, path):
    """The original code is present and the fix is not."""
    return all(old in content for old, _ in HUNKS) and not any(
        new and new in content for _, new in HUNKS
    )


def is_resolved(content, path):
    """Neither the original code nor the fix is present; never for pure deletions."""
    if not any(new for _, new in HUNKS):
        return False
    return not any(old in content or (new and new in content) for old, new in HUNKS)


def apply(content, path):
    for old, new in HUNKS:
        if old in content:
            content = content.replace(old, new, 1)
    return content
'''


def render_original_diff(pr: PRMetadata) -> str:
    """Reassemble the per-file patches into one multi-file unified diff."""
    parts = []
    for f in pr.files:
        if not f.patch:
            continue
        parts.append(f"--- a/{f.path}\n+++ b/{f.path}\n{f.patch.rstrip(chr(10))}\n")
    return "".join(parts)


def is_source_file(path: str) -> bool:
    return path.endswith(SOURCE_EXTENSIONS)


# =============================================================================
# Import pipeline
# =============================================================================


def map_hunks(
    hunks: list[Hunk], config: PatcherConfig
) -> tuple[list[MappedHunk], list[UnmappedHunk]]:
    """
    Resolve every hunk's minimal pattern against the bundle directory in one search.

    Raises:
        ImportMappingError: If not a single hunk could be located
    """
    patterns = [find_minimal_pattern(h.old_text) for h in hunks]
    found = find_patterns_in_bundles(
        patterns, config.bundle_path, config.bundle_prefix, config.bundle_suffix
    )

    mapped: list[MappedHunk] = []
    unmapped: list[UnmappedHunk] = []
    for hunk, pattern in zip(hunks, patterns):
        bundle = found.get(pattern) if hunk.old_text.strip() else None
        if bundle is None:
            unmapped.append(UnmappedHunk.from_hunk(hunk))
        else:
            mapped.append(MappedHunk(hunk=hunk, pattern=pattern, bundle_path=str(bundle)))

    if not mapped:
        raise ImportMappingError(
            f"None of {len(hunks)} hunk(s) could be located in "
            f"{config.bundle_path}/{config.bundle_prefix}*{config.bundle_suffix}",
            details={"hunks": len(hunks)},
        )
    return mapped, unmapped


def import_pr(
    number: int,
    config: PatcherConfig,
    repo: str | None = None,
    kind: PatchKind | str = PatchKind.HUNKS,
    name: str | None = None,
    dry_run: bool = False,
    fetcher: Callable[[int, str], PRMetadata] | None = None,
) -> ImportResult:
    """
    Import a pull request as a new patch.

    Args:
        number: Pull request number
        config: Patcher configuration (bundle location, patches dir)
        repo: owner/name (default: config.github_repo)
        kind: "hunks" for BEFORE/AFTER blocks or "programmable" for a patch.py stub
        name: Patch name (default: pr-<number>)
        dry_run: Report the files that would be written without writing them
        fetcher: PR data source (default: patchkeeper.core.github.fetch_pr)

    Returns:
        ImportResult; ok is False when fetching fails, nothing maps, or the
        patch already exists. Unmapped hunks on success also issue a
        PartialImportWarning.
    """
    kind = PatchKind(kind)
    if kind == PatchKind.ASSETS:
        return ImportResult.fail("PR imports produce 'hunks' or 'programmable' patches", pr_number=number)

    repo = repo or config.github_repo
    patch_name = name or f"pr-{number}"
    patch_dir = config.patches_dir / patch_name

    if patch_dir.exists():
        return ImportResult.fail(f"Patch '{patch_name}' already exists at {patch_dir}", pr_number=number)

    diff_fetcher: Callable[[int, str], str] | None = None
    if fetcher is None:
        from patchkeeper.core.github import fetch_pr, fetch_pr_diff

        fetcher, diff_fetcher = fetch_pr, fetch_pr_diff

    try:
        pr = fetcher(number, repo)
    except PRFetchError as e:
        return ImportResult.fail(str(e), pr_number=number)

    hunks: list[Hunk] = []
    for f in pr.files:
        if not is_source_file(f.path) or not f.patch:
            logger.debug(f"skipping {f.path}")
            continue
        hunks.extend(parse_pr_file_patch(f.patch, f.path))

    try:
        mapped, unmapped = map_hunks(hunks, config)
    except ImportMappingError as e:
        return ImportResult.fail(
            f"PR #{number}: {e}",
            pr_number=number,
            unmapped_hunks=[UnmappedHunk.from_hunk(h) for h in hunks],
        )

    target_files: list[str] = []
    for m in mapped:
        glob = target_glob_for(
            Path(m.bundle_path), config.install_dir, config.bundle_prefix, config.bundle_suffix
        )
        if glob not in target_files:
            target_files.append(glob)

    mapped_hunks = [m.hunk for m in mapped]
    record = PatchRecord(
        name=patch_name,
        description=f"PR #{pr.number}: {pr.title}".strip(),
        issue=pr.url or None,
        kind=kind,
        target_files=target_files,
    )

    if kind == PatchKind.HUNKS:
        body_file, body = HUNKS_FILE, hunks_to_block_format(mapped_hunks)
    else:
        body_file, body = PROGRAM_FILE, render_programmable_stub(mapped_hunks, f"PR #{pr.number}")

    original_diff = render_original_diff(pr)
    if diff_fetcher is not None and not dry_run:
        try:
            original_diff = diff_fetcher(number, repo)
        except PRFetchError as e:
            logger.debug(f"could not fetch raw diff, reassembling from files: {e}")

    outputs = [PATCH_FILE, body_file, ORIGINAL_DIFF_FILE]
    files = [str(patch_dir / f) for f in outputs]

    if not dry_run:
        try:
            save_patch_record(patch_dir, record)
            (patch_dir / body_file).write_text(body, encoding="utf-8")
            (patch_dir / ORIGINAL_DIFF_FILE).write_text(original_diff, encoding="utf-8")
        except OSError as e:
            return ImportResult.fail(f"Could not write patch '{patch_name}': {e}", pr_number=number)
        logger.info(f"imported PR #{number} as patch '{patch_name}'")

    if unmapped:
        warnings.warn(
            f"{len(unmapped)} of {len(hunks)} hunk(s) from PR #{number} could not be mapped; "
            "review them manually",
            PartialImportWarning,
            stacklevel=2,
        )

    return ImportResult(
        ok=True,
        patch_name=patch_name,
        pr_number=number,
        mapped_hunks=mapped,
        unmapped_hunks=unmapped,
        files_written=files,
        dry_run=dry_run,
    )
