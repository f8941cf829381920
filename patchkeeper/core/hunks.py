"""
BEFORE/AFTER text hunks.

Block format, repeatable, applied in document order:

    === BEFORE ===
    <old text>
    === AFTER ===
    <new text>
    === END ===

Application is a literal first-occurrence substring replacement; hunks
whose old text is absent are skipped so partially landed patches can be
completed.
"""

import re

from patchkeeper.models.hunk import Hunk

BEFORE_MARKER = "=== BEFORE ==="
AFTER_MARKER = "=== AFTER ==="
END_MARKER = "=== END ==="

_BLOCK_RE = re.compile(
    re.escape(BEFORE_MARKER) + r"\n(.*?)\n" + re.escape(AFTER_MARKER) + r"\n(.*?)\n" + re.escape(END_MARKER),
    re.DOTALL,
)

HUNKS_TEMPLATE = f"""{BEFORE_MARKER}
OLD_CODE_TO_REPLACE
{AFTER_MARKER}
NEW_REPLACEMENT_CODE
{END_MARKER}
"""


def parse_hunks(text: str) -> list[Hunk]:
    """
    Parse all BEFORE/AFTER/END blocks from text.

    Malformed or missing markers yield no hunks rather than an error;
    callers decide whether an empty list is a problem.
    """
    return [Hunk(old_text=m.group(1), new_text=m.group(2)) for m in _BLOCK_RE.finditer(text)]


def format_hunks(hunks: list[Hunk]) -> str:
    """Serialize hunks back into block format."""
    blocks = [
        f"{BEFORE_MARKER}\n{h.old_text}\n{AFTER_MARKER}\n{h.new_text}\n{END_MARKER}" for h in hunks
    ]
    return "\n\n".join(blocks) + ("\n" if blocks else "")


def apply_hunks(content: str, hunks: list[Hunk]) -> str:
    """Replace the first occurrence of each hunk's old text, in order."""
    result = content
    for hunk in hunks:
        if hunk.old_text and hunk.old_text in result:
            result = result.replace(hunk.old_text, hunk.new_text, 1)
    return result


def _present(text: str, content: str) -> bool:
    return bool(text) and text in content


def hunks_landed(content: str, hunks: list[Hunk]) -> bool:
    """
    True when every hunk's fix is present.

    A hunk with new text has landed when that text is present; a pure
    deletion has landed when its old text is gone.
    """
    return all(
        _present(h.new_text, content) if h.new_text else not _present(h.old_text, content)
        for h in hunks
    )


def hunks_defect_present(content: str, hunks: list[Hunk]) -> bool:
    """True when every hunk's old text is present."""
    return all(_present(h.old_text, content) for h in hunks)


def hunks_gone(content: str, hunks: list[Hunk]) -> bool:
    """True when neither old nor new text of any hunk is present."""
    return not any(_present(h.old_text, content) or _present(h.new_text, content) for h in hunks)
