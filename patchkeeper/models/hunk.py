"""
Text hunk model shared by the block-format parser and the diff importer.
"""

from pydantic import BaseModel, Field


class Hunk(BaseModel):
    """One exact-substring replacement pair."""

    old_text: str
    new_text: str
    source_path: str | None = Field(
        default=None, description="Upstream source file the hunk came from (diff imports only)"
    )
