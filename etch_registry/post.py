from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PostState:
    """Per-token registry state. Absent ids read as the default instance."""

    uri: str = ""
    exists: bool = False
    total_issued: int = 0


ABSENT = PostState()
