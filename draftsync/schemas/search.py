"""Offline search schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

SearchKind = Literal["draft", "image"]


class SearchResult(BaseModel):
    """One local draft or image matching a query."""

    id: str
    kind: SearchKind
    title: str
    excerpt: str | None = None
    last_modified: datetime
    score: int
