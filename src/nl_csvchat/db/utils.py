from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from datetime import date, datetime, time
from typing import Any, Dict, List, Sequence
import re


@dataclass(frozen=True)
class SqlDialect:
    """Tiny dialect shim: how to quote identifiers and what to call the dialect in prompts."""

    name: str
    ident_quote: str = '"'

    def ident(self, name: str) -> str:
        q = self.ident_quote
        return q + name.replace(q, q + q) + q


DUCKDB = SqlDialect(name="DuckDB")

_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)


def clean_sql(text: str) -> str:
    """Strip whitespace and a surrounding Markdown code fence from model-emitted SQL."""
    t = (text or "").strip()
    m = _FENCE_RE.match(t)
    if m:
        t = m.group(1).strip()
    return t


def to_scalar(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def duplicate_names(names: Sequence[str]) -> List[str]:
    """Names that occur more than once, compared case-insensitively like SQL identifiers."""
    seen: Dict[str, str] = {}
    dupes: List[str] = []
    for n in names:
        key = str(n).lower()
        if key in seen and seen[key] not in dupes:
            dupes.append(seen[key])
        seen.setdefault(key, n)
    return dupes
