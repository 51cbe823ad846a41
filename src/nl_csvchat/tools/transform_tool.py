"""Result-to-chart transformation.

The model picks a declarative mapping (which column is x, which is y, which one splits
series) for each result shape, and a fixed interpreter applies it to the rows. No
generated code is ever executed.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from nl_csvchat.bedrock.client import StructuredGenerator
from nl_csvchat.data.session import ConversationContext, Turn
from nl_csvchat.db.store import TabularResult
from nl_csvchat.db.utils import duplicate_names
from nl_csvchat.exceptions.errors import (
    GenerationError,
    TransformExecutionError,
    TransformGenerationError,
    TransformInputError,
)
from nl_csvchat.logging.logger import get_logger

log = get_logger("tools.transform")

Scalar = Union[int, float, str]

MAPPING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["y", "title", "description"],
    "properties": {
        "x": {"type": ["string", "null"], "description": "Column for the x-axis (null: use row position)"},
        "y": {"type": "string", "description": "Numeric column for the y-axis"},
        "series": {"type": ["string", "null"], "description": "Optional column whose values split the lines"},
        "title": {"type": "string"},
        "description": {"type": "string"},
    },
}


@dataclass(frozen=True)
class ChartDataPoint:
    x: Scalar
    y: float
    series: Optional[str] = None


@dataclass(frozen=True)
class ChartData:
    title: str
    description: str
    data: Tuple[ChartDataPoint, ...]

    def series_names(self) -> List[Optional[str]]:
        """Distinct series values in first-appearance order (None is the implicit series)."""
        seen: List[Optional[str]] = []
        for p in self.data:
            if p.series not in seen:
                seen.append(p.series)
        return seen


@dataclass(frozen=True)
class ChartMapping:
    y: str
    x: Optional[str] = None
    series: Optional[str] = None
    title: str = ""
    description: str = ""


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def _as_number(val: Any) -> Optional[Union[int, float]]:
    """Numeric value of `val` (numbers and numeric strings), else None."""
    if isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        return val
    if isinstance(val, str):
        s = val.strip().replace(",", "")
        if not s:
            return None
        try:
            return int(s)
        except ValueError:
            pass
        try:
            return float(s)
        except ValueError:
            return None
    return None


def _is_missing(val: Any) -> bool:
    if val is None:
        return True
    if isinstance(val, float) and math.isnan(val):
        return True
    return isinstance(val, str) and not val.strip()


def _norm(s: str) -> str:
    return re.sub(r"[\s_\-]+", "", (s or "").lower())


def resolve_column(name: Optional[str], columns: Sequence[str]) -> Optional[int]:
    """Index of `name` in `columns` (exact, then case-insensitive, then ignoring spaces/underscores)."""
    if not name:
        return None
    if name in columns:
        return list(columns).index(name)
    lower = [c.lower() for c in columns]
    if name.lower() in lower:
        return lower.index(name.lower())
    normed = [_norm(c) for c in columns]
    if _norm(name) in normed:
        return normed.index(_norm(name))
    raise TransformExecutionError(f"Mapping references unknown column: {name!r}")


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def validate_result(result: Any) -> TabularResult:
    if result is None or not getattr(result, "columns", None):
        raise TransformInputError("Result has no columns.")
    width = len(result.columns)
    for i, row in enumerate(result.rows or ()):
        if len(row) != width:
            raise TransformInputError(f"Row {i} has {len(row)} values; expected {width}.")
    dupes = duplicate_names(result.columns)
    if dupes:
        raise TransformInputError(f"Result has duplicate column names: {', '.join(dupes)}.")
    return result


def _numeric_columns(result: TabularResult) -> List[int]:
    out: List[int] = []
    for idx in range(len(result.columns)):
        values = [r[idx] for r in result.rows if not _is_missing(r[idx])]
        if values and all(_as_number(v) is not None for v in values):
            out.append(idx)
    return out


# ---------------------------------------------------------------------------
# Mapping synthesis
# ---------------------------------------------------------------------------

def _mapping_from_payload(out: Any) -> ChartMapping:
    if not isinstance(out, dict) or not out:
        raise TransformGenerationError("Mapping generation returned nothing.")

    def _opt(key: str) -> Optional[str]:
        v = out.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None

    y = _opt("y")
    if not y:
        raise TransformGenerationError("Mapping generation returned no y column.")
    return ChartMapping(
        y=y,
        x=_opt("x"),
        series=_opt("series"),
        title=_opt("title") or "",
        description=_opt("description") or "",
    )


def synthesize_mapping(
    llm: StructuredGenerator,
    result: TabularResult,
    context: ConversationContext,
    scope: str = "first",
    sample_rows: int = 5,
) -> ChartMapping:
    sample = [list(r) for r in result.rows[: max(0, sample_rows)]]
    prompt = (
        "I have a SQL query result with these columns (in order): "
        f"{', '.join(result.columns)}\n"
        f"First rows: {json.dumps(sample, default=str)}\n\n"
        "Choose how to draw it as a line chart made of points {x, y, series}:\n"
        "1. y: the column holding the numeric values to plot.\n"
        "2. x: the column for the x-axis (numeric or categorical), or null to use the row position.\n"
        "3. series: a column whose distinct values should each become a separate line, or null for a single line.\n"
        "4. title and description: a short chart title and one-sentence description.\n"
        "Use only the column names listed above."
    )
    turns = context.grounding(scope) + (Turn("user", prompt),)
    try:
        out = llm.generate_structured(turns, MAPPING_SCHEMA)
    except GenerationError as e:
        raise TransformGenerationError(f"Mapping generation failed: {e}") from e
    mapping = _mapping_from_payload(out)
    log.info("Synthesized chart mapping", extra={"x": mapping.x, "y": mapping.y, "series": mapping.series})
    return mapping


def infer_mapping(result: TabularResult) -> ChartMapping:
    """Pick a mapping from the result's shape alone: last numeric column is y."""
    numeric = _numeric_columns(result)
    if not numeric:
        raise TransformGenerationError("Result has no numeric column to plot.")
    y_idx = numeric[-1]
    others = [i for i in range(len(result.columns)) if i != y_idx]
    x_idx = others[0] if others else None
    series_idx = next((i for i in others if i != x_idx and i not in numeric), None)

    y = result.columns[y_idx]
    x = result.columns[x_idx] if x_idx is not None else None
    series = result.columns[series_idx] if series_idx is not None else None
    title = f"{y} by {x}" if x else y
    return ChartMapping(y=y, x=x, series=series, title=title, description=f"Line chart of {title}.")


# ---------------------------------------------------------------------------
# Interpreter
# ---------------------------------------------------------------------------

def apply_mapping(result: TabularResult, mapping: ChartMapping) -> ChartData:
    cols = result.columns
    y_idx = resolve_column(mapping.y, cols)
    x_idx = resolve_column(mapping.x, cols)
    s_idx = resolve_column(mapping.series, cols)
    if y_idx is None:
        raise TransformExecutionError("Mapping has no y column.")
    if s_idx is not None and s_idx == y_idx:
        raise TransformExecutionError("Series column cannot be the y column.")

    points: List[ChartDataPoint] = []
    skipped = 0
    for pos, row in enumerate(result.rows, start=1):
        y_raw = row[y_idx]
        x_raw = row[x_idx] if x_idx is not None else pos
        if _is_missing(y_raw) or _is_missing(x_raw):
            skipped += 1
            continue
        y = _as_number(y_raw)
        if y is None or not math.isfinite(y):
            raise TransformExecutionError(f"Non-numeric y value in column {cols[y_idx]!r}: {y_raw!r}")
        if isinstance(x_raw, bool) or not isinstance(x_raw, (int, float, str)):
            x_raw = str(x_raw)
        series = None
        if s_idx is not None and not _is_missing(row[s_idx]):
            series = str(row[s_idx])
        points.append(ChartDataPoint(x=x_raw, y=y, series=series))

    if skipped:
        log.info("Skipped rows with null x/y", extra={"skipped": skipped})

    y_name = cols[y_idx]
    x_name = cols[x_idx] if x_idx is not None else None
    title = mapping.title or (f"{y_name} by {x_name}" if x_name else y_name)
    return ChartData(title=title, description=mapping.description, data=tuple(points))


def validate_chart_data(chart: Any) -> ChartData:
    if not isinstance(chart, ChartData):
        raise TransformExecutionError("Transformation did not produce chart data.")
    for p in chart.data:
        if isinstance(p.y, bool) or not isinstance(p.y, (int, float)) or not math.isfinite(p.y):
            raise TransformExecutionError(f"Chart point has non-numeric y: {p.y!r}")
        if isinstance(p.x, bool) or not isinstance(p.x, (int, float, str)):
            raise TransformExecutionError(f"Chart point has invalid x: {p.x!r}")
        if p.series is not None and not isinstance(p.series, str):
            raise TransformExecutionError(f"Chart point has invalid series: {p.series!r}")
    return chart


def transform(
    result: TabularResult,
    llm: Optional[StructuredGenerator] = None,
    context: Optional[ConversationContext] = None,
    mapper: str = "llm",
    scope: str = "first",
    sample_rows: int = 5,
) -> ChartData:
    result = validate_result(result)
    if mapper == "heuristic":
        mapping = infer_mapping(result)
    elif mapper == "llm":
        if llm is None:
            raise TransformGenerationError("No text-generation client configured for chart mapping.")
        mapping = synthesize_mapping(
            llm, result, context if context is not None else ConversationContext(), scope, sample_rows
        )
    else:
        raise ValueError(f"Unknown chart mapper: {mapper!r}")
    return validate_chart_data(apply_mapping(result, mapping))
