from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from nl_csvchat.bedrock.client import StructuredGenerator
from nl_csvchat.data.session import ConversationContext, Turn
from nl_csvchat.db.utils import DUCKDB, SqlDialect, clean_sql
from nl_csvchat.exceptions.errors import GenerationError
from nl_csvchat.logging.logger import get_logger

log = get_logger("tools.generation")

CHART_TYPES = ("line",)

# Output shapes for the generation boundary. The checks below are the real authority.
QUERY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["query", "chartType"],
    "properties": {
        "query": {"type": "string", "description": "The SQL query to execute"},
        "chartType": {"type": "string", "enum": list(CHART_TYPES), "description": "The type of chart to display"},
    },
}

CORRECTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["query"],
    "properties": {"query": {"type": "string", "description": "The corrected SQL query"}},
}


@dataclass(frozen=True)
class QuerySpec:
    query: str
    chart_type: str


def generate_query(
    llm: StructuredGenerator,
    user_request: str,
    context: ConversationContext,
    dialect: SqlDialect = DUCKDB,
) -> QuerySpec:
    """Ask the model for a query and chart type. The query is NOT validated here."""
    prompt = f"Generate a {dialect.name}-compatible SQL query and appropriate chart type for: {user_request}"
    turns = context.turns + (Turn("user", prompt),)
    out = llm.generate_structured(turns, QUERY_SCHEMA)

    if not isinstance(out, dict):
        raise GenerationError("Query generation returned a non-object.")
    query = out.get("query")
    if not isinstance(query, str) or not query.strip():
        raise GenerationError("Query generation returned no query.")
    chart_type = str(out.get("chartType") or "").strip().lower()
    if chart_type not in CHART_TYPES:
        raise GenerationError(f"Unsupported chart type: {out.get('chartType')!r}")

    spec = QuerySpec(query=clean_sql(query), chart_type=chart_type)
    log.info("Generated query", extra={"request": user_request, "sql": spec.query, "chart_type": chart_type})
    return spec


def correct_query(
    llm: StructuredGenerator,
    original_query: str,
    error_message: str,
    context: ConversationContext,
    scope: str = "first",
    dialect: SqlDialect = DUCKDB,
) -> Optional[str]:
    """Ask for a replacement query given the engine's exact error.

    Returns None when the model produces nothing usable, including a failed call.
    """
    d = dialect.name
    prompt = (
        f"You are an expert in {d}. The following SQL query resulted in an error:\n\n"
        f"Original query: {original_query}\n"
        f"Error message: {error_message}\n\n"
        f"Please generate a corrected version of this query that addresses the error and works with {d}.\n"
        "Only return the corrected SQL query, nothing else."
    )
    turns = context.grounding(scope) + (Turn("user", prompt),)
    try:
        out = llm.generate_structured(turns, CORRECTION_SCHEMA)
    except GenerationError as e:
        log.warning("Correction call failed", extra={"error": str(e)})
        return None

    query = out.get("query") if isinstance(out, dict) else None
    if not isinstance(query, str) or not clean_sql(query):
        log.warning("Correction call returned no query")
        return None
    return clean_sql(query)
