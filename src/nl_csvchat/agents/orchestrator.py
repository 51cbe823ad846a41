from __future__ import annotations
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Optional, Tuple, Union

from nl_csvchat.config.settings import Settings
from nl_csvchat.data.session import ConversationContext
from nl_csvchat.db.store import TableSchema, TabularResult, TabularStore
from nl_csvchat.bedrock.client import BedrockClient, BedrockConfig, StructuredGenerator
from nl_csvchat.tools.generation_tool import correct_query, generate_query
from nl_csvchat.tools.repair_tool import AttemptRecord, run_repair_loop
from nl_csvchat.tools.transform_tool import ChartData, transform
from nl_csvchat.viz.plotly_factory import build_figure
from nl_csvchat.exceptions.errors import (
    ChartRenderError,
    DatasetNotLoadedError,
    GenerationError,
    QueryError,
    TransformError,
)
from nl_csvchat.logging.logger import get_logger


log = get_logger("agents.orchestrator")

NO_RESULTS = "Query returned no results"

@dataclass(frozen=True)
class TurnResult:
    ok: bool
    message: str
    question: str = ""
    query: Optional[str] = None
    chart_type: Optional[str] = None
    result: Optional[TabularResult] = None
    chart: Optional[ChartData] = None
    figure: Any = None
    # Hard failure of the turn (no table to show)
    error_kind: Optional[str] = None
    error: Optional[str] = None
    # Chart derivation failed; the table is still shown
    chart_error_kind: Optional[str] = None
    chart_error: Optional[str] = None
    attempts: Tuple[AttemptRecord, ...] = field(default_factory=tuple)

def _fail(question: str, exc: Exception, **kw: Any) -> TurnResult:
    return TurnResult(
        ok=False,
        message=f"{type(exc).__name__}: {exc}",
        question=question,
        error_kind=type(exc).__name__,
        error=str(exc),
        **kw,
    )

class ChatOrchestrator:
    """One conversation over one uploaded CSV.

    A turn runs: generate query -> repair loop against the store -> chart transform -> figure.
    `ask()` never raises for the package's own errors; failures come back as a TurnResult and
    the last successful turn stays available in `last_good`.
    """

    def __init__(
        self,
        settings: Settings,
        llm: Optional[StructuredGenerator] = None,
        store: Optional[TabularStore] = None,
    ):
        self.settings = settings
        self.store = store or TabularStore(
            table_name=settings.table_name,
            delimiter=settings.delimiter,
            fallback_encodings=settings.fallback_encodings,
            skip_bad_lines=settings.skip_bad_lines,
        )
        self.llm: StructuredGenerator = llm or BedrockClient(
            BedrockConfig(
                region=settings.aws_region,
                chat_model_id=settings.bedrock_chat_model_id,
                max_tokens=settings.llm_max_tokens,
                temperature=settings.llm_temperature,
                max_retries=settings.llm_max_retries,
            )
        )
        self.context: Optional[ConversationContext] = None
        self.last_good: Optional[TurnResult] = None

    def load_dataset(self, raw_content: Union[str, bytes], source_name: Optional[str] = None) -> TableSchema:
        """Replace the table and restart the conversation grounded on the new schema.

        Raises ParseError; on failure the previous dataset and conversation stay in place.
        """
        schema = self.store.load_dataset(raw_content, source_name=source_name)
        self.context = ConversationContext.start(self.store.describe())
        self.last_good = None
        log.info("Conversation reset for new dataset", extra={"table": schema.table_name, "columns": list(schema.columns)})
        return schema

    def ask(self, question: str) -> TurnResult:
        question = (question or "").strip()
        if not question:
            return TurnResult(ok=False, message="Please enter a question.", question=question)
        if self.context is None or not self.store.has_dataset:
            return _fail(question, DatasetNotLoadedError("Upload a CSV file first."))

        log.info("User question received", extra={"question": question})
        context = self.context

        try:
            spec = generate_query(self.llm, question, context, dialect=self.store.dialect)
        except GenerationError as e:
            log.warning("Query generation failed", extra={"question": question, "error": str(e)})
            return _fail(question, e)

        corrector = partial(self._correct, scope=self.settings.correction_context)
        outcome = run_repair_loop(
            self.store,
            corrector,
            spec.query,
            context,
            max_attempts=self.settings.max_query_attempts,
        )
        if not outcome.ok:
            return _fail(
                question,
                QueryError(outcome.last_error or "Query failed"),
                query=outcome.query,
                chart_type=spec.chart_type,
                attempts=outcome.attempts,
            )

        # Grounding for later turns: the request and the query that actually ran.
        self.context = context.with_turn("user", question).with_turn("assistant", outcome.query)

        result = outcome.result
        base = dict(
            question=question,
            query=outcome.query,
            chart_type=spec.chart_type,
            result=result,
            attempts=outcome.attempts,
        )
        if result is None or result.is_empty:
            turn = TurnResult(ok=True, message=NO_RESULTS, **base)
            self.last_good = turn
            return turn

        try:
            chart = transform(
                result,
                llm=self.llm,
                context=context,
                mapper=self.settings.chart_mapper,
                scope=self.settings.correction_context,
                sample_rows=self.settings.transform_sample_rows,
            )
        except TransformError as e:
            log.warning("Chart transform failed; showing table", extra={"error": str(e)})
            turn = TurnResult(
                ok=True,
                message="OK (table only)",
                chart_error_kind=type(e).__name__,
                chart_error=str(e),
                **base,
            )
            self.last_good = turn
            return turn

        figure = None
        chart_error_kind = chart_error = None
        try:
            figure = build_figure(chart, spec.chart_type)
        except ChartRenderError as e:
            chart_error_kind, chart_error = type(e).__name__, str(e)

        turn = TurnResult(
            ok=True,
            message="OK",
            chart=chart,
            figure=figure,
            chart_error_kind=chart_error_kind,
            chart_error=chart_error,
            **base,
        )
        self.last_good = turn
        return turn

    def _correct(self, query: str, error: str, context: ConversationContext, scope: str) -> Optional[str]:
        return correct_query(self.llm, query, error, context, scope=scope, dialect=self.store.dialect)
