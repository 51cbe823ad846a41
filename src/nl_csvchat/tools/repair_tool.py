from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from nl_csvchat.data.session import ConversationContext
from nl_csvchat.db.store import QueryExecutor, TabularResult
from nl_csvchat.exceptions.errors import QueryError
from nl_csvchat.logging.logger import get_logger

log = get_logger("tools.repair")

MAX_ATTEMPTS = 3

SUCCEEDED = "succeeded"
FAILED = "failed"
EXHAUSTED = "exhausted"

# (failed query, exact error, context) -> replacement query or None
Corrector = Callable[[str, str, ConversationContext], Optional[str]]


@dataclass
class RetryState:
    max_attempts: int = MAX_ATTEMPTS
    attempt: int = 0
    last_error: Optional[str] = None


@dataclass(frozen=True)
class AttemptRecord:
    query: str
    error: Optional[str] = None


@dataclass(frozen=True)
class RepairOutcome:
    state: str
    query: str
    result: Optional[TabularResult] = None
    last_error: Optional[str] = None
    attempts: Tuple[AttemptRecord, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.state == SUCCEEDED


def run_repair_loop(
    store: QueryExecutor,
    corrector: Corrector,
    initial_query: str,
    context: ConversationContext,
    max_attempts: int = MAX_ATTEMPTS,
) -> RepairOutcome:
    """Execute a query, feeding engine errors back to the model for a corrected query.

    At most `max_attempts` executions happen; attempt N+1 starts only after attempt N's
    execute (and correction, if any) has finished. The first success ends the loop.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    state = RetryState(max_attempts=max_attempts)
    query = initial_query
    history: List[AttemptRecord] = []

    while True:
        state.attempt += 1
        try:
            result = store.execute(query)
        except QueryError as e:
            state.last_error = e.message
            history.append(AttemptRecord(query=query, error=e.message))
            log.warning(
                "Query attempt failed",
                extra={"attempt": state.attempt, "max_attempts": state.max_attempts, "error": e.message},
            )
        else:
            history.append(AttemptRecord(query=query))
            log.info(
                "Query attempt succeeded",
                extra={"attempt": state.attempt, "max_attempts": state.max_attempts, "rows": len(result.rows)},
            )
            return RepairOutcome(state=SUCCEEDED, query=query, result=result, attempts=tuple(history))

        if state.attempt >= state.max_attempts:
            log.warning("Retry budget exhausted", extra={"attempts": state.attempt, "error": state.last_error})
            return RepairOutcome(
                state=EXHAUSTED, query=query, last_error=state.last_error, attempts=tuple(history)
            )

        log.info("Requesting corrected query", extra={"attempt": state.attempt})
        replacement = corrector(query, state.last_error or "", context)
        if not replacement or not replacement.strip():
            return RepairOutcome(
                state=FAILED, query=query, last_error=state.last_error, attempts=tuple(history)
            )
        query = replacement
