from typing import Dict, List, Union

import pytest

from nl_csvchat.data.session import ConversationContext
from nl_csvchat.db.store import TabularResult
from nl_csvchat.exceptions.errors import QueryError
from nl_csvchat.tools.repair_tool import EXHAUSTED, FAILED, SUCCEEDED, run_repair_loop

CTX = ConversationContext.start("schema")
OK = TabularResult(columns=("n",), rows=((1,),))


class FakeStore:
    def __init__(self, outcomes: Dict[str, Union[TabularResult, str]]):
        self.outcomes = outcomes
        self.executed: List[str] = []

    def execute(self, query: str) -> TabularResult:
        self.executed.append(query)
        out = self.outcomes.get(query, f"no such query: {query}")
        if isinstance(out, str):
            raise QueryError(out)
        return out


class Corrector:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def __call__(self, query, error, context):
        self.calls.append((query, error, context))
        return self.replies.pop(0) if self.replies else None


def test_success_on_first_attempt_makes_no_correction():
    store = FakeStore({"q1": OK})
    corrector = Corrector()
    outcome = run_repair_loop(store, corrector, "q1", CTX)
    assert outcome.state == SUCCEEDED
    assert outcome.ok
    assert outcome.result is OK
    assert store.executed == ["q1"]
    assert corrector.calls == []


def test_corrected_query_result_is_returned():
    store = FakeStore({"q1": "column cost not found", "q2": OK})
    corrector = Corrector("q2")
    outcome = run_repair_loop(store, corrector, "q1", CTX)
    assert outcome.state == SUCCEEDED
    assert outcome.query == "q2"
    assert outcome.result is OK
    assert corrector.calls == [("q1", "column cost not found", CTX)]
    assert [a.error for a in outcome.attempts] == ["column cost not found", None]


def test_loop_stops_after_success_even_with_budget_left():
    store = FakeStore({"q1": "err", "q2": OK, "q3": OK})
    corrector = Corrector("q2", "q3")
    run_repair_loop(store, corrector, "q1", CTX, max_attempts=5)
    assert store.executed == ["q1", "q2"]
    assert len(corrector.calls) == 1


@pytest.mark.parametrize("max_attempts", [1, 2, 3, 4])
def test_executions_never_exceed_budget(max_attempts):
    store = FakeStore({})
    corrector = Corrector(*[f"q{i}" for i in range(2, 20)])
    outcome = run_repair_loop(store, corrector, "q1", CTX, max_attempts=max_attempts)
    assert outcome.state == EXHAUSTED
    assert len(store.executed) == max_attempts
    assert len(corrector.calls) == max_attempts - 1
    assert outcome.last_error == f"no such query: q{max_attempts}"


def test_each_correction_sees_the_latest_error():
    store = FakeStore({"q1": "e1", "q2": "e2", "q3": OK})
    corrector = Corrector("q2", "q3")
    outcome = run_repair_loop(store, corrector, "q1", CTX)
    assert outcome.ok
    assert [(q, e) for q, e, _ in corrector.calls] == [("q1", "e1"), ("q2", "e2")]


@pytest.mark.parametrize("reply", [None, "", "   "])
def test_unusable_correction_fails_with_last_error(reply):
    store = FakeStore({"q1": "bad column"})
    outcome = run_repair_loop(store, Corrector(reply), "q1", CTX)
    assert outcome.state == FAILED
    assert outcome.last_error == "bad column"
    assert store.executed == ["q1"]


def test_zero_rows_is_success():
    empty = TabularResult(columns=("n",), rows=())
    outcome = run_repair_loop(FakeStore({"q": empty}), Corrector(), "q", CTX)
    assert outcome.state == SUCCEEDED
    assert outcome.result.is_empty


def test_invalid_budget_is_rejected():
    with pytest.raises(ValueError):
        run_repair_loop(FakeStore({}), Corrector(), "q", CTX, max_attempts=0)


def test_repair_against_real_store(products_store):
    def corrector(query, error, context):
        assert "cost" in error
        return "SELECT name FROM my_table ORDER BY name"

    outcome = run_repair_loop(products_store, corrector, "SELECT cost FROM my_table", CTX)
    assert outcome.ok
    assert outcome.result.rows == (("Gadget",), ("Widget",))
