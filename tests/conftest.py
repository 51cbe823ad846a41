from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple

import pytest

from nl_csvchat.config.settings import Settings
from nl_csvchat.data.session import Turn
from nl_csvchat.db.store import TabularStore

PRODUCTS_CSV = "name,price\nWidget,10\nGadget,20"


class ScriptedGenerator:
    """Stands in for the text-generation boundary; replies are consumed in order.

    A reply may be a dict, an exception instance (raised), or a callable(turns, shape).
    """

    def __init__(self, *replies: Any):
        self.replies: List[Any] = list(replies)
        self.calls: List[Tuple[Tuple[Turn, ...], Dict[str, Any]]] = []

    def generate_structured(self, turns: Sequence[Turn], output_shape: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((tuple(turns), output_shape))
        if not self.replies:
            raise AssertionError("Unexpected generation call")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(turns, output_shape)
        return reply

    def last_prompt(self, call: int = -1) -> str:
        return self.calls[call][0][-1].content


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = dict(
        env="test",
        log_level="INFO",
        log_file="",
        delimiter=",",
        fallback_encodings=["utf-8-sig", "latin-1"],
        skip_bad_lines=False,
        max_rows_preview=20,
        table_name="my_table",
        max_query_attempts=3,
        correction_context="first",
        chart_mapper="llm",
        transform_sample_rows=5,
        aws_region="us-east-1",
        bedrock_chat_model_id="test-model",
        llm_temperature=0.0,
        llm_max_tokens=256,
        llm_max_retries=1,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store():
    s = TabularStore()
    yield s
    s.close()


@pytest.fixture
def products_store(store):
    store.load_dataset(PRODUCTS_CSV, source_name="products.csv")
    return store
