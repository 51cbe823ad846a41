from __future__ import annotations

import json
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence

from nl_csvchat.bedrock.circuit import CircuitBreaker
from nl_csvchat.data.session import Turn
from nl_csvchat.exceptions.errors import GenerationError
from nl_csvchat.logging.logger import get_logger

log = get_logger("bedrock.client")


def _sleep_backoff(attempt: int) -> None:
    base = 0.5 * (2 ** (attempt - 1))
    jitter = random.uniform(0.0, 0.2)
    time.sleep(min(6.0, base + jitter))


_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)


class StructuredGenerator(Protocol):
    """Text-generation boundary: conversation turns in, a JSON object of the declared shape out."""

    def generate_structured(self, turns: Sequence[Turn], output_shape: Dict[str, Any]) -> Dict[str, Any]: ...


@dataclass
class BedrockConfig:
    region: str
    chat_model_id: str
    max_tokens: int = 1200
    temperature: float = 0.0
    max_retries: int = 3


class BedrockClient:
    def __init__(self, cfg: BedrockConfig, runtime: Any = None):
        self.cfg = cfg
        self.cb = CircuitBreaker()
        self.br = runtime
        if self.br is None:
            import boto3

            self.br = boto3.client("bedrock-runtime", region_name=cfg.region)

    # -----------------------------
    # Turns -> JSON
    # -----------------------------
    def generate_structured(self, turns: Sequence[Turn], output_shape: Dict[str, Any]) -> Dict[str, Any]:
        """
        Call the Bedrock chat model (Claude Messages API) and return a JSON object.

        - System turns are joined into the `system` prompt.
        - Consecutive turns with the same role are merged (the API requires alternation).
        - The required output shape is appended to the last user turn.
        - Tolerates prose around the JSON by extracting the first JSON object.
        """
        if not self.cb.allow():
            raise GenerationError("Bedrock circuit breaker is open.")

        system, messages = self._build_messages(turns, output_shape)
        body: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.cfg.max_tokens,
            "temperature": self.cfg.temperature,
            "messages": messages,
        }
        if system:
            body["system"] = system

        attempts = max(1, int(self.cfg.max_retries))
        last_err: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                resp = self.br.invoke_model(
                    modelId=self.cfg.chat_model_id,
                    contentType="application/json",
                    accept="application/json",
                    body=json.dumps(body).encode("utf-8"),
                )
                raw_bytes = resp["body"].read()
                if not raw_bytes:
                    raise GenerationError("Empty Bedrock response body.")
                payload = json.loads(raw_bytes.decode("utf-8"))
                model_text = self._extract_text(payload)
                log.info("Model text head: %r", (model_text or "")[:300])
            except Exception as e:
                last_err = e
                log.warning(
                    "Bedrock chat failed",
                    extra={"attempt": attempt, "error": str(e), "model_id": self.cfg.chat_model_id},
                    exc_info=True,
                )
                self.cb.record_failure()
                if attempt < attempts:
                    _sleep_backoff(attempt)
                continue

            self.cb.record_success()
            # A reply that is not JSON is a contract violation, not a transport failure.
            return self._extract_first_json_object(model_text)

        raise GenerationError("Bedrock chat call failed after retries.") from last_err

    # -----------------------------
    # Helpers
    # -----------------------------
    def _build_messages(
        self, turns: Sequence[Turn], output_shape: Dict[str, Any]
    ) -> tuple[str, List[Dict[str, str]]]:
        system_parts: List[str] = []
        messages: List[Dict[str, str]] = []
        for t in turns:
            if t.role == "system":
                system_parts.append(t.content)
                continue
            role = "assistant" if t.role == "assistant" else "user"
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += "\n\n" + t.content
            else:
                messages.append({"role": role, "content": t.content})

        instruction = (
            "Return ONLY a JSON object that matches this schema (include all required keys):\n"
            f"{json.dumps(output_shape)}"
        )
        if messages and messages[-1]["role"] == "user":
            messages[-1]["content"] += "\n\n" + instruction
        else:
            messages.append({"role": "user", "content": instruction})
        if messages[0]["role"] != "user":
            messages.insert(0, {"role": "user", "content": "(conversation start)"})
        return "\n\n".join(system_parts), messages

    def _extract_text(self, payload: Any) -> str:
        if isinstance(payload, dict) and "content" in payload:
            # Claude Messages API: {"content":[{"type":"text","text":"..."}], ...}
            parts: List[str] = []
            for c in payload.get("content", []) or []:
                if isinstance(c, dict) and c.get("type") == "text":
                    parts.append(c.get("text", ""))
            return "".join(parts).strip()
        if isinstance(payload, dict):
            return payload.get("completion") or payload.get("generation") or payload.get("outputText") or ""
        return ""

    def _extract_first_json_object(self, text: str) -> Dict[str, Any]:
        """
        Extract the first JSON object from a model response that may include prose.
        - Supports fenced ```json ... ```
        - Repairs trailing commas before } or ]
        - Parses the first balanced {...} region
        """
        if not text or not text.strip():
            raise GenerationError("LLM returned empty text; cannot parse JSON.")

        t = text.strip()
        m = _JSON_FENCE_RE.search(t)
        if m:
            t = m.group(1).strip()

        start = t.find("{")
        if start < 0:
            raise GenerationError(f"No JSON object found in model text. Head: {t[:200]!r}")

        depth = 0
        in_str = False
        esc = False
        for i in range(start, len(t)):
            ch = t[i]
            if in_str:
                if esc:
                    esc = False
                elif ch == "\\":
                    esc = True
                elif ch == '"':
                    in_str = False
            elif ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    candidate = re.sub(r",(\s*[}\]])", r"\1", t[start : i + 1].strip())
                    try:
                        out = json.loads(candidate)
                    except json.JSONDecodeError as e:
                        raise GenerationError(f"Malformed JSON in model response: {e}") from e
                    if not isinstance(out, dict):
                        raise GenerationError("Model response is not a JSON object.")
                    return out

        raise GenerationError("Unbalanced JSON braces in model response.")
