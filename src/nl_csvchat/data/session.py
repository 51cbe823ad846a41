from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class Turn:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown conversation role: {self.role!r}")


@dataclass(frozen=True)
class ConversationContext:
    """Append-only conversation history handed explicitly to every generation call.

    Key points:
      - Immutable: `with_turn()` returns a new context, so a context captured at the start
        of a user turn cannot change underneath the repair loop or the transformer.
      - The first entry is the schema description issued when the dataset was loaded.
    """

    turns: Tuple[Turn, ...] = field(default_factory=tuple)

    @classmethod
    def start(cls, system_text: str) -> "ConversationContext":
        return cls(turns=(Turn("system", system_text),))

    def with_turn(self, role: str, content: str) -> "ConversationContext":
        return ConversationContext(turns=self.turns + (Turn(role, content),))

    def grounding(self, scope: str = "first") -> Tuple[Turn, ...]:
        """Turns supplied to correction/transform calls: `first`, `all` or `none`."""
        if scope == "first":
            return self.turns[:1]
        if scope == "all":
            return self.turns
        if scope == "none":
            return ()
        raise ValueError(f"Unknown grounding scope: {scope!r}")

    def __len__(self) -> int:
        return len(self.turns)
