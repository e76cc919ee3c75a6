"""
Data models for storage layer.

Defines the decoded forms of session log lines. A decoded line is one of
three closed variants: a user turn, an assistant turn carrying token
usage, or any other entry.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple, Union

from claude_spend.core.token_counter import TokenUsage

SYNTHETIC_MODEL = "<synthetic>"
UNKNOWN_MODEL = "unknown"


@dataclass(frozen=True)
class UserEvent:
    """A user turn that can anchor the following assistant turns.

    ``text`` is None for user entries without text, e.g. tool results.
    """
    timestamp: Optional[datetime]
    text: Optional[str]


@dataclass(frozen=True)
class AssistantEvent:
    """A model response carrying token usage."""
    timestamp: Optional[datetime]
    model: str
    usage: TokenUsage
    tools: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_synthetic(self) -> bool:
        """Synthetic turns are generated locally and never billed."""
        return self.model == SYNTHETIC_MODEL


@dataclass(frozen=True)
class OtherEvent:
    """Any entry that neither anchors nor produces a query (meta, control, summaries)."""
    timestamp: Optional[datetime]
    kind: str = "other"


RawEvent = Union[UserEvent, AssistantEvent, OtherEvent]
