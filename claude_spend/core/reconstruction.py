"""
Conversation reconstruction.

Walks one session file's events in order and emits one Query per billed
assistant turn.

State transitions:
- User event: store its text and timestamp as the pending prompt,
  overwriting any earlier prompt that no assistant turn consumed
- Assistant event: emit a Query attributed to the pending prompt. The
  prompt is not cleared, so consecutive assistant turns (tool-driven
  steps) all attribute to the same prompt until the next user event
- Synthetic assistant turns emit nothing and do not advance the cost
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from .billing import BillingContext
from .pricing import CostBreakdown, calculate_cost
from claude_spend.storage.models import AssistantEvent, RawEvent, UserEvent


@dataclass(frozen=True)
class Query:
    """One reconstructed assistant turn.

    ``input_tokens`` includes both cache classes; they are priced
    separately but count as input for token totals.
    """
    user_prompt: Optional[str]
    user_timestamp: Optional[datetime]
    assistant_timestamp: Optional[datetime]
    model: str
    input_tokens: int
    output_tokens: int
    cache_creation_tokens: int
    cache_read_tokens: int
    cost: CostBreakdown
    cumulative_cost: float
    tools: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def cost_usd(self) -> float:
        return self.cost.total_cost

    @property
    def cache_savings(self) -> float:
        return self.cost.cache_savings


@dataclass(frozen=True)
class ReconstructionState:
    """Pending prompt plus the running cost of one file."""
    pending_prompt: Optional[str] = None
    pending_timestamp: Optional[datetime] = None
    cumulative_cost: float = 0.0


def on_user_event(state: ReconstructionState, event: UserEvent) -> ReconstructionState:
    """Replace the pending prompt with this user turn."""
    return ReconstructionState(
        pending_prompt=event.text,
        pending_timestamp=event.timestamp,
        cumulative_cost=state.cumulative_cost,
    )


def on_assistant_event(
    state: ReconstructionState,
    event: AssistantEvent,
    billing_context: BillingContext,
) -> Tuple[ReconstructionState, Optional[Query]]:
    """Price an assistant turn and attribute it to the pending prompt.

    Returns:
        The next state and the emitted Query (None for synthetic turns)
    """
    if event.is_synthetic:
        return state, None

    usage = event.usage
    cost = calculate_cost(event.model, usage, billing_context)
    cumulative_cost = state.cumulative_cost + cost.total_cost

    query = Query(
        user_prompt=state.pending_prompt,
        user_timestamp=state.pending_timestamp,
        assistant_timestamp=event.timestamp,
        model=event.model,
        input_tokens=usage.total_input_tokens,
        output_tokens=usage.output_tokens,
        cache_creation_tokens=usage.cache_creation_tokens,
        cache_read_tokens=usage.cache_read_tokens,
        cost=cost,
        cumulative_cost=cumulative_cost,
        tools=event.tools,
    )
    next_state = ReconstructionState(
        pending_prompt=state.pending_prompt,
        pending_timestamp=state.pending_timestamp,
        cumulative_cost=cumulative_cost,
    )
    return next_state, query


def extract_queries(
    events: Iterable[RawEvent],
    billing_context: BillingContext,
) -> List[Query]:
    """Reconstruct the Query sequence of one file, strictly in event order."""
    state = ReconstructionState()
    queries: List[Query] = []
    for event in events:
        if isinstance(event, UserEvent):
            state = on_user_event(state, event)
        elif isinstance(event, AssistantEvent):
            state, query = on_assistant_event(state, event, billing_context)
            if query is not None:
                queries.append(query)
    return queries
