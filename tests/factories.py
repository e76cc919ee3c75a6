"""
Builders for queries, sessions and raw log entries used across the test modules.
"""

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from claude_spend.core.aggregation import Session, build_session
from claude_spend.core.pricing import CostBreakdown
from claude_spend.core.reconstruction import Query
from claude_spend.storage.models import OtherEvent

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # a Monday


def make_query(
    prompt: Optional[str] = "do the thing",
    cost: float = 0.01,
    input_tokens: int = 1000,
    output_tokens: int = 100,
    cache_read_tokens: int = 0,
    model: str = "claude-sonnet-4-5",
    tools: Sequence[str] = (),
    timestamp: Optional[datetime] = BASE_TIME,
    cumulative_cost: float = 0.0,
) -> Query:
    """Query with a fixed total cost; the cost split is not meaningful."""
    return Query(
        user_prompt=prompt,
        user_timestamp=timestamp,
        assistant_timestamp=timestamp,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_creation_tokens=0,
        cache_read_tokens=cache_read_tokens,
        cost=CostBreakdown(
            input_cost=cost,
            output_cost=0.0,
            cache_write_cost=0.0,
            cache_read_cost=0.0,
            total_cost=cost,
            cache_savings=0.0,
        ),
        cumulative_cost=cumulative_cost,
        tools=tuple(tools),
    )


def with_running_cost(queries: Sequence[Query]) -> list:
    """Re-stamp cumulative costs in order, as reconstruction would."""
    total = 0.0
    result = []
    for q in queries:
        total += q.cost_usd
        result.append(replace(q, cumulative_cost=total))
    return result


def make_session(
    session_id: str = "s1",
    project: str = "proj-a",
    queries: Sequence[Query] = (),
    subagent_queries: Sequence[Query] = (),
    start: Optional[datetime] = BASE_TIME,
    first_prompt_hint: Optional[str] = None,
) -> Session:
    """Session built through build_session from ready-made queries."""
    events = [OtherEvent(timestamp=start)] if start is not None else []
    session = build_session(
        session_id=session_id,
        project=project,
        events=events,
        queries=with_running_cost(queries),
        subagent_queries=with_running_cost(subagent_queries),
        first_prompt_hint=first_prompt_hint,
    )
    assert session is not None
    return session


def uniform_session(
    session_id: str,
    turns: int,
    cost_per_turn: float = 0.01,
    project: str = "proj-a",
    model: str = "claude-sonnet-4-5",
    start: Optional[datetime] = BASE_TIME,
    **query_kwargs,
) -> Session:
    """Session of identical turns answering one prompt."""
    queries = [
        make_query(
            prompt=f"task for {session_id}",
            cost=cost_per_turn,
            model=model,
            timestamp=(start or BASE_TIME) + timedelta(minutes=i),
            **query_kwargs,
        )
        for i in range(turns)
    ]
    return make_session(session_id, project, queries, start=start)


def user_entry(text, timestamp="2026-03-02T09:00:00Z", **extra) -> dict:
    """Raw user log entry."""
    return {"type": "user", "timestamp": timestamp,
            "message": {"role": "user", "content": text}, **extra}


def assistant_entry(
    output_tokens=100,
    input_tokens=1000,
    model="claude-sonnet-4",
    timestamp="2026-03-02T09:00:05Z",
    cache_read_tokens=0,
    tools=(),
) -> dict:
    """Raw assistant log entry carrying usage."""
    content = [{"type": "tool_use", "name": name, "input": {}} for name in tools]
    return {
        "type": "assistant",
        "timestamp": timestamp,
        "message": {
            "role": "assistant",
            "model": model,
            "content": content,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_creation_input_tokens": 0,
                "cache_read_input_tokens": cache_read_tokens,
            },
        },
    }


def write_jsonl(path, entries) -> None:
    """Write entries (dicts or raw strings) one per line."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for entry in entries:
            f.write(entry if isinstance(entry, str) else json.dumps(entry))
            f.write("\n")
