"""
Hierarchical aggregation of reconstructed queries.

Folds Query sequences into sessions, and sessions into daily, model,
project and prompt aggregates plus grand totals. Every fold is a sum of
UsageTotals values, so any partition of the input folds to the same
totals. Only the cost curve and prompt grouping depend on the order of
queries inside one session.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import reduce
from operator import add
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .reconstruction import Query
from claude_spend.storage.models import SYNTHETIC_MODEL, UNKNOWN_MODEL, RawEvent

MAX_PROMPT_CHARS = 300
MAX_FIRST_PROMPT_CHARS = 200
PROJECT_TOP_PROMPTS = 10
NO_PROMPT = "(no prompt)"


@dataclass(frozen=True)
class UsageTotals:
    """Summable token and cost totals."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    cost_usd: float = 0.0
    cache_savings: float = 0.0
    query_count: int = 0

    def __add__(self, other: "UsageTotals") -> "UsageTotals":
        if not isinstance(other, UsageTotals):
            return NotImplemented
        return UsageTotals(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cost_usd=self.cost_usd + other.cost_usd,
            cache_savings=self.cache_savings + other.cache_savings,
            query_count=self.query_count + other.query_count,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @classmethod
    def of(cls, query: Query) -> "UsageTotals":
        return cls(
            input_tokens=query.input_tokens,
            output_tokens=query.output_tokens,
            cache_creation_tokens=query.cache_creation_tokens,
            cache_read_tokens=query.cache_read_tokens,
            cost_usd=query.cost_usd,
            cache_savings=query.cache_savings,
            query_count=1,
        )


def fold_queries(queries: Iterable[Query]) -> UsageTotals:
    """Sum a Query population into one UsageTotals."""
    return reduce(add, (UsageTotals.of(q) for q in queries), UsageTotals())


@dataclass(frozen=True)
class CostCurvePoint:
    """Cumulative session cost after one timestamped query."""
    message_index: int
    timestamp: datetime
    cumulative_cost: float


@dataclass(frozen=True)
class Session:
    """One conversation file with its reconstructed queries.

    Token totals cover the session's own queries. ``cost_usd`` and
    ``cache_savings`` also include subagent queries; the cost curve does not.
    """
    session_id: str
    project: str
    date: Optional[date]
    timestamp: Optional[datetime]
    first_prompt: str
    model: str
    queries: Tuple[Query, ...]
    input_tokens: int
    output_tokens: int
    cost_usd: float
    cache_savings: float
    cache_efficiency: float
    cost_curve: Tuple[CostCurvePoint, ...]
    subagent_cost: float = 0.0
    subagent_queries: Tuple[Query, ...] = field(default_factory=tuple)

    @property
    def query_count(self) -> int:
        return len(self.queries)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class PromptAggregate:
    """All queries answering one contiguous user prompt."""
    prompt: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    continuations: int
    tool_counts: Dict[str, int]
    model: str
    date: Optional[date]
    session_id: str

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class DailyAggregate:
    date: date
    input_tokens: int
    output_tokens: int
    cost_usd: float
    sessions: int
    queries: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ModelAggregate:
    model: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    query_count: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ProjectAggregate:
    project: str
    input_tokens: int
    output_tokens: int
    cost_usd: float
    session_count: int
    query_count: int
    model_breakdown: Tuple[ModelAggregate, ...] = field(default_factory=tuple)
    top_prompts: Tuple[PromptAggregate, ...] = field(default_factory=tuple)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @property
    def days(self) -> int:
        """Inclusive number of calendar days covered."""
        return (self.end - self.start).days + 1


@dataclass(frozen=True)
class GrandTotals:
    """Run-wide totals.

    Token and query totals cover sessions' own queries, like the session and
    project roll-ups. Subagent tokens and queries are carried separately;
    costs include them everywhere.
    """
    total_sessions: int = 0
    total_queries: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost_usd: float = 0.0
    total_cache_savings: float = 0.0
    avg_tokens_per_query: int = 0
    avg_tokens_per_session: int = 0
    avg_cost_per_query: float = 0.0
    avg_cost_per_session: float = 0.0
    date_range: Optional[DateRange] = None
    subagent_input_tokens: int = 0
    subagent_output_tokens: int = 0
    subagent_queries: int = 0

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    @property
    def billed_tokens(self) -> int:
        """Own and subagent tokens; the model breakdown sums to this."""
        return self.total_tokens + self.subagent_input_tokens + self.subagent_output_tokens

    @property
    def billed_queries(self) -> int:
        """Own and subagent queries; the model breakdown sums to this."""
        return self.total_queries + self.subagent_queries


def _primary_model(queries: Sequence[Query], fallback: str = UNKNOWN_MODEL) -> str:
    """Most frequent model; the first one seen wins ties."""
    counts = Counter(q.model for q in queries if q.model != SYNTHETIC_MODEL)
    if not counts:
        return fallback
    return counts.most_common(1)[0][0]


def build_cost_curve(queries: Sequence[Query]) -> Tuple[CostCurvePoint, ...]:
    """One point per query with a timestamp, in session order."""
    timed = [q for q in queries if q.assistant_timestamp is not None]
    return tuple(
        CostCurvePoint(
            message_index=index,
            timestamp=q.assistant_timestamp,
            cumulative_cost=q.cumulative_cost,
        )
        for index, q in enumerate(timed)
    )


def build_session(
    session_id: str,
    project: str,
    events: Sequence[RawEvent],
    queries: Sequence[Query],
    subagent_queries: Sequence[Query] = (),
    first_prompt_hint: Optional[str] = None,
) -> Optional[Session]:
    """Fold one file's queries into a Session.

    Args:
        session_id: Session identifier (the file stem)
        project: Project identifier (the parent directory)
        events: Decoded events of the file, used to date the session
        queries: Queries reconstructed from the file
        subagent_queries: Queries reconstructed from the session's subagent files
        first_prompt_hint: Display prompt from the history index, if any

    Returns:
        Session, or None when the file yielded no queries
    """
    if not queries:
        return None

    own = fold_queries(queries)
    subagents = fold_queries(subagent_queries)

    start = next((e.timestamp for e in events if e.timestamp is not None), None)
    first_prompt = (
        first_prompt_hint
        or next((q.user_prompt for q in queries if q.user_prompt), None)
        or NO_PROMPT
    )
    cache_efficiency = (
        own.cache_read_tokens / own.input_tokens if own.input_tokens > 0 else 0.0
    )

    return Session(
        session_id=session_id,
        project=project,
        date=start.date() if start is not None else None,
        timestamp=start,
        first_prompt=first_prompt[:MAX_FIRST_PROMPT_CHARS],
        model=_primary_model(queries),
        queries=tuple(queries),
        input_tokens=own.input_tokens,
        output_tokens=own.output_tokens,
        cost_usd=own.cost_usd + subagents.cost_usd,
        cache_savings=own.cache_savings + subagents.cache_savings,
        cache_efficiency=cache_efficiency,
        cost_curve=build_cost_curve(queries),
        subagent_cost=subagents.cost_usd,
        subagent_queries=tuple(subagent_queries),
    )


def group_prompts(session: Session) -> List[PromptAggregate]:
    """Group a session's queries by contiguous user prompt.

    A query carrying a prompt different from the current one starts a new
    group. Queries without a prompt extend the current group and count as
    continuations. Groups without a prompt or without tokens are dropped.
    """
    groups: List[PromptAggregate] = []
    for prompt, members in _prompt_runs(session.queries):
        totals = fold_queries(members)
        if not prompt or totals.total_tokens == 0:
            continue
        tools: Counter = Counter()
        for q in members:
            tools.update(q.tools)
        groups.append(PromptAggregate(
            prompt=prompt[:MAX_PROMPT_CHARS],
            input_tokens=totals.input_tokens,
            output_tokens=totals.output_tokens,
            cost_usd=totals.cost_usd,
            continuations=sum(1 for q in members if not q.user_prompt),
            tool_counts=dict(tools),
            model=_primary_model(members, fallback=session.model),
            date=session.date,
            session_id=session.session_id,
        ))
    return groups


def _prompt_runs(queries: Sequence[Query]) -> List[Tuple[Optional[str], List[Query]]]:
    """Split queries into runs; a run starts at each change of prompt text."""
    runs: List[Tuple[Optional[str], List[Query]]] = []
    for query in queries:
        if not runs or (query.user_prompt and query.user_prompt != runs[-1][0]):
            runs.append((query.user_prompt, []))
        runs[-1][1].append(query)
    return runs


def top_prompts(prompts: Iterable[PromptAggregate], limit: int) -> List[PromptAggregate]:
    """Most token-hungry prompts first."""
    return sorted(prompts, key=lambda p: p.total_tokens, reverse=True)[:limit]


def fold_daily(sessions: Iterable[Session]) -> List[DailyAggregate]:
    """Daily totals keyed by session start date, oldest first."""
    by_day: Dict[date, Tuple[UsageTotals, int]] = {}
    for session in sessions:
        if session.date is None:
            continue
        totals, count = by_day.get(session.date, (UsageTotals(), 0))
        by_day[session.date] = (totals + _session_totals(session), count + 1)

    return [
        DailyAggregate(
            date=day,
            input_tokens=totals.input_tokens,
            output_tokens=totals.output_tokens,
            cost_usd=totals.cost_usd,
            sessions=count,
            queries=totals.query_count,
        )
        for day, (totals, count) in sorted(by_day.items())
    ]


def fold_models(queries: Iterable[Query]) -> List[ModelAggregate]:
    """Totals per model id, skipping unknown and synthetic models."""
    by_model: Dict[str, UsageTotals] = {}
    for query in queries:
        if query.model in (SYNTHETIC_MODEL, UNKNOWN_MODEL):
            continue
        by_model[query.model] = by_model.get(query.model, UsageTotals()) + UsageTotals.of(query)

    return [
        ModelAggregate(
            model=model,
            input_tokens=totals.input_tokens,
            output_tokens=totals.output_tokens,
            cost_usd=totals.cost_usd,
            query_count=totals.query_count,
        )
        for model, totals in by_model.items()
    ]


def all_queries(sessions: Iterable[Session]) -> List[Query]:
    """Own and subagent queries of every session."""
    result: List[Query] = []
    for session in sessions:
        result.extend(session.queries)
        result.extend(session.subagent_queries)
    return result


def fold_projects(
    sessions: Iterable[Session],
    top_prompt_limit: int = PROJECT_TOP_PROMPTS,
) -> List[ProjectAggregate]:
    """Totals per project, largest token consumer first."""
    by_project: Dict[str, List[Session]] = {}
    for session in sessions:
        by_project.setdefault(session.project, []).append(session)

    projects = []
    for project, members in by_project.items():
        totals = reduce(add, (_session_totals(s) for s in members), UsageTotals())
        prompts = [p for s in members for p in group_prompts(s)]
        models = sorted(fold_models(all_queries(members)),
                        key=lambda m: m.total_tokens, reverse=True)
        projects.append(ProjectAggregate(
            project=project,
            input_tokens=totals.input_tokens,
            output_tokens=totals.output_tokens,
            cost_usd=totals.cost_usd,
            session_count=len(members),
            query_count=totals.query_count,
            model_breakdown=tuple(models),
            top_prompts=tuple(top_prompts(prompts, top_prompt_limit)),
        ))

    return sorted(projects, key=lambda p: p.total_tokens, reverse=True)


def _session_totals(session: Session) -> UsageTotals:
    """Session contribution to roll-ups: own tokens and queries, cost incl. subagents."""
    return UsageTotals(
        input_tokens=session.input_tokens,
        output_tokens=session.output_tokens,
        cost_usd=session.cost_usd,
        cache_savings=session.cache_savings,
        query_count=session.query_count,
    )


def compute_totals(
    sessions: Sequence[Session],
    daily: Sequence[DailyAggregate] = (),
) -> GrandTotals:
    """Grand totals with per-query and per-session averages."""
    totals = reduce(add, (_session_totals(s) for s in sessions), UsageTotals())
    session_count = len(sessions)
    subagents = fold_queries(q for s in sessions for q in s.subagent_queries)
    query_count = totals.query_count

    date_range = None
    if daily:
        date_range = DateRange(start=daily[0].date, end=daily[-1].date)

    return GrandTotals(
        total_sessions=session_count,
        total_queries=query_count,
        total_input_tokens=totals.input_tokens,
        total_output_tokens=totals.output_tokens,
        total_cost_usd=totals.cost_usd,
        total_cache_savings=totals.cache_savings,
        avg_tokens_per_query=round(totals.total_tokens / query_count) if query_count else 0,
        avg_tokens_per_session=round(totals.total_tokens / session_count) if session_count else 0,
        avg_cost_per_query=totals.cost_usd / query_count if query_count else 0.0,
        avg_cost_per_session=totals.cost_usd / session_count if session_count else 0.0,
        date_range=date_range,
        subagent_input_tokens=subagents.input_tokens,
        subagent_output_tokens=subagents.output_tokens,
        subagent_queries=subagents.query_count,
    )
