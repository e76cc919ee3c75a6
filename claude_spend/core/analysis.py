"""
Batch usage analysis.

Runs the whole pipeline over a snapshot of session sources: decode,
reconstruct, aggregate and detect insights.

The analysis is read-only and deterministic:
1. The billing context is resolved by the caller and used for every event
2. Files are reconstructed independently (optionally in parallel), each in
   its own event order
3. Results are merged in enumeration order, so repeated runs over the same
   snapshot produce identical output
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .aggregation import (
    DailyAggregate,
    GrandTotals,
    ModelAggregate,
    ProjectAggregate,
    PromptAggregate,
    Session,
    all_queries,
    build_session,
    compute_totals,
    fold_daily,
    fold_models,
    fold_projects,
    group_prompts,
    top_prompts,
)
from .billing import BillingContext, is_subscription
from .insights import Insight, InsightContext, generate_insights
from .reconstruction import Query, extract_queries
from claude_spend.storage.decoder import DecodeStats, decode_lines
from claude_spend.storage.repository import SessionSource

logger = logging.getLogger(__name__)

TOP_PROMPTS = 20


@dataclass
class DashboardData:
    """Full batch result."""
    sessions: List[Session]
    daily_usage: List[DailyAggregate]
    model_breakdown: List[ModelAggregate]
    project_breakdown: List[ProjectAggregate]
    top_prompts: List[PromptAggregate]
    totals: GrandTotals
    insights: List[Insight]
    billing_context: BillingContext
    is_equivalent_cost: bool
    decode_stats: DecodeStats = field(default_factory=DecodeStats)


def empty_result(billing_context: BillingContext) -> DashboardData:
    """Result for a run with no readable sessions."""
    return DashboardData(
        sessions=[],
        daily_usage=[],
        model_breakdown=[],
        project_breakdown=[],
        top_prompts=[],
        totals=GrandTotals(),
        insights=[],
        billing_context=billing_context,
        is_equivalent_cost=is_subscription(billing_context),
    )


def analyze_source(
    source: SessionSource,
    billing_context: BillingContext,
    first_prompt_hint: Optional[str] = None,
    stats: Optional[DecodeStats] = None,
) -> Optional[Session]:
    """Reconstruct one session file and its subagents into a Session.

    Returns:
        Session, or None if the file yields no billed queries
    """
    events = list(decode_lines(source.lines, stats))
    if not events:
        return None

    queries = extract_queries(events, billing_context)
    if not queries:
        return None

    subagent_queries: List[Query] = []
    for lines in source.subagent_lines:
        subagent_queries.extend(extract_queries(decode_lines(lines, stats), billing_context))

    return build_session(
        session_id=source.session_id,
        project=source.project,
        events=events,
        queries=queries,
        subagent_queries=subagent_queries,
        first_prompt_hint=first_prompt_hint,
    )


def analyze_sessions(
    sources: Iterable[SessionSource],
    billing_context: BillingContext,
    first_prompts: Optional[Dict[str, str]] = None,
    max_workers: int = 1,
    top_prompt_limit: int = TOP_PROMPTS,
    project_top_prompt_limit: int = 10,
) -> DashboardData:
    """Run the full pipeline over a snapshot of session sources.

    Args:
        sources: Session line streams to analyse
        billing_context: Billing context resolved once for the run
        first_prompts: Session id to display prompt, from the history index
        max_workers: Files reconstructed concurrently (1 = sequential)
        top_prompt_limit: Size of the global most-expensive-prompts list
        project_top_prompt_limit: Size of each project's prompt list

    Returns:
        DashboardData for the snapshot
    """
    sources = list(sources)
    if not sources:
        return empty_result(billing_context)

    hints = first_prompts or {}
    # One counter per source so workers never share a mutable object
    source_stats = [DecodeStats() for _ in sources]

    def run(index: int) -> Optional[Session]:
        source = sources[index]
        return analyze_source(
            source, billing_context, hints.get(source.session_id), source_stats[index]
        )

    if max_workers > 1 and len(sources) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            results = list(executor.map(run, range(len(sources))))
    else:
        results = [run(index) for index in range(len(sources))]

    sessions = [s for s in results if s is not None]
    stats = DecodeStats(
        decoded=sum(s.decoded for s in source_stats),
        skipped=sum(s.skipped for s in source_stats),
    )
    if stats.skipped:
        logger.debug("Skipped %d unparsable lines", stats.skipped)

    return aggregate_sessions(
        sessions,
        billing_context,
        top_prompt_limit=top_prompt_limit,
        project_top_prompt_limit=project_top_prompt_limit,
        decode_stats=stats,
    )


def aggregate_sessions(
    sessions: Sequence[Session],
    billing_context: BillingContext,
    top_prompt_limit: int = TOP_PROMPTS,
    project_top_prompt_limit: int = 10,
    decode_stats: Optional[DecodeStats] = None,
) -> DashboardData:
    """Fold sessions into aggregates and run the insight battery."""
    ordered = sorted(sessions, key=lambda s: s.total_tokens, reverse=True)
    daily = fold_daily(ordered)
    totals = compute_totals(ordered, daily)
    prompts = [p for s in sessions for p in group_prompts(s)]

    insights = generate_insights(InsightContext(
        sessions=ordered,
        prompts=prompts,
        totals=totals,
        billing_context=billing_context,
    ))

    logger.info(
        "Analysed %d sessions, %d queries, $%.2f (%s billing)",
        totals.total_sessions, totals.total_queries, totals.total_cost_usd,
        billing_context.value,
    )

    return DashboardData(
        sessions=ordered,
        daily_usage=daily,
        model_breakdown=fold_models(all_queries(sessions)),
        project_breakdown=fold_projects(ordered, project_top_prompt_limit),
        top_prompts=top_prompts(prompts, top_prompt_limit),
        totals=totals,
        insights=insights,
        billing_context=billing_context,
        is_equivalent_cost=is_subscription(billing_context),
        decode_stats=decode_stats or DecodeStats(),
    )
