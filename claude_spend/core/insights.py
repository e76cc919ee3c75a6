"""
Insight detection over aggregated usage.

Each detector is a pure function of the shared aggregates and the billing
context that returns at most one Insight. Detectors run in the fixed
display order of DETECTORS; a detector with nothing to report returns None.
"""

import math
import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .aggregation import GrandTotals, PromptAggregate, Session
from .billing import (
    PLAN_NAMES,
    BillingContext,
    get_subscription_monthly_fee,
    is_subscription,
)
from .pricing import fmt_cost, fmt_tokens

CHEAPER_MODEL_COST_RATIO = 0.2
DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class InsightSeverity(Enum):
    """How strongly an insight asks for attention."""
    WARNING = "warning"
    INFO = "info"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class Insight:
    """Detected usage pattern with an optional suggested remediation."""
    id: str
    severity: InsightSeverity
    title: str
    description: str
    action: Optional[str] = None


@dataclass(frozen=True)
class InsightContext:
    """Everything a detector may read."""
    sessions: Sequence[Session]
    prompts: Sequence[PromptAggregate]
    totals: GrandTotals
    billing_context: BillingContext = BillingContext.API


Detector = Callable[[InsightContext], Optional[Insight]]


def _user_message_count(session: Session) -> int:
    return sum(1 for q in session.queries if q.user_prompt)


def detect_vague_prompts(ctx: InsightContext) -> Optional[Insight]:
    """Short prompts whose answers consumed over 100K tokens."""
    matches = [p for p in ctx.prompts
               if len(p.prompt.strip()) < 30 and p.total_tokens > 100_000]
    if not matches:
        return None

    wasted_cost = sum(p.cost_usd for p in matches)
    examples = list(dict.fromkeys(p.prompt.strip() for p in matches))[:4]
    quoted = ", ".join(f'"{e}"' for e in examples)
    return Insight(
        id="vague-prompts",
        severity=InsightSeverity.WARNING,
        title=f"Short, vague messages cost you {fmt_cost(wasted_cost)}",
        description=(
            f"{len(matches)} times you sent a short message like {quoted} and each time "
            f"the model used over 100K tokens ({fmt_cost(wasted_cost)} total) to respond. "
            "Without a clear target it reads more files, runs more tools and makes more "
            "attempts, and every step re-sends the whole conversation."
        ),
        action=(
            'Be specific. Instead of "Yes", say "Yes, update the login page and run the '
            'tests." A clear target finishes faster and uses fewer tokens.'
        ),
    )


def detect_context_growth(ctx: InsightContext) -> Optional[Insight]:
    """Long sessions whose last messages cost over 2x their first ones."""
    growth = []
    for session in ctx.sessions:
        if session.query_count <= 50:
            continue
        window = min(5, session.query_count)
        first = sum(q.cost_usd for q in session.queries[:window]) / window
        last = sum(q.cost_usd for q in session.queries[-window:]) / window
        ratio = last / max(first, 0.0001)
        if ratio > 2:
            growth.append((session, ratio))
    if not growth:
        return None

    avg_growth = sum(r for _, r in growth) / len(growth)
    worst, worst_ratio = max(growth, key=lambda g: g[1])
    total_cost = sum(s.cost_usd for s, _ in growth)
    return Insight(
        id="context-growth",
        severity=InsightSeverity.WARNING,
        title=f"Long conversations cost {avg_growth:.1f}x more per message by the end",
        description=(
            f"In {len(growth)} conversations ({fmt_cost(total_cost)} total), messages near "
            f"the end cost {avg_growth:.1f}x more than at the start. Every message re-reads "
            f'the entire history. Your longest ("{worst.first_prompt[:50]}...") grew '
            f"{worst_ratio:.1f}x more expensive by the end."
        ),
        action=(
            "Start a fresh conversation when you move to a new task. Paste a short summary "
            "in your first message instead of re-reading hundreds of old messages."
        ),
    )


def detect_marathon_sessions(ctx: InsightContext) -> Optional[Insight]:
    """Three or more sessions with over 200 messages."""
    marathons = [s for s in ctx.sessions if s.query_count > 200]
    if len(marathons) < 3:
        return None

    turn_counts = sorted(s.query_count for s in ctx.sessions)
    median_turns = turn_counts[len(turn_counts) // 2]
    tokens = sum(s.total_tokens for s in marathons)
    cost = sum(s.cost_usd for s in marathons)
    share = tokens / max(ctx.totals.total_tokens, 1) * 100
    return Insight(
        id="marathon-sessions",
        severity=InsightSeverity.INFO,
        title=f"{len(marathons)} marathon conversations cost {fmt_cost(cost)} ({share:.0f}% of total)",
        description=(
            f"You have {len(marathons)} conversations with over 200 messages each. These "
            f"consumed {fmt_tokens(tokens)} tokens ({fmt_cost(cost)}). Your typical "
            f"conversation is about {median_turns} messages. Long conversations are "
            "disproportionately expensive due to context buildup."
        ),
        action="Keep one conversation per task. When a conversation drifts into different topics, start a new one.",
    )


def detect_input_heavy(ctx: InsightContext) -> Optional[Insight]:
    """Output tokens under 2% of all tokens."""
    totals = ctx.totals
    if totals.total_tokens <= 0:
        return None
    output_pct = totals.total_output_tokens / totals.total_tokens * 100
    if output_pct >= 2:
        return None

    return Insight(
        id="input-heavy",
        severity=InsightSeverity.INFO,
        title=f"Only {output_pct:.1f}% of your tokens are the model actually writing",
        description=(
            f"Out of {fmt_cost(totals.total_cost_usd)} total, the vast majority is re-reading "
            f"conversation history, files and context. Only {fmt_tokens(totals.total_output_tokens)} "
            f"tokens ({output_pct:.1f}%) are actual output."
        ),
        action="Keeping conversations shorter has more impact than asking for shorter answers.",
    )


def detect_day_pattern(ctx: InsightContext) -> Optional[Insight]:
    """Average session cost by weekday, needs 10 sessions over 3 weekdays."""
    if len(ctx.sessions) < 10:
        return None

    cost_by_day: Dict[int, float] = {}
    tokens_by_day: Counter = Counter()
    sessions_by_day: Counter = Counter()
    for session in ctx.sessions:
        if session.timestamp is None:
            continue
        day = session.timestamp.weekday()
        cost_by_day[day] = cost_by_day.get(day, 0.0) + session.cost_usd
        tokens_by_day[day] += session.total_tokens
        sessions_by_day[day] += 1
    if len(cost_by_day) < 3:
        return None

    ranked = sorted(cost_by_day, key=lambda d: cost_by_day[d] / sessions_by_day[d], reverse=True)
    busiest, quietest = ranked[0], ranked[-1]
    busiest_avg = cost_by_day[busiest] / sessions_by_day[busiest]
    quietest_avg = cost_by_day[quietest] / sessions_by_day[quietest]
    busiest_tokens = tokens_by_day[busiest] / sessions_by_day[busiest]
    return Insight(
        id="day-pattern",
        severity=InsightSeverity.NEUTRAL,
        title=f"{DAY_NAMES[busiest]}s cost the most: {fmt_cost(busiest_avg)}/session avg",
        description=(
            f"Your {DAY_NAMES[busiest]} conversations average {fmt_cost(busiest_avg)} each "
            f"({fmt_tokens(round(busiest_tokens))} tokens), compared to {fmt_cost(quietest_avg)} "
            f"on {DAY_NAMES[quietest]}s. This could mean bigger tasks on {DAY_NAMES[busiest]}s "
            "or longer conversations."
        ),
    )


def detect_model_mismatch(ctx: InsightContext) -> Optional[Insight]:
    """Simple sessions (few messages, few tokens) run on the most expensive model."""
    simple = [s for s in ctx.sessions
              if "opus" in s.model.lower() and s.query_count < 10 and s.total_tokens < 200_000]
    if len(simple) < 3:
        return None

    cost = sum(s.cost_usd for s in simple)
    cheaper_cost = cost * CHEAPER_MODEL_COST_RATIO
    savings = cost - cheaper_cost
    examples = ", ".join(f'"{s.first_prompt[:40]}"' for s in simple[:3])
    return Insight(
        id="model-mismatch",
        severity=InsightSeverity.WARNING,
        title=(
            f"{len(simple)} simple Opus conversations cost {fmt_cost(cost)}, "
            f"Sonnet would save {fmt_cost(savings)}"
        ),
        description=(
            f"These conversations had fewer than 10 messages and cost {fmt_cost(cost)} on Opus: "
            f"{examples}. Sonnet for these simple tasks would cost ~{fmt_cost(cheaper_cost)}, "
            f"saving {fmt_cost(savings)}."
        ),
        action=(
            "Switch to Sonnet or Haiku for simple tasks. Save Opus for complex multi-file "
            "changes, architecture decisions or tricky debugging."
        ),
    )


def detect_tool_heavy(ctx: InsightContext) -> Optional[Insight]:
    """Sessions with more than 3 tool-driven steps per user message."""
    if len(ctx.sessions) < 5:
        return None

    ratios = []
    for session in ctx.sessions:
        user_messages = _user_message_count(session)
        tool_calls = session.query_count - user_messages
        if user_messages > 0 and tool_calls > user_messages * 3:
            ratios.append((session, tool_calls / user_messages))
    if len(ratios) < 3:
        return None

    cost = sum(s.cost_usd for s, _ in ratios)
    avg_ratio = sum(r for _, r in ratios) / len(ratios)
    return Insight(
        id="tool-heavy",
        severity=InsightSeverity.INFO,
        title=f"{len(ratios)} tool-heavy conversations cost {fmt_cost(cost)}",
        description=(
            f"In these conversations the model made ~{round(avg_ratio)} tool calls per message "
            f"you sent. Each tool call re-reads the entire conversation. These {len(ratios)} "
            f"conversations cost {fmt_cost(cost)} total."
        ),
        action=(
            'Point to specific files and line numbers. "Fix the bug in src/auth.js line 42" '
            'triggers fewer tool calls than "fix the login bug".'
        ),
    )


def _project_label(project: str) -> str:
    """Readable name for a project directory slug."""
    label = re.sub(r"^C--Users-[^-]+-?", "", project)
    label = re.sub(r"^Projects-?", "", label)
    return label.replace("-", "/") or "~"


def detect_project_dominance(ctx: InsightContext) -> Optional[Insight]:
    """One project taking 60% or more of total spend."""
    if len(ctx.sessions) < 5:
        return None

    cost_by_project: Dict[str, float] = {}
    for session in ctx.sessions:
        project = session.project or "unknown"
        cost_by_project[project] = cost_by_project.get(project, 0.0) + session.cost_usd
    if len(cost_by_project) < 2:
        return None

    ranked = sorted(cost_by_project.items(), key=lambda item: item[1], reverse=True)
    (top_project, top_cost), (_, runner_up_cost) = ranked[0], ranked[1]
    pct = top_cost / max(ctx.totals.total_cost_usd, 0.01) * 100
    if pct < 60:
        return None

    name = _project_label(top_project)
    return Insight(
        id="project-dominance",
        severity=InsightSeverity.INFO,
        title=f"{pct:.0f}% of spend ({fmt_cost(top_cost)}) went to one project: {name}",
        description=(
            f'Your "{name}" project cost {fmt_cost(top_cost)} out of '
            f"{fmt_cost(ctx.totals.total_cost_usd)} total. The next closest project cost "
            f"{fmt_cost(runner_up_cost)}."
        ),
        action=(
            "Not necessarily a problem, but worth knowing. If this project has long-running "
            "conversations, breaking them into smaller sessions could reduce its footprint."
        ),
    )


def detect_conversation_efficiency(ctx: InsightContext) -> Optional[Insight]:
    """Per-message cost of long (>80) vs short (3-15) sessions."""
    if len(ctx.sessions) < 10:
        return None

    short = [s for s in ctx.sessions if 3 <= s.query_count <= 15]
    long_ = [s for s in ctx.sessions if s.query_count > 80]
    if len(short) < 3 or len(long_) < 2:
        return None

    short_avg = sum(s.cost_usd / s.query_count for s in short) / len(short)
    long_avg = sum(s.cost_usd / s.query_count for s in long_) / len(long_)
    ratio = long_avg / max(short_avg, 0.0001)
    if ratio < 2:
        return None

    return Insight(
        id="conversation-efficiency",
        severity=InsightSeverity.WARNING,
        title=(
            f"Each message costs {ratio:.1f}x more in long conversations "
            f"({fmt_cost(long_avg)} vs {fmt_cost(short_avg)})"
        ),
        description=(
            f"In short conversations (under 15 messages), each message costs ~{fmt_cost(short_avg)}. "
            f"In long ones (80+ messages), each message costs ~{fmt_cost(long_avg)}. "
            f"That is {ratio:.1f}x more per message."
        ),
        action="This is the single biggest lever for reducing costs. Start fresh conversations more often.",
    )


def detect_heavy_context(ctx: InsightContext) -> Optional[Insight]:
    """Sessions whose first message already carries over 50K input tokens."""
    if len(ctx.sessions) < 5:
        return None

    heavy = [s for s in ctx.sessions if s.queries and s.queries[0].input_tokens > 50_000]
    if len(heavy) < 5:
        return None

    overhead = sum(s.queries[0].cost_usd for s in heavy)
    avg_overhead = overhead / len(heavy)
    return Insight(
        id="heavy-context",
        severity=InsightSeverity.INFO,
        title=f"{len(heavy)} conversations start with {fmt_cost(avg_overhead)} of context overhead",
        description=(
            "Before you type your first message, instruction files, project files and system "
            f"context are read. Across {len(heavy)} conversations this setup overhead cost "
            f"{fmt_cost(overhead)} total, and it is re-read with every message."
        ),
        action="Keep project instruction files concise. A smaller starting context compounds into savings across every message.",
    )


def detect_cache_efficiency(ctx: InsightContext) -> Optional[Insight]:
    """Costly sessions of over 20 messages with a cache hit rate under 50%."""
    low_cache = [s for s in ctx.sessions
                 if s.query_count > 20 and s.cache_efficiency < 0.5 and s.cost_usd > 0.50]
    if len(low_cache) < 2:
        return None

    cost = sum(s.cost_usd for s in low_cache)
    avg_efficiency = sum(s.cache_efficiency for s in low_cache) / len(low_cache) * 100
    return Insight(
        id="cache-efficiency",
        severity=InsightSeverity.WARNING,
        title=f"Low cache reuse in {len(low_cache)} sessions cost {fmt_cost(cost)}",
        description=(
            f"These sessions had only {avg_efficiency:.0f}% cache hit rate. When cached context "
            "cannot be reused, every message pays full price for re-reading. Better cache "
            "utilization could cut these costs significantly."
        ),
        action="Keep sessions focused on one task. Switching topics or heavily editing context breaks cache reuse.",
    )


def detect_subagent_overhead(ctx: InsightContext) -> Optional[Insight]:
    """Subagents taking over 20% of the sessions that spawned them."""
    with_subagents = [s for s in ctx.sessions if s.subagent_cost > 0]
    if len(with_subagents) < 2:
        return None

    subagent_cost = sum(s.subagent_cost for s in with_subagents)
    session_cost = sum(s.cost_usd for s in with_subagents)
    # Whole percent, rounded half up, as shown in the title
    pct = math.floor(subagent_cost / max(session_cost, 0.01) * 100 + 0.5)
    if pct <= 20:
        return None

    return Insight(
        id="subagent-overhead",
        severity=InsightSeverity.INFO,
        title=f"Subagents consumed {fmt_cost(subagent_cost)} ({pct}% of those sessions)",
        description=(
            f"In {len(with_subagents)} sessions, subagent tasks (parallel searches, file "
            f"exploration) cost {fmt_cost(subagent_cost)} out of {fmt_cost(session_cost)}. "
            "Each subagent re-reads context independently."
        ),
        action=(
            "Consider whether parallel agent tasks are worth the cost. For simple lookups, "
            "direct file references may be cheaper than spawning agents."
        ),
    )


def detect_subscription_value(ctx: InsightContext) -> Optional[Insight]:
    """Projected monthly API-equivalent cost against the plan fee."""
    totals = ctx.totals
    if not is_subscription(ctx.billing_context) or totals.total_cost_usd <= 0:
        return None

    fee = get_subscription_monthly_fee(ctx.billing_context)
    plan = PLAN_NAMES[ctx.billing_context]
    days = totals.date_range.days if totals.date_range else 30
    monthly_equivalent = totals.total_cost_usd / days * 30
    savings = monthly_equivalent - fee
    usage = (
        f"At API rates, your usage over {days} days would cost {fmt_cost(totals.total_cost_usd)} "
        f"(projected {fmt_cost(monthly_equivalent)}/month)."
    )

    if savings > 0:
        return Insight(
            id="subscription-value",
            severity=InsightSeverity.INFO,
            title=f"Your {plan} plan (${fee}/mo) is saving you ~{fmt_cost(savings)}/month",
            description=f"{usage} Your {plan} subscription at ${fee}/month saves ~{fmt_cost(savings)}/month.",
        )
    return Insight(
        id="subscription-value",
        severity=InsightSeverity.NEUTRAL,
        title=f"Your {plan} plan (${fee}/mo) may be more than you need",
        description=(
            f"{usage} Your {plan} subscription at ${fee}/month costs "
            f"{fmt_cost(fee - monthly_equivalent)} more than API billing would."
        ),
        action="Consider whether a lower plan tier would better match your usage.",
    )


# Display order
DETECTORS: List[Detector] = [
    detect_vague_prompts,
    detect_context_growth,
    detect_marathon_sessions,
    detect_input_heavy,
    detect_day_pattern,
    detect_model_mismatch,
    detect_tool_heavy,
    detect_project_dominance,
    detect_conversation_efficiency,
    detect_heavy_context,
    detect_cache_efficiency,
    detect_subagent_overhead,
    detect_subscription_value,
]


def generate_insights(
    ctx: InsightContext,
    detectors: Sequence[Detector] = tuple(DETECTORS),
) -> List[Insight]:
    """Run every detector in order and collect what they report."""
    insights = []
    for detector in detectors:
        insight = detector(ctx)
        if insight is not None:
            insights.append(insight)
    return insights
