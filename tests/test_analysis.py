"""
Integration tests for batch analysis over session files on disk.
"""

from datetime import date

import pytest

from claude_spend.core.analysis import aggregate_sessions, analyze_sessions, empty_result
from claude_spend.core.billing import BillingContext
from claude_spend.storage.repository import LocalSessionRepository, SessionSource

from factories import assistant_entry, user_entry, write_jsonl


def _write_project(root, project, count, turns=3):
    for i in range(count):
        entries = [user_entry(f"{project} task {i}", timestamp=f"2026-03-0{1 + i % 5}T10:00:00Z")]
        for t in range(turns):
            entries.append(assistant_entry(output_tokens=100 * (t + 1), tools=["Read"] if t else ()))
        write_jsonl(root / "projects" / project / f"{project}-{i}.jsonl", entries)


@pytest.fixture
def data_dir(tmp_path):
    _write_project(tmp_path, "alpha", 4)
    _write_project(tmp_path, "beta", 3, turns=5)
    write_jsonl(
        tmp_path / "projects" / "alpha" / "alpha-0" / "subagents" / "agent.jsonl",
        [user_entry("search"), assistant_entry(model="claude-haiku-3-5")],
    )
    return tmp_path


def _analyze(data_dir, **kwargs):
    repo = LocalSessionRepository(data_dir)
    return analyze_sessions(repo.list_sessions(), BillingContext.API, **kwargs)


class TestAnalyzeSessions:
    """Test the full pipeline."""

    def test_empty_input(self):
        result = analyze_sessions([], BillingContext.PRO)
        assert result.sessions == []
        assert result.totals.total_sessions == 0
        assert result.is_equivalent_cost is True

    def test_counts(self, data_dir):
        result = _analyze(data_dir)
        assert result.totals.total_sessions == 7
        assert result.totals.total_queries == 4 * 3 + 3 * 5
        assert {p.project for p in result.project_breakdown} == {"alpha", "beta"}
        assert result.is_equivalent_cost is False

    def test_sessions_sorted_by_tokens(self, data_dir):
        tokens = [s.total_tokens for s in _analyze(data_dir).sessions]
        assert tokens == sorted(tokens, reverse=True)

    def test_subagent_cost_included(self, data_dir):
        result = _analyze(data_dir)
        session = next(s for s in result.sessions if s.session_id == "alpha-0")
        assert session.subagent_cost > 0
        assert {m.model for m in result.model_breakdown} == {"claude-sonnet-4", "claude-haiku-3-5"}
        assert sum(m.cost_usd for m in result.model_breakdown) == pytest.approx(result.totals.total_cost_usd)
        assert sum(m.total_tokens for m in result.model_breakdown) == result.totals.billed_tokens
        assert sum(m.query_count for m in result.model_breakdown) == result.totals.billed_queries
        assert result.totals.subagent_queries == 1

    def test_idempotent(self, data_dir):
        assert _analyze(data_dir) == _analyze(data_dir)

    def test_parallel_matches_sequential(self, data_dir):
        assert _analyze(data_dir, max_workers=4) == _analyze(data_dir, max_workers=1)

    def test_first_prompt_hints(self, data_dir):
        result = _analyze(data_dir, first_prompts={"beta-1": "from history"})
        session = next(s for s in result.sessions if s.session_id == "beta-1")
        assert session.first_prompt == "from history"

    def test_prompt_limit(self, data_dir):
        assert len(_analyze(data_dir, top_prompt_limit=2).top_prompts) == 2

    def test_bad_lines_are_counted_not_raised(self, tmp_path):
        write_jsonl(tmp_path / "projects" / "p" / "s.jsonl",
                    ["{broken", user_entry("hi"), assistant_entry(), "garbage"])
        result = _analyze(tmp_path)
        assert result.totals.total_queries == 1
        assert result.decode_stats.skipped == 2

    def test_session_dated_by_logged_offset(self, tmp_path):
        write_jsonl(tmp_path / "projects" / "p" / "late.jsonl", [
            user_entry("evening work", timestamp="2026-03-02T23:30:00-05:00"),
            assistant_entry(timestamp="2026-03-02T23:31:00-05:00"),
        ])
        session = _analyze(tmp_path).sessions[0]
        assert session.date == date(2026, 3, 2)
        assert session.timestamp.weekday() == 0

    def test_files_without_queries_are_dropped(self, tmp_path):
        write_jsonl(tmp_path / "projects" / "p" / "empty.jsonl", [user_entry("hi")])
        assert _analyze(tmp_path).sessions == []

    def test_subscription_marks_equivalent_cost(self):
        source = SessionSource("p", "s", lines=[
            '{"type": "user", "message": {"role": "user", "content": "hi"}}',
            '{"type": "assistant", "message": {"model": "claude-opus-4", "usage": {"output_tokens": 10}}}',
        ])
        result = analyze_sessions([source], BillingContext.MAX_5X)
        assert result.is_equivalent_cost is True
        assert result.sessions[0].queries[0].cost.is_equivalent is True


class TestAggregateSessions:
    """Test folding ready sessions."""

    def test_empty(self):
        result = aggregate_sessions([], BillingContext.API)
        assert result == empty_result(BillingContext.API)
