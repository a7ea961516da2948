"""Tests for LLM usage logging with mocked Supabase."""

from unittest.mock import MagicMock, patch

from app.core.llm_usage import _estimate_cost, log_llm_usage
from tests.fixtures_interpretation import RUN_ID


def test_estimate_cost_known_model():
    # 1M input at $2.50 + 1M output at $10.00
    assert _estimate_cost("gpt-4o", 1_000_000, 1_000_000) == 12.5


def test_estimate_cost_dated_variant_uses_longest_prefix():
    assert _estimate_cost("gpt-4o-mini-2024-07-18", 1_000_000, 0) == 0.15
    assert _estimate_cost("gpt-4o-2024-08-06", 1_000_000, 0) == 2.5


def test_estimate_cost_unknown_model():
    assert _estimate_cost("mystery-model", 1000, 1000) == 0.0


def test_log_llm_usage_inserts_row():
    mock_supabase = MagicMock()

    with patch("app.core.llm_usage.get_supabase", return_value=mock_supabase):
        log_llm_usage(
            workflow="interpretation",
            chain="generate_interpretation",
            model="gpt-4o",
            provider="openai",
            tokens_input=900,
            tokens_output=400,
            duration_ms=1500,
            run_id=RUN_ID,
        )

    mock_supabase.table.assert_called_with("llm_usage_log")
    row = mock_supabase.table.return_value.insert.call_args[0][0]
    assert row["workflow"] == "interpretation"
    assert row["chain"] == "generate_interpretation"
    assert row["run_id"] == str(RUN_ID)
    assert row["tokens_input"] == 900
    assert row["estimated_cost_usd"] > 0


def test_log_llm_usage_never_raises():
    mock_supabase = MagicMock()
    mock_supabase.table.return_value.insert.return_value.execute.side_effect = ConnectionError("down")

    with patch("app.core.llm_usage.get_supabase", return_value=mock_supabase):
        log_llm_usage(
            workflow="interpretation",
            model="gpt-4o",
            provider="openai",
            tokens_input=1,
            tokens_output=1,
        )
