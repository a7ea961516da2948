"""Tests for the interpretation LangGraph orchestrator with mocked precompute and generation."""

from unittest.mock import MagicMock, patch

import pytest

from app.chains.generate_interpretation import GenerationError
from app.core.interpretation_fallback import UNAVAILABLE_CONTENT
from app.core.interpretation_inputs import PrecomputeError
from app.core.pillars import UnknownPillarError, get_pillar_pack
from app.core.schemas_interpretation import GeneratedSection, GenerationOutput
from app.graphs.interpretation_graph import run_interpretation_pipeline
from tests.fixtures_interpretation import RUN_ID, make_interpretation_input, passing_sections

PACK = get_pillar_pack("fpa")
INPUT_HASH = "0123456789abcdef"


def _output(sections, tokens=1000):
    return GenerationOutput(sections=sections, tokens=tokens, model="gpt-4o")


def _ungrounded_sections():
    return [
        GeneratedSection(id=s.id, title=s.title, content="Solid work across the board.")
        for s in passing_sections()
    ]


@pytest.fixture
def mock_precompute():
    with patch(
        "app.graphs.interpretation_graph.precompute",
        return_value=(make_interpretation_input(), INPUT_HASH),
    ) as mock:
        yield mock


def _run_with(*generation_results):
    generate = MagicMock(side_effect=list(generation_results))
    with patch("app.graphs.interpretation_graph.generate_interpretation", generate):
        result = run_interpretation_pipeline(RUN_ID)
    return result, generate


def test_first_attempt_passes(mock_precompute):
    result, generate = _run_with(_output(passing_sections()))

    assert result.used_fallback is False
    assert result.fallback_reason is None
    assert result.attempts == 1
    assert result.tokens == 1000
    assert result.heuristics.passed is True
    assert result.input_hash == INPUT_HASH
    assert result.model == "gpt-4o"
    assert result.sections == passing_sections()
    assert generate.call_count == 1


def test_retry_after_heuristics_failure(mock_precompute):
    result, generate = _run_with(
        _output(_ungrounded_sections(), tokens=800),
        _output(passing_sections(), tokens=900),
    )

    assert result.used_fallback is False
    assert result.attempts == 2
    assert result.tokens == 1700
    assert generate.call_count == 2


def test_retry_after_generation_error(mock_precompute):
    result, generate = _run_with(GenerationError("Empty response"), _output(passing_sections()))

    assert result.used_fallback is False
    assert result.attempts == 2
    assert result.tokens == 1000


def test_heuristics_failures_fall_back(mock_precompute):
    result, generate = _run_with(
        _output(_ungrounded_sections(), tokens=800),
        _output(_ungrounded_sections(), tokens=800),
    )

    assert result.used_fallback is True
    assert result.attempts == 2
    assert result.tokens == 1600
    assert result.fallback_reason.startswith("heuristics_failed: 5 errors")
    assert "evidence_presence" in result.fallback_reason
    assert result.heuristics.passed is False
    assert [s.id for s in result.sections] == PACK.section_ids
    assert all("[[" in s.content for s in result.sections)
    assert generate.call_count == 2


def test_generation_errors_fall_back(mock_precompute):
    result, generate = _run_with(GenerationError("timeout"), GenerationError("timeout"))

    assert result.used_fallback is True
    assert result.fallback_reason == "generation_failed"
    assert result.attempts == 2
    assert result.tokens == 0
    assert result.heuristics.passed is False
    assert len(result.sections) == len(PACK.sections)


def test_last_heuristics_kept_when_final_attempt_errors(mock_precompute):
    result, _ = _run_with(_output(_ungrounded_sections()), GenerationError("timeout"))

    assert result.used_fallback is True
    assert result.fallback_reason.startswith("heuristics_failed")


def test_unexpected_generator_exception_consumes_attempt(mock_precompute):
    result, generate = _run_with(RuntimeError("bug"), _output(passing_sections()))

    assert result.used_fallback is False
    assert result.attempts == 2


def test_attempts_bounded_by_setting(mock_precompute):
    settings = MagicMock(INTERPRETATION_MAX_ATTEMPTS=3, INTERPRETATION_DEFAULT_PILLAR="fpa")
    generate = MagicMock(side_effect=GenerationError("down"))

    with patch("app.graphs.interpretation_graph.get_settings", return_value=settings), patch(
        "app.graphs.interpretation_graph.generate_interpretation", generate
    ):
        result = run_interpretation_pipeline(RUN_ID)

    assert generate.call_count == 3
    assert result.attempts == 3
    assert result.used_fallback is True


def test_precompute_failure_degenerates():
    generate = MagicMock()
    with patch(
        "app.graphs.interpretation_graph.precompute",
        side_effect=PrecomputeError("Run not found: x"),
    ), patch("app.graphs.interpretation_graph.generate_interpretation", generate):
        result = run_interpretation_pipeline(RUN_ID)

    generate.assert_not_called()
    assert result.used_fallback is True
    assert result.fallback_reason == "precompute_failed"
    assert result.attempts == 0
    assert result.tokens == 0
    assert result.input_hash is None
    assert result.heuristics.passed is False
    assert [s.id for s in result.sections] == PACK.section_ids
    assert all(s.content == UNAVAILABLE_CONTENT for s in result.sections)


def test_unknown_pillar_degenerates(mock_precompute):
    with patch(
        "app.graphs.interpretation_graph.get_pillar_pack",
        side_effect=[UnknownPillarError("Unknown pillar: hr"), PACK],
    ):
        result = run_interpretation_pipeline(RUN_ID)

    assert result.used_fallback is True
    assert result.fallback_reason == "precompute_failed"


def test_store_outage_during_precompute_propagates():
    generate = MagicMock()
    with patch(
        "app.graphs.interpretation_graph.precompute",
        side_effect=ConnectionError("supabase unreachable"),
    ), patch("app.graphs.interpretation_graph.generate_interpretation", generate):
        with pytest.raises(ConnectionError):
            run_interpretation_pipeline(RUN_ID)

    generate.assert_not_called()


@pytest.mark.parametrize(
    "results",
    [
        [_output(passing_sections())],
        [GenerationError("x"), GenerationError("x")],
        [_output(_ungrounded_sections()), _output(passing_sections())],
        [_output(_ungrounded_sections()), _output(_ungrounded_sections())],
    ],
)
def test_fallback_iff_no_passing_attempt(mock_precompute, results):
    result, _ = _run_with(*results)

    assert 1 <= result.attempts <= 2
    assert result.used_fallback == (not result.heuristics.passed)
