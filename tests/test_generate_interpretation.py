"""Tests for interpretation generation with a mocked OpenAI client."""

import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import pytest
from openai import (
    APIConnectionError,
    APITimeoutError,
    BadRequestError,
    InternalServerError,
    RateLimitError,
)

from app.chains.generate_interpretation import (
    GenerationError,
    build_system_prompt,
    build_user_prompt,
    generate_interpretation,
    parse_response,
)
from app.core.llm import call_with_backoff, is_retryable
from app.core.pillars import get_pillar_pack
from app.core.schemas_interpretation import Tonality
from tests.fixtures_interpretation import make_interpretation_input, passing_sections

PACK = get_pillar_pack("fpa")

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status_code):
    return cls(
        f"status {status_code}",
        response=httpx.Response(status_code, request=_REQUEST),
        body=None,
    )


def _completion(content, prompt_tokens=900, completion_tokens=400):
    return SimpleNamespace(
        model="gpt-4o-2024-08-06",
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


def _sections_json():
    return json.dumps([s.model_dump() for s in passing_sections()])


def _mock_client(*side_effect):
    client = MagicMock()
    client.chat.completions.create.side_effect = list(side_effect)
    return client


class TestPrompts:
    def test_system_prompt_carries_rules(self):
        prompt = build_system_prompt(PACK, Tonality.URGENT)

        assert "a CFO" in prompt
        assert "[[evidence_id]]" in prompt
        assert "Scores >= 65%" in prompt
        assert '"emerging"' in prompt
        assert "low-hanging fruit" in prompt
        assert "Critical gaps demand immediate attention" in prompt

    def test_tone_differs_by_tonality(self):
        assert build_system_prompt(PACK, Tonality.CELEBRATE) != build_system_prompt(PACK, Tonality.REMEDIATE)

    def test_user_prompt_lists_facts_with_evidence(self):
        data = make_interpretation_input()
        prompt = build_user_prompt(data, PACK, Tonality.URGENT)

        assert "TONALITY: URGENT" in prompt
        assert "Execution Score: 62% [score_overall]" in prompt
        assert "Maturity: Level 2 (Defined) [level_2]" in prompt
        assert "Capped: Yes [cap_active]" in prompt
        assert "Budget Process: 41% (importance: 5/5) [CRITICAL] [obj_budgeting]" in prompt
        assert "Documented close calendar in Budget Process [critical_fpa_l1_q02]" in prompt
        assert "importance 5/5, score 41%" in prompt
        assert ", ".join(data.evidence_ids) in prompt

    def test_user_prompt_limits_gate_blockers(self):
        prompt = build_user_prompt(make_interpretation_input(), PACK, Tonality.URGENT)

        assert "Level 3: fpa_l3_q01, fpa_l3_q04, fpa_l3_q05 [gate_L3_blocked]" in prompt
        assert "fpa_l3_q07" not in prompt

    def test_user_prompt_lists_sections_and_example(self):
        prompt = build_user_prompt(make_interpretation_input(), PACK, Tonality.REFINE)

        for config in PACK.sections:
            assert f'- {config.id}: "{config.title}"' in prompt
            assert f"[max {config.max_words} words]" in prompt
        assert '"id": "path_forward"' in prompt


class TestParseResponse:
    def test_parses_array(self):
        sections = parse_response(_sections_json())
        assert [s.id for s in sections] == PACK.section_ids

    def test_tolerates_code_fence(self):
        sections = parse_response(f"```json\n{_sections_json()}\n```")
        assert len(sections) == 5

    def test_invalid_json(self):
        with pytest.raises(GenerationError, match="not valid JSON"):
            parse_response("Here are your sections: [")

    def test_object_instead_of_array(self):
        with pytest.raises(GenerationError, match="not an array"):
            parse_response(json.dumps({"sections": []}))

    def test_missing_content_field(self):
        with pytest.raises(GenerationError, match="missing"):
            parse_response(json.dumps([{"id": "strengths", "title": "Strengths"}]))

    def test_non_object_item(self):
        with pytest.raises(GenerationError, match="not an object"):
            parse_response(json.dumps(["strengths"]))


class TestRetryPolicy:
    def test_retryable_classification(self):
        assert is_retryable(_status_error(RateLimitError, 429))
        assert is_retryable(_status_error(InternalServerError, 503))
        assert is_retryable(APIConnectionError(request=_REQUEST))
        assert is_retryable(APITimeoutError(request=_REQUEST))
        assert not is_retryable(_status_error(BadRequestError, 400))
        assert not is_retryable(ValueError("boom"))

    def test_backoff_doubles(self):
        sleeps = []
        fn = MagicMock(side_effect=[_status_error(RateLimitError, 429)] * 2 + ["ok"])

        assert call_with_backoff(fn, max_retries=2, base_delay=1.0, sleep=sleeps.append) == "ok"
        assert sleeps == [1.0, 2.0]
        assert fn.call_count == 3

    def test_gives_up_after_retries(self):
        sleeps = []
        fn = MagicMock(side_effect=_status_error(InternalServerError, 500))

        with pytest.raises(InternalServerError):
            call_with_backoff(fn, max_retries=2, base_delay=0.5, sleep=sleeps.append)
        assert fn.call_count == 3
        assert sleeps == [0.5, 1.0]

    def test_client_error_not_retried(self):
        sleeps = []
        fn = MagicMock(side_effect=_status_error(BadRequestError, 400))

        with pytest.raises(BadRequestError):
            call_with_backoff(fn, max_retries=2, sleep=sleeps.append)
        assert fn.call_count == 1
        assert sleeps == []


@patch("app.chains.generate_interpretation.log_llm_usage")
@patch("app.core.llm.time.sleep")
class TestGenerateInterpretation:
    def test_success_returns_sections_and_tokens(self, mock_sleep, mock_log_usage):
        client = _mock_client(_completion(_sections_json()))

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            output = generate_interpretation(make_interpretation_input(), PACK)

        assert [s.id for s in output.sections] == PACK.section_ids
        assert output.tokens == 1300
        assert output.model == "gpt-4o"

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 2000
        assert [m["role"] for m in kwargs["messages"]] == ["system", "user"]
        # Tonality derived from the critical failure
        assert "TONALITY: URGENT" in kwargs["messages"][1]["content"]

        mock_log_usage.assert_called_once()
        usage_kwargs = mock_log_usage.call_args.kwargs
        assert usage_kwargs["workflow"] == "interpretation"
        assert usage_kwargs["tokens_input"] == 900
        assert usage_kwargs["tokens_output"] == 400
        mock_sleep.assert_not_called()

    def test_rate_limit_then_success(self, mock_sleep, mock_log_usage):
        client = _mock_client(_status_error(RateLimitError, 429), _completion(_sections_json()))

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            output = generate_interpretation(make_interpretation_input(), PACK)

        assert len(output.sections) == 5
        assert client.chat.completions.create.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    def test_server_errors_exhaust_retries(self, mock_sleep, mock_log_usage):
        client = _mock_client(*[_status_error(InternalServerError, 500)] * 3)

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            with pytest.raises(GenerationError, match="500"):
                generate_interpretation(make_interpretation_input(), PACK)

        assert client.chat.completions.create.call_count == 3
        mock_log_usage.assert_not_called()

    def test_connection_errors_become_generation_error(self, mock_sleep, mock_log_usage):
        client = _mock_client(*[APIConnectionError(request=_REQUEST)] * 3)

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            with pytest.raises(GenerationError):
                generate_interpretation(make_interpretation_input(), PACK)

        assert client.chat.completions.create.call_count == 3

    def test_bad_request_not_retried(self, mock_sleep, mock_log_usage):
        client = _mock_client(_status_error(BadRequestError, 400))

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            with pytest.raises(GenerationError, match="400"):
                generate_interpretation(make_interpretation_input(), PACK)

        assert client.chat.completions.create.call_count == 1
        mock_sleep.assert_not_called()

    def test_empty_content_is_error(self, mock_sleep, mock_log_usage):
        client = _mock_client(_completion(None))

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            with pytest.raises(GenerationError, match="Empty response"):
                generate_interpretation(make_interpretation_input(), PACK)

    def test_malformed_content_is_error(self, mock_sleep, mock_log_usage):
        client = _mock_client(_completion('{"id": "strengths"}'))

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            with pytest.raises(GenerationError, match="not an array"):
                generate_interpretation(make_interpretation_input(), PACK)

        # Usage is still recorded for a billed but unusable completion
        mock_log_usage.assert_called_once()

    def test_explicit_tonality_overrides(self, mock_sleep, mock_log_usage):
        client = _mock_client(_completion(_sections_json()))

        with patch("app.chains.generate_interpretation.get_openai_client", return_value=client):
            generate_interpretation(make_interpretation_input(), PACK, Tonality.CELEBRATE)

        user_prompt = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert "TONALITY: CELEBRATE" in user_prompt
