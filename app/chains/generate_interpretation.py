"""Generate interpretation sections for a diagnostic run via OpenAI.

Single chat completion per attempt:
- System prompt carries evidence, vocabulary and tone rules
- User prompt carries the precomputed facts and the section contract
- Transport retries with exponential backoff (429/5xx/network only)
- Strict JSON array parsing, no repair
"""

import json
import time
from typing import Any

from openai import APIError, APIStatusError

from app.core.config import get_settings
from app.core.llm import call_with_backoff, get_openai_client, parse_llm_json
from app.core.llm_usage import log_llm_usage
from app.core.logging import get_logger
from app.core.pillars import PillarPack
from app.core.schemas_interpretation import (
    GeneratedSection,
    GenerationOutput,
    InterpretationInput,
    Tonality,
)
from app.core.tonality import derive_tonality

logger = get_logger(__name__)


class GenerationError(Exception):
    """The completion service failed or returned unusable output."""


TONE_GUIDANCE: dict[Tonality, str] = {
    Tonality.CELEBRATE: (
        "Tone: Confident, forward-looking. Focus on optimization, not fixing. "
        "This is a high-performing organization."
    ),
    Tonality.REFINE: (
        "Tone: Balanced, constructive. Clear improvement path without alarm. "
        "Good foundation with room to grow."
    ),
    Tonality.URGENT: (
        "Tone: Direct, priority-focused. Critical gaps demand immediate attention. "
        "Be clear about what must change."
    ),
    Tonality.REMEDIATE: (
        "Tone: Serious but supportive. Break down the workload into manageable steps. "
        "Show a clear path forward."
    ),
}


# =============================================================================
# Prompts
# =============================================================================

SYSTEM_PROMPT_TEMPLATE = """You are a senior {pillar_name} transformation consultant writing for {audience}.

OUTPUT: Valid JSON array. No markdown wrapping. No explanation outside JSON.

EVIDENCE RULES:
- Ground every factual claim with [[evidence_id]] immediately after the claim
- Example: "...execution score of 55% [[score_overall]] at Level 2 [[level_2]]..."
- Only use evidence IDs from the provided list
- Each section MUST have at least one [[evidence_id]] tag
- Only quote percentages that appear in the facts

LANGUAGE RULES:
- Scores >= {threshold}%: use {strong_terms}
- Scores < {threshold}%: use {developing_terms}
- Never call a score below {threshold}% "strong" or "solid"
- Forbidden phrases: {forbidden}

{tone}

Address the organization as "you" or by company name. Write like a consulting partner."""


def _quoted(terms: tuple[str, ...]) -> str:
    return ", ".join(f'"{t}"' for t in terms)


def build_system_prompt(pack: PillarPack, tonality: Tonality) -> str:
    """Render the system prompt for a pillar and tonality."""
    return SYSTEM_PROMPT_TEMPLATE.format(
        pillar_name=pack.pillar_name,
        audience=pack.audience,
        threshold=pack.score_band_threshold,
        strong_terms=_quoted(pack.strong_terms),
        developing_terms=_quoted(pack.developing_terms),
        forbidden=", ".join(pack.forbidden_phrases),
        tone=TONE_GUIDANCE[tonality],
    )


def _bullets(lines: list[str]) -> str:
    return "\n".join(lines) if lines else "- None"


def build_user_prompt(data: InterpretationInput, pack: PillarPack, tonality: Tonality) -> str:
    """
    Render the user prompt from the interpretation input.

    Every fact is listed next to the evidence id that grounds it, followed by
    the closed evidence list and the exact sections to return.
    """
    cap_evidence = "cap_active" if data.is_capped else "cap_none"

    objectives = [
        f"- {o.name}: {o.score}% (importance: {o.importance}/5)"
        f"{' [CRITICAL]' if o.has_critical else ''} [obj_{o.id}]"
        for o in data.objectives
    ]
    criticals = [
        f"- {c.question_title} in {c.objective_name} [critical_{c.question_id}]"
        for c in data.critical_failures
    ]
    gates = [
        f"- Level {g.level}: {', '.join(g.blocking_questions[:3])} [gate_L{g.level}_blocked]"
        for g in data.failed_gates
    ]
    misalignments = [
        f"- {m.objective_name}: importance {m.importance}/5, score {m.score}%"
        for m in data.priority_misalignments
    ]
    section_lines = [
        f'- {s.id}: "{s.title}" ({s.guidance}) [max {s.max_words} words]' for s in pack.sections
    ]
    example = json.dumps(
        [{"id": s.id, "title": s.title, "content": "...[[evidence]]..."} for s in pack.sections],
        indent=2,
    )

    return f"""Generate a {pack.pillar_name} interpretation for {data.company_name} ({data.industry}).

TONALITY: {tonality.value.upper()}

FACTS (use these evidence IDs):
- Execution Score: {data.overall_score}% [score_overall]
- Maturity: Level {data.maturity_level} ({data.maturity_name}) [level_{data.maturity_level}]
- Capped: {"Yes" if data.is_capped else "No"} [{cap_evidence}]

OBJECTIVES:
{_bullets(objectives)}

CRITICAL FAILURES:
{_bullets(criticals)}

GATE BLOCKERS:
{_bullets(gates)}

PRIORITY MISALIGNMENTS (high importance but low score):
{_bullets(misalignments)}

AVAILABLE EVIDENCE IDs:
{", ".join(data.evidence_ids)}

GENERATE these {len(pack.sections)} sections:
{chr(10).join(section_lines)}

Return ONLY valid JSON:
{example}"""


# =============================================================================
# Parsing
# =============================================================================


def parse_response(raw_output: str) -> list[GeneratedSection]:
    """
    Parse the completion into typed sections.

    Tolerates a wrapping code fence. Anything other than a JSON array of
    {id, title, content} objects is rejected.

    Raises:
        GenerationError: On invalid JSON or a structural mismatch
    """
    try:
        parsed: Any = parse_llm_json(raw_output)
    except json.JSONDecodeError as e:
        raise GenerationError(f"Response is not valid JSON: {e}") from e

    if not isinstance(parsed, list):
        raise GenerationError("Response is not an array")

    sections = []
    for i, item in enumerate(parsed):
        if not isinstance(item, dict):
            raise GenerationError(f"Section {i} is not an object")
        values = [item.get(key) for key in ("id", "title", "content")]
        if not all(isinstance(v, str) for v in values):
            raise GenerationError(f"Section {i} is missing id, title or content")
        sections.append(GeneratedSection(id=values[0], title=values[1], content=values[2]))

    return sections


# =============================================================================
# Generation
# =============================================================================


def generate_interpretation(
    data: InterpretationInput,
    pack: PillarPack,
    tonality: Tonality | None = None,
) -> GenerationOutput:
    """
    Generate the pillar's narrative sections for one attempt.

    Args:
        data: Validated interpretation input
        pack: Pillar pack (sections, vocabulary, forbidden phrases)
        tonality: Tone override; derived from the input when omitted

    Returns:
        GenerationOutput with parsed sections and total token usage

    Raises:
        GenerationError: If the call fails permanently or the response is unusable
    """
    settings = get_settings()
    if tonality is None:
        tonality = derive_tonality(data.overall_score, len(data.critical_failures) > 0)

    model = settings.INTERPRETATION_MODEL
    messages = [
        {"role": "system", "content": build_system_prompt(pack, tonality)},
        {"role": "user", "content": build_user_prompt(data, pack, tonality)},
    ]
    client = get_openai_client()

    logger.info(
        f"Generating {pack.pillar_id} interpretation ({tonality.value}) with {model}",
        extra={"run_id": str(data.run_id), "pillar_id": pack.pillar_id},
    )

    start = time.time()
    try:
        response = call_with_backoff(
            lambda: client.chat.completions.create(
                model=model,
                temperature=settings.INTERPRETATION_TEMPERATURE,
                max_tokens=settings.INTERPRETATION_MAX_TOKENS,
                messages=messages,
            ),
            max_retries=settings.INTERPRETATION_MAX_RETRIES,
            base_delay=settings.INTERPRETATION_RETRY_BASE_DELAY,
        )
    except APIStatusError as e:
        raise GenerationError(f"Completion request failed with status {e.status_code}: {e}") from e
    except APIError as e:
        raise GenerationError(f"Completion request failed: {e}") from e
    elapsed_ms = int((time.time() - start) * 1000)

    usage = response.usage
    tokens = usage.total_tokens if usage else 0
    if usage:
        log_llm_usage(
            workflow="interpretation",
            chain="generate_interpretation",
            model=response.model or model,
            provider="openai",
            tokens_input=usage.prompt_tokens,
            tokens_output=usage.completion_tokens,
            duration_ms=elapsed_ms,
            run_id=data.run_id,
        )

    content = response.choices[0].message.content if response.choices else None
    if not content:
        raise GenerationError("Empty response from completion service")

    sections = parse_response(content)

    logger.info(
        f"Generated {len(sections)} sections in {elapsed_ms}ms ({tokens} tokens)",
        extra={"run_id": str(data.run_id), "pillar_id": pack.pillar_id},
    )

    return GenerationOutput(sections=sections, tokens=tokens, model=model)
