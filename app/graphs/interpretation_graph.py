"""LangGraph state machine for interpretation generation.

Topology:
  precompute ─┬── degenerate → END
              └── generate ─┬── validate ─┬── accept → END
                            │             ├── retry → generate
                            │             └── fallback → END
                            ├── retry → generate
                            └── fallback → END

The generate/validate loop is bounded by INTERPRETATION_MAX_ATTEMPTS.
Input, generation and quality failures all end with a result. Store
outages are not absorbed and propagate to the caller.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from langgraph.graph import END, StateGraph

from app.chains.generate_interpretation import GenerationError, generate_interpretation
from app.core.config import get_settings
from app.core.interpretation_fallback import generate_fallback, generate_unavailable_fallback
from app.core.interpretation_heuristics import run_heuristics, summarize_violations
from app.core.interpretation_inputs import PrecomputeError, precompute
from app.core.logging import get_logger
from app.core.pillars import PillarPack, get_pillar_pack
from app.core.schemas_interpretation import (
    GeneratedSection,
    HeuristicResult,
    InterpretationInput,
    OrchestrationResult,
    Tonality,
)
from app.core.tonality import derive_tonality

logger = get_logger(__name__)

GENERATION_FAILED = "generation_failed"
PRECOMPUTE_FAILED = "precompute_failed"


@dataclass
class InterpretationState:
    """State for the interpretation graph."""

    # Input
    run_id: UUID = None  # type: ignore[assignment]
    max_attempts: int = 2

    # Precompute
    interpretation_input: InterpretationInput | None = None
    input_hash: str | None = None
    pack: PillarPack | None = None
    tonality: Tonality | None = None
    precompute_error: str | None = None

    # Loop control
    attempt: int = 0
    generated: bool = False
    last_error: str | None = None

    # Output
    sections: list[GeneratedSection] = field(default_factory=list)
    heuristics: HeuristicResult | None = None
    used_fallback: bool = False
    fallback_reason: str | None = None
    tokens: int = 0
    model: str | None = None


def precompute_node(state: InterpretationState) -> dict[str, Any]:
    """
    Build the validated input, hash and pillar pack.

    Missing or malformed run facts route to the degenerate fallback.
    Store errors are left to propagate.
    """
    try:
        data, input_hash = precompute(state.run_id)
        pack = get_pillar_pack(data.pillar_id)
    except PrecomputeError as e:
        logger.error(f"Precompute failed: {e}", extra={"run_id": str(state.run_id)})
        return {"precompute_error": str(e)}

    tonality = derive_tonality(data.overall_score, len(data.critical_failures) > 0)
    logger.info(
        f"Precompute ready: score={data.overall_score} tonality={tonality.value}",
        extra={"run_id": str(state.run_id), "pillar_id": pack.pillar_id},
    )

    return {
        "interpretation_input": data,
        "input_hash": input_hash,
        "pack": pack,
        "tonality": tonality,
    }


def route_after_precompute(state: InterpretationState) -> str:
    return "degenerate" if state.precompute_error else "generate"


def generate_node(state: InterpretationState) -> dict[str, Any]:
    """One generator call. Errors are recorded and consume the attempt."""
    attempt = state.attempt + 1
    try:
        output = generate_interpretation(state.interpretation_input, state.pack, state.tonality)
    except GenerationError as e:
        logger.warning(
            f"Generation failed: {e}",
            extra={"run_id": str(state.run_id), "attempt": attempt},
        )
        return {"attempt": attempt, "generated": False, "last_error": str(e)}
    except Exception as e:
        logger.error(
            f"Unexpected generation error: {e}",
            extra={"run_id": str(state.run_id), "attempt": attempt},
            exc_info=True,
        )
        return {"attempt": attempt, "generated": False, "last_error": str(e)}

    return {
        "attempt": attempt,
        "generated": True,
        "sections": output.sections,
        "tokens": state.tokens + output.tokens,
        "model": output.model,
    }


def route_after_generate(state: InterpretationState) -> str:
    if state.generated:
        return "validate"
    return "generate" if state.attempt < state.max_attempts else "fallback"


def validate_node(state: InterpretationState) -> dict[str, Any]:
    """Run the quality gate over the sections from this attempt."""
    result = run_heuristics(state.sections, state.interpretation_input, state.pack)

    if not result.passed:
        logger.warning(
            f"Heuristics failed: {[f'{v.rule}:{v.section_id}' for v in result.errors]}",
            extra={"run_id": str(state.run_id), "attempt": state.attempt},
        )

    return {"heuristics": result}


def route_after_validate(state: InterpretationState) -> str:
    if state.heuristics is not None and state.heuristics.passed:
        return END
    return "generate" if state.attempt < state.max_attempts else "fallback"


def fallback_node(state: InterpretationState) -> dict[str, Any]:
    """Attempts exhausted: template sections from the valid input."""
    if state.heuristics is not None:
        reason = summarize_violations(state.heuristics)
    else:
        reason = GENERATION_FAILED

    logger.warning(
        f"Using fallback after {state.attempt} attempts: {reason}",
        extra={"run_id": str(state.run_id)},
    )

    return {
        "sections": generate_fallback(state.interpretation_input, state.pack),
        "used_fallback": True,
        "fallback_reason": reason,
    }


def degenerate_node(state: InterpretationState) -> dict[str, Any]:
    """No valid input: section-shaped placeholders from the default pillar."""
    pack = get_pillar_pack(get_settings().INTERPRETATION_DEFAULT_PILLAR)
    return {
        "pack": pack,
        "sections": generate_unavailable_fallback(pack),
        "used_fallback": True,
        "fallback_reason": PRECOMPUTE_FAILED,
    }


def _build_graph() -> StateGraph:
    """Build the LangGraph for interpretation generation."""
    graph = StateGraph(InterpretationState)

    graph.add_node("precompute", precompute_node)
    graph.add_node("generate", generate_node)
    graph.add_node("validate", validate_node)
    graph.add_node("fallback", fallback_node)
    graph.add_node("degenerate", degenerate_node)

    graph.set_entry_point("precompute")
    graph.add_conditional_edges(
        "precompute",
        route_after_precompute,
        {"generate": "generate", "degenerate": "degenerate"},
    )
    graph.add_conditional_edges(
        "generate",
        route_after_generate,
        {"validate": "validate", "generate": "generate", "fallback": "fallback"},
    )
    graph.add_conditional_edges(
        "validate",
        route_after_validate,
        {END: END, "generate": "generate", "fallback": "fallback"},
    )
    graph.add_edge("fallback", END)
    graph.add_edge("degenerate", END)

    return graph


# Compile the graph once at module load
_compiled_graph = _build_graph().compile()


def run_interpretation_pipeline(run_id: UUID) -> OrchestrationResult:
    """
    Run precompute, the bounded generate/validate loop and fallback.

    Args:
        run_id: Diagnostic run UUID

    Returns:
        OrchestrationResult; resolves even when generation is impossible,
        so the caller can persist a usable report

    Raises:
        Exception: Store errors from loading run facts, unmasked so the
            worker can mark the report failed
    """
    settings = get_settings()
    initial_state = InterpretationState(
        run_id=run_id,
        max_attempts=settings.INTERPRETATION_MAX_ATTEMPTS,
    )

    final_state = _compiled_graph.invoke(initial_state)

    # LangGraph returns a dict of the final state
    used_fallback = final_state.get("used_fallback", False)
    precompute_failed = final_state.get("precompute_error") is not None
    heuristics = final_state.get("heuristics") or HeuristicResult(passed=False)

    if precompute_failed:
        attempts = 0
    elif used_fallback:
        attempts = settings.INTERPRETATION_MAX_ATTEMPTS
    else:
        attempts = final_state.get("attempt", 0)

    result = OrchestrationResult(
        sections=final_state.get("sections", []),
        input_hash=final_state.get("input_hash"),
        used_fallback=used_fallback,
        fallback_reason=final_state.get("fallback_reason"),
        heuristics=heuristics,
        attempts=attempts,
        tokens=final_state.get("tokens", 0),
        model=final_state.get("model"),
    )

    logger.info(
        f"Interpretation pipeline complete: fallback={result.used_fallback} "
        f"attempts={result.attempts} tokens={result.tokens}",
        extra={"run_id": str(run_id)},
    )

    return result
