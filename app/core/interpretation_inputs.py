"""Input preparation (precompute) for interpretation generation.

Turns a diagnostic run's upstream facts into a validated, immutable
InterpretationInput and computes the input hash used to decide whether
regeneration is meaningful.
"""

import hashlib
import json
import math
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.schemas_interpretation import (
    AnswerFact,
    CriticalFailure,
    FailedGate,
    InterpretationInput,
    InterpretationObjective,
    PriorityMisalignment,
    RunFacts,
    ScoredAssessment,
)
from app.db.diagnostic_runs import get_diagnostic_run, list_diagnostic_inputs

logger = get_logger(__name__)

LEVEL_NAMES: dict[int, str] = {
    1: "Emerging",
    2: "Defined",
    3: "Managed",
    4: "Optimized",
}

DEFAULT_IMPORTANCE = 3
MISALIGNMENT_MIN_IMPORTANCE = 4
MISALIGNMENT_MAX_SCORE = 50


class PrecomputeError(Exception):
    """Upstream facts are missing or malformed; generation cannot start."""


def _round_half_up(value: float | None) -> int:
    return int(math.floor((value or 0) + 0.5))


def _importance(importance_map: dict[str, Any], objective_id: str) -> int:
    # Absent and null entries both mean default importance
    value = importance_map.get(objective_id)
    return DEFAULT_IMPORTANCE if value is None else value


# ============================================================================
# Upstream facts
# ============================================================================


def load_run_facts(run_id: UUID) -> RunFacts:
    """
    Fetch the run, its answers and the scored assessment.

    Args:
        run_id: Diagnostic run UUID

    Returns:
        RunFacts with a parsed ScoredAssessment

    Raises:
        PrecomputeError: If the run does not exist or its facts are malformed
    """
    run = get_diagnostic_run(run_id)
    if not run:
        raise PrecomputeError(f"Run not found: {run_id}")

    raw_assessment = run.get("assessment")
    if not raw_assessment:
        raise PrecomputeError(f"Run {run_id} has no scored assessment")

    inputs = list_diagnostic_inputs(run_id)

    try:
        return RunFacts(
            run_id=run_id,
            pillar_id=run.get("pillar_id") or get_settings().INTERPRETATION_DEFAULT_PILLAR,
            context=run.get("context") or {},
            calibration=run.get("calibration"),
            answers=[AnswerFact.model_validate(i) for i in inputs],
            assessment=ScoredAssessment.model_validate(raw_assessment),
        )
    except ValidationError as e:
        raise PrecomputeError(f"Malformed upstream facts for run {run_id}: {e}") from e


def compute_input_hash(answers: list[AnswerFact], calibration: dict[str, Any] | None) -> str:
    """
    Digest answers and calibration for regeneration control.

    Answers are ordered by question id and every mapping is serialized with
    sorted keys, so identical answer sets hash identically regardless of the
    order they were read in. Not a security digest.

    Args:
        answers: Answered questions for the run
        calibration: Stakeholder calibration (importance map etc.)

    Returns:
        16 hex character digest
    """
    encoded_answers = sorted(
        (a.question_id, json.dumps(a.value, sort_keys=True, default=str)) for a in answers
    )
    payload = {
        "answers": [f"{qid}:{value}" for qid, value in encoded_answers],
        "calibration": calibration,
    }
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(serialized.encode()).hexdigest()[:16]


def current_input_hash(run_id: UUID) -> str | None:
    """
    Recompute the input hash from the stored answers and calibration.

    Returns:
        Hash string, or None if the run no longer exists
    """
    run = get_diagnostic_run(run_id)
    if not run:
        return None

    answers = [AnswerFact.model_validate(i) for i in list_diagnostic_inputs(run_id)]
    return compute_input_hash(answers, run.get("calibration"))


# ============================================================================
# InterpretationInput
# ============================================================================


def build_evidence_ids(
    assessment: ScoredAssessment,
    objectives: list[InterpretationObjective],
    critical_failures: list[CriticalFailure],
) -> list[str]:
    """Closed set of citation tokens the generator may reference, in stable order."""
    maturity = assessment.maturity
    evidence = [
        "score_overall",
        f"level_{maturity.actual_level}",
        "cap_active" if maturity.capped else "cap_none",
        "path_optimization",
    ]
    evidence.extend(f"obj_{o.id}" for o in objectives)
    evidence.extend(f"critical_{c.question_id}" for c in critical_failures)
    if maturity.blocking_level:
        evidence.append(f"gate_L{maturity.blocking_level}_blocked")

    # De-duplicate, keep first occurrence
    return list(dict.fromkeys(evidence))


def build_interpretation_input(facts: RunFacts) -> InterpretationInput:
    """
    Derive and validate the interpretation input from upstream facts.

    Raises:
        PrecomputeError: If the derived input fails schema validation
    """
    assessment = facts.assessment
    maturity = assessment.maturity
    importance_map = (facts.calibration or {}).get("importance_map") or {}

    try:
        objectives = [
            InterpretationObjective(
                id=o.objective_id,
                name=o.objective_name,
                score=_round_half_up(o.score),
                importance=_importance(importance_map, o.objective_id),
                has_critical=o.overridden,
            )
            for o in assessment.objectives
        ]

        critical_failures = [
            CriticalFailure(
                question_id=r.evidence_id,
                question_title=r.question_title or r.evidence_id,
                objective_name=r.objective_name or "Unknown",
            )
            for r in assessment.critical_risks
            # A critical risk only counts when the control is not confirmed in place
            if r.user_answer is not True
        ]

        failed_gates = []
        if maturity.blocking_level:
            failed_gates.append(
                FailedGate(
                    level=maturity.blocking_level,
                    blocking_questions=tuple(maturity.blocking_evidence_ids),
                )
            )

        priority_misalignments = [
            PriorityMisalignment(objective_name=o.name, importance=o.importance, score=o.score)
            for o in objectives
            if o.importance >= MISALIGNMENT_MIN_IMPORTANCE and o.score < MISALIGNMENT_MAX_SCORE
        ]

        company = facts.context.get("company") or {}
        company_name = company.get("name") or facts.context.get("company_name") or "The organization"
        industry = company.get("industry") or facts.context.get("industry") or "Not specified"

        overall = maturity.execution_score
        if overall is None:
            overall = assessment.overall_score

        return InterpretationInput(
            pillar_id=facts.pillar_id,
            run_id=facts.run_id,
            company_name=company_name,
            industry=industry,
            overall_score=_round_half_up(overall),
            maturity_level=maturity.actual_level,
            maturity_name=LEVEL_NAMES.get(maturity.actual_level, "Unknown"),
            is_capped=maturity.capped,
            capped_by=tuple(maturity.capped_by),
            objectives=tuple(objectives),
            critical_failures=tuple(critical_failures),
            failed_gates=tuple(failed_gates),
            priority_misalignments=tuple(priority_misalignments),
            evidence_ids=tuple(build_evidence_ids(assessment, objectives, critical_failures)),
        )
    except ValidationError as e:
        raise PrecomputeError(f"Precompute validation failed: {e}") from e


def precompute(run_id: UUID) -> tuple[InterpretationInput, str]:
    """
    Build the interpretation input and input hash for a run.

    Args:
        run_id: Diagnostic run UUID

    Returns:
        Tuple of (InterpretationInput, input_hash)

    Raises:
        PrecomputeError: If the run is missing or its facts fail validation
    """
    logger.info(f"Precompute starting for run {run_id}", extra={"run_id": str(run_id)})

    facts = load_run_facts(run_id)
    interpretation_input = build_interpretation_input(facts)
    input_hash = compute_input_hash(facts.answers, facts.calibration)

    logger.info(
        f"Precompute complete: {len(interpretation_input.objectives)} objectives, "
        f"{len(interpretation_input.critical_failures)} critical failures, "
        f"{len(interpretation_input.evidence_ids)} evidence ids",
        extra={"run_id": str(run_id), "pillar_id": interpretation_input.pillar_id},
    )

    return interpretation_input, input_hash
