"""Pydantic schemas for diagnostic interpretation generation."""

from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Enums
# ============================================================================


class Tonality(str, Enum):
    """Qualitative stance that steers generation language."""
    CELEBRATE = "celebrate"     # High score, no criticals
    REFINE = "refine"           # Good score, no criticals
    URGENT = "urgent"           # Critical failures present
    REMEDIATE = "remediate"     # Low score, no criticals


class ReportStatus(str, Enum):
    """Lifecycle status of an interpretation report row."""
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


Severity = Literal["error", "warning"]


# ============================================================================
# Upstream facts (scored assessment, consumed as-is)
# ============================================================================


class AnswerFact(BaseModel):
    """A single answered diagnostic question."""

    question_id: str = Field(..., min_length=1)
    value: Any = Field(default=None, description="Answered value (true/false/null or option)")


class ObjectiveScore(BaseModel):
    """Objective rollup produced by the scoring service."""

    objective_id: str = Field(..., min_length=1)
    objective_name: str = Field(..., min_length=1)
    score: float | None = Field(default=None, description="Objective score 0-100")
    overridden: bool = Field(default=False, description="Score overridden by a critical failure")


class CriticalRisk(BaseModel):
    """Critical question evaluated by the scoring service."""

    evidence_id: str = Field(..., min_length=1, description="Question id of the critical question")
    question_title: str | None = None
    objective_name: str | None = None
    user_answer: bool | None = Field(default=None, description="True when the control is in place")


class MaturityFacts(BaseModel):
    """Maturity and gate computation."""

    execution_score: float | None = None
    actual_level: int = Field(default=1)
    capped: bool = False
    capped_by: list[str] = Field(default_factory=list)
    blocking_level: int | None = None
    blocking_evidence_ids: list[str] = Field(default_factory=list)


class ScoredAssessment(BaseModel):
    """Fact sheet for a diagnostic run, computed upstream."""

    overall_score: float | None = None
    maturity: MaturityFacts = Field(default_factory=MaturityFacts)
    objectives: list[ObjectiveScore] = Field(default_factory=list)
    critical_risks: list[CriticalRisk] = Field(default_factory=list)


class RunFacts(BaseModel):
    """Everything precompute needs about one run."""

    run_id: UUID
    pillar_id: str
    context: dict[str, Any] = Field(default_factory=dict)
    calibration: dict[str, Any] | None = None
    answers: list[AnswerFact] = Field(default_factory=list)
    assessment: ScoredAssessment


# ============================================================================
# Interpretation input (validated snapshot)
# ============================================================================


class InterpretationObjective(BaseModel):
    """Objective as presented to the generator."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    score: int = Field(..., ge=0, le=100)
    importance: int = Field(..., ge=1, le=5)
    has_critical: bool


class CriticalFailure(BaseModel):
    """A critical question that was not satisfied."""

    model_config = ConfigDict(frozen=True)

    question_id: str
    question_title: str
    objective_name: str


class FailedGate(BaseModel):
    """A maturity gate blocked by unanswered or negative questions."""

    model_config = ConfigDict(frozen=True)

    level: int
    blocking_questions: tuple[str, ...] = ()


class PriorityMisalignment(BaseModel):
    """High-importance objective with a low score."""

    model_config = ConfigDict(frozen=True)

    objective_name: str
    importance: int
    score: int


class InterpretationInput(BaseModel):
    """Canonical, validated snapshot that every generation attempt reads from."""

    model_config = ConfigDict(frozen=True)

    pillar_id: str = Field(..., min_length=1)
    run_id: UUID
    company_name: str = Field(..., min_length=1)
    industry: str

    overall_score: int = Field(..., ge=0, le=100)
    maturity_level: int = Field(..., ge=1, le=4)
    maturity_name: str
    is_capped: bool
    capped_by: tuple[str, ...] = ()

    objectives: tuple[InterpretationObjective, ...] = Field(..., min_length=1)
    critical_failures: tuple[CriticalFailure, ...] = ()
    failed_gates: tuple[FailedGate, ...] = ()
    priority_misalignments: tuple[PriorityMisalignment, ...] = ()

    evidence_ids: tuple[str, ...] = Field(..., min_length=1)


# ============================================================================
# Generation output and quality gate
# ============================================================================


class GeneratedSection(BaseModel):
    """One narrative section, content carries inline [[evidence_id]] tokens."""

    id: str
    title: str
    content: str


class HeuristicViolation(BaseModel):
    """A single rule violation raised by the quality gate."""

    rule: str
    section_id: str | None = None
    message: str
    severity: Severity


class HeuristicResult(BaseModel):
    """Quality gate verdict."""

    passed: bool
    violations: list[HeuristicViolation] = Field(default_factory=list)

    @property
    def errors(self) -> list[HeuristicViolation]:
        return [v for v in self.violations if v.severity == "error"]


class GenerationOutput(BaseModel):
    """Parsed completion plus usage for one generator call."""

    sections: list[GeneratedSection]
    tokens: int = 0
    model: str


class OrchestrationResult(BaseModel):
    """Terminal output of the interpretation pipeline."""

    sections: list[GeneratedSection]
    input_hash: str | None = None
    used_fallback: bool
    fallback_reason: str | None = None
    heuristics: HeuristicResult
    attempts: int = 0
    tokens: int = 0
    model: str | None = None


# ============================================================================
# API schemas
# ============================================================================


class StartInterpretationResponse(BaseModel):
    """Response for an accepted generation request."""

    status: ReportStatus = ReportStatus.GENERATING
    report_id: UUID
    version: int


class InterpretationReportView(BaseModel):
    """Latest report version as exposed to the report layer."""

    id: UUID
    run_id: UUID | None = None
    version: int
    status: ReportStatus
    schema_version: int | None = None
    sections: list[GeneratedSection] | None = None
    input_hash: str | None = None
    used_fallback: bool | None = None
    fallback_reason: str | None = None
    heuristics_passed: bool | None = None
    heuristics_violations: list[HeuristicViolation] | None = None
    generation_attempts: int | None = None
    model_used: str | None = None
    tokens_used: int | None = None
    latency_ms: int | None = None
    error_message: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class InterpretationStatusResponse(BaseModel):
    """Status poll response."""

    status: ReportStatus | Literal["none"]
    can_regenerate: bool
    report: InterpretationReportView | None = None
