"""FP&A pillar pack: sections, vocabulary rules and fallback templates."""

from app.core.pillars.types import FallbackContent, PillarPack, SectionConfig
from app.core.schemas_interpretation import InterpretationInput, InterpretationObjective

FPA_SCORE_BAND = 65

FPA_SECTIONS: tuple[SectionConfig, ...] = (
    SectionConfig(
        id="executive_snapshot",
        title="Executive Snapshot",
        guidance="Overall score, maturity level and whether the level is capped, in two or three sentences",
        max_words=120,
    ),
    SectionConfig(
        id="strengths",
        title="Strengths",
        guidance="The highest scoring objectives and what they enable",
        max_words=100,
    ),
    SectionConfig(
        id="constraints",
        title="Constraints",
        guidance="Critical failures and gate blockers holding the function back",
        max_words=100,
    ),
    SectionConfig(
        id="opportunity_areas",
        title="Opportunity Areas",
        guidance="Priority misalignments and low scoring objectives the stakeholders care about",
        max_words=100,
    ),
    SectionConfig(
        id="path_forward",
        title="Path Forward",
        guidance="Sequenced next steps matched to the tonality",
        max_words=120,
    ),
)

FPA_FORBIDDEN_PHRASES: tuple[str, ...] = (
    # Fabricated benchmarks
    "typical finance teams",
    "most CFOs",
    "finance best practices indicate",
    "according to finance benchmarks",
    "standard FP&A metrics",
    "average forecast accuracy",
    "typical budget cycle",
    "industry-standard close process",
    "according to studies",
    "according to research",
    "research shows",
    "industry benchmarks show",
    "best-in-class",
    "world-class",
    "leading companies",
    "top performers",
    # Consultant filler
    "synergy",
    "paradigm shift",
    "low-hanging fruit",
    "move the needle",
)


def _band(score: int) -> str:
    return "established" if score >= FPA_SCORE_BAND else "developing"


def _ranked(data: InterpretationInput) -> list[InterpretationObjective]:
    # Stable ordering: score desc, then declaration order
    indexed = list(enumerate(data.objectives))
    indexed.sort(key=lambda pair: (-pair[1].score, pair[0]))
    return [obj for _, obj in indexed]


def _objective_by_name(data: InterpretationInput, name: str) -> InterpretationObjective | None:
    for obj in data.objectives:
        if obj.name == name:
            return obj
    return None


def executive_snapshot(data: InterpretationInput) -> FallbackContent:
    cap_id = "cap_active" if data.is_capped else "cap_none"
    content = (
        f"{data.company_name} scores {data.overall_score}% overall. This {_band(data.overall_score)} "
        f"result places the FP&A function at Level {data.maturity_level} "
        f"({data.maturity_name}) maturity."
    )
    if data.is_capped:
        blockers = ", ".join(data.capped_by[:3]) or "unmet gate requirements"
        content += f" The level is capped by {blockers}."
    else:
        content += " No gate currently caps the maturity level."
    return FallbackContent(
        content=content,
        evidence_ids=["score_overall", f"level_{data.maturity_level}", cap_id],
    )


def strengths(data: InterpretationInput) -> FallbackContent:
    top = _ranked(data)[:2]
    described = " and ".join(f"{o.name} ({o.score}%)" for o in top)
    if top[0].score >= FPA_SCORE_BAND:
        content = f"The most {_band(top[0].score)} areas are {described}, which give a base to build on."
    else:
        content = (
            f"No objective has reached an established level yet; the highest scoring areas are "
            f"{described}, which are the natural starting points."
        )
    return FallbackContent(content=content, evidence_ids=[f"obj_{o.id}" for o in top])


def constraints(data: InterpretationInput) -> FallbackContent:
    if data.critical_failures:
        shown = data.critical_failures[:3]
        titles = "; ".join(f"{c.question_title} ({c.objective_name})" for c in shown)
        count = len(data.critical_failures)
        noun = "control is" if count == 1 else "controls are"
        return FallbackContent(
            content=f"{count} critical {noun} not in place: {titles}.",
            evidence_ids=[f"critical_{c.question_id}" for c in shown],
        )
    if data.failed_gates:
        gate = data.failed_gates[0]
        blockers = ", ".join(gate.blocking_questions[:3]) or "open requirements"
        return FallbackContent(
            content=f"Progress to Level {gate.level} is blocked by {blockers}.",
            evidence_ids=[f"gate_L{gate.level}_blocked"],
        )
    lowest = _ranked(data)[-1]
    return FallbackContent(
        content=(
            f"No critical controls are missing. The main constraint is {lowest.name}, "
            f"which scores {lowest.score}% and remains {_band(lowest.score)}."
        ),
        evidence_ids=[f"obj_{lowest.id}"],
    )


def opportunity_areas(data: InterpretationInput) -> FallbackContent:
    if data.priority_misalignments:
        parts = []
        evidence = []
        for m in data.priority_misalignments[:3]:
            parts.append(f"{m.objective_name} is rated {m.importance}/5 for importance but scores {m.score}%")
            obj = _objective_by_name(data, m.objective_name)
            if obj is not None:
                evidence.append(f"obj_{obj.id}")
        return FallbackContent(
            content="; ".join(parts) + ". Closing these gaps aligns effort with what stakeholders value most.",
            evidence_ids=evidence,
        )
    bottom = list(reversed(_ranked(data)))[:2]
    described = " and ".join(f"{o.name} ({o.score}%)" for o in bottom)
    return FallbackContent(
        content=f"The largest remaining headroom is in {described}.",
        evidence_ids=[f"obj_{o.id}" for o in bottom],
    )


def path_forward(data: InterpretationInput) -> FallbackContent:
    if data.critical_failures:
        first = data.critical_failures[0]
        return FallbackContent(
            content=(
                f"Start by putting the missing critical controls in place, beginning with "
                f"{first.question_title}. Once those are closed, revisit the gate requirements "
                f"for the next maturity level."
            ),
            evidence_ids=[f"critical_{first.question_id}", "path_optimization"],
        )
    if data.failed_gates:
        gate = data.failed_gates[0]
        return FallbackContent(
            content=(
                f"Focus first on the requirements blocking Level {gate.level}, then strengthen "
                f"the lowest scoring objectives in sequence."
            ),
            evidence_ids=[f"gate_L{gate.level}_blocked", "path_optimization"],
        )
    return FallbackContent(
        content=(
            "Build on the current foundation by raising the lowest scoring objectives one at a time "
            "and formalizing the practices that already work."
        ),
        evidence_ids=["path_optimization"],
    )


FPA_PACK = PillarPack(
    pillar_id="fpa",
    pillar_name="FP&A",
    audience="a CFO",
    sections=FPA_SECTIONS,
    forbidden_phrases=FPA_FORBIDDEN_PHRASES,
    fallback_templates={
        "executive_snapshot": executive_snapshot,
        "strengths": strengths,
        "constraints": constraints,
        "opportunity_areas": opportunity_areas,
        "path_forward": path_forward,
    },
    score_band_threshold=FPA_SCORE_BAND,
)
