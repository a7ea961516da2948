"""Deterministic quality gate for generated interpretation sections.

No model calls. Every rule reads only the sections, the interpretation
input and the pillar pack, so the verdict is reproducible.
"""

import re

from app.core.pillars import PillarPack
from app.core.schemas_interpretation import (
    GeneratedSection,
    HeuristicResult,
    HeuristicViolation,
    InterpretationInput,
)

EVIDENCE_PATTERN = re.compile(r"\[\[([^\[\]]+)\]\]")
PERCENT_PATTERN = re.compile(r"(?<![\d.])(\d+(?:\.\d+)?)\s?%")

WORD_COUNT_GRACE = 30
SCORE_TOLERANCE = 3


def extract_evidence_ids(content: str) -> list[str]:
    """Citation tokens in order of appearance, without the [[ ]] delimiters."""
    return [m.strip() for m in EVIDENCE_PATTERN.findall(content)]


def format_evidence(evidence_ids: list[str]) -> str:
    """Render evidence ids in the inline citation form."""
    return " ".join(f"[[{e}]]" for e in evidence_ids)


def _check_structure(
    sections: list[GeneratedSection], pack: PillarPack
) -> list[HeuristicViolation]:
    violations: list[HeuristicViolation] = []

    if len(sections) != len(pack.sections):
        violations.append(
            HeuristicViolation(
                rule="section_count",
                message=f"Expected {len(pack.sections)} sections, got {len(sections)}",
                severity="error",
            )
        )

    seen: set[str] = set()
    for section in sections:
        if pack.section(section.id) is None:
            violations.append(
                HeuristicViolation(
                    rule="section_identity",
                    section_id=section.id,
                    message=f"Unknown section id: {section.id}",
                    severity="error",
                )
            )
        elif section.id in seen:
            violations.append(
                HeuristicViolation(
                    rule="section_identity",
                    section_id=section.id,
                    message=f"Duplicate section id: {section.id}",
                    severity="error",
                )
            )
        seen.add(section.id)

    for missing in [sid for sid in pack.section_ids if sid not in seen]:
        violations.append(
            HeuristicViolation(
                rule="section_identity",
                section_id=missing,
                message=f"Missing section: {missing}",
                severity="error",
            )
        )

    return violations


def _check_forbidden_phrases(section: GeneratedSection, pack: PillarPack) -> list[HeuristicViolation]:
    content_lower = section.content.lower()
    return [
        HeuristicViolation(
            rule="forbidden_phrase",
            section_id=section.id,
            message=f'Contains: "{phrase}"',
            severity="error",
        )
        for phrase in pack.forbidden_phrases
        if phrase.lower() in content_lower
    ]


def _check_word_count(section: GeneratedSection, max_words: int) -> HeuristicViolation | None:
    word_count = len(section.content.split())
    if word_count > max_words + WORD_COUNT_GRACE:
        return HeuristicViolation(
            rule="word_count",
            section_id=section.id,
            message=f"{word_count} words (max {max_words})",
            severity="warning",
        )
    return None


def _check_evidence(
    section: GeneratedSection, data: InterpretationInput
) -> list[HeuristicViolation]:
    tokens = extract_evidence_ids(section.content)
    if not tokens:
        return [
            HeuristicViolation(
                rule="evidence_presence",
                section_id=section.id,
                message="No [[evidence]] tags found",
                severity="error",
            )
        ]

    allowed = set(data.evidence_ids)
    return [
        HeuristicViolation(
            rule="evidence_validity",
            section_id=section.id,
            message=f"Invalid evidence: {token}",
            severity="error",
        )
        for token in dict.fromkeys(tokens)
        if token not in allowed
    ]


def _check_numeric_claims(
    section: GeneratedSection, data: InterpretationInput
) -> list[HeuristicViolation]:
    known = [data.overall_score, *(o.score for o in data.objectives)]
    violations = []

    for raw in dict.fromkeys(PERCENT_PATTERN.findall(section.content)):
        claimed = float(raw)
        if any(abs(claimed - value) <= SCORE_TOLERANCE for value in known):
            continue
        violations.append(
            HeuristicViolation(
                rule="numeric_hallucination",
                section_id=section.id,
                message=f"Claims {raw}% - not in actual data",
                severity="error",
            )
        )

    return violations


def run_heuristics(
    sections: list[GeneratedSection],
    data: InterpretationInput,
    pack: PillarPack,
) -> HeuristicResult:
    """
    Validate generated sections against the input and pillar rules.

    Args:
        sections: Parsed sections from the generator
        data: Interpretation input the sections must be grounded in
        pack: Pillar pack (section config, forbidden phrases)

    Returns:
        HeuristicResult; passed is False if any violation has error severity
    """
    violations = _check_structure(sections, pack)

    for section in sections:
        config = pack.section(section.id)
        if config is None:
            continue

        if not section.content or not section.content.strip():
            violations.append(
                HeuristicViolation(
                    rule="empty_content",
                    section_id=section.id,
                    message="Empty content",
                    severity="error",
                )
            )
            continue

        violations.extend(_check_forbidden_phrases(section, pack))

        word_violation = _check_word_count(section, config.max_words)
        if word_violation:
            violations.append(word_violation)

        violations.extend(_check_evidence(section, data))
        violations.extend(_check_numeric_claims(section, data))

    return HeuristicResult(
        passed=not any(v.severity == "error" for v in violations),
        violations=violations,
    )


def summarize_violations(result: HeuristicResult) -> str:
    """Short machine-readable summary used as a fallback reason."""
    errors = result.errors
    rules = sorted({v.rule for v in errors})
    return f"heuristics_failed: {len(errors)} errors ({', '.join(rules)})"
