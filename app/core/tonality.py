"""Tonality selection for interpretation generation."""

from app.core.schemas_interpretation import Tonality

# Lower bounds (inclusive) on the overall score for each non-urgent tonality.
# Pending product confirmation; swap here rather than inlining elsewhere.
TONALITY_THRESHOLDS: dict[Tonality, int] = {
    Tonality.CELEBRATE: 80,
    Tonality.REFINE: 50,
}


def derive_tonality(score: float, has_critical: bool) -> Tonality:
    """
    Map overall score and critical-failure presence to a tonality.

    Critical failures always win. Otherwise the score is banded against
    TONALITY_THRESHOLDS, with anything below the lowest band remediated.

    Args:
        score: Overall score (0-100)
        has_critical: Whether any critical question failed

    Returns:
        Tonality for the run
    """
    if has_critical:
        return Tonality.URGENT
    if score >= TONALITY_THRESHOLDS[Tonality.CELEBRATE]:
        return Tonality.CELEBRATE
    if score >= TONALITY_THRESHOLDS[Tonality.REFINE]:
        return Tonality.REFINE
    return Tonality.REMEDIATE
