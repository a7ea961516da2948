"""Template-based interpretation output used when generation cannot be trusted."""

from app.core.interpretation_heuristics import format_evidence
from app.core.logging import get_logger
from app.core.pillars import PillarPack
from app.core.schemas_interpretation import GeneratedSection, InterpretationInput

logger = get_logger(__name__)

UNAVAILABLE_CONTENT = "Analysis unavailable. Please try again or contact support."


def generate_fallback(data: InterpretationInput, pack: PillarPack) -> list[GeneratedSection]:
    """
    Produce the pillar's full section set from deterministic templates.

    Template evidence ids are appended in the same [[id]] form the generator
    uses, so downstream consumers cannot tell the two apart.

    Args:
        data: Validated interpretation input
        pack: Pillar pack with fallback templates

    Returns:
        One section per configured section, in configured order
    """
    sections = []
    for config in pack.sections:
        template = pack.fallback_templates.get(config.id)
        if template is None:
            logger.warning(f"No fallback template for section {config.id}", extra={"pillar_id": pack.pillar_id})
            content = f"{config.title} unavailable."
        else:
            result = template(data)
            content = result.content
            if result.evidence_ids:
                content = f"{content} {format_evidence(result.evidence_ids)}"

        sections.append(GeneratedSection(id=config.id, title=config.title, content=content))

    return sections


def generate_unavailable_fallback(pack: PillarPack) -> list[GeneratedSection]:
    """Section-shaped placeholders for when no valid input exists."""
    return [
        GeneratedSection(id=config.id, title=config.title, content=UNAVAILABLE_CONTENT)
        for config in pack.sections
    ]
