"""Pillar packs for interpretation generation.

A pillar pack fixes the narrative structure for one assessment type:
the ordered section list, forbidden phrases, score-banded vocabulary
and the deterministic fallback templates.

Usage:
    from app.core.pillars import get_pillar_pack

    pack = get_pillar_pack("fpa")
"""

from app.core.pillars.registry import UnknownPillarError, get_pillar_pack
from app.core.pillars.types import FallbackContent, FallbackTemplate, PillarPack, SectionConfig

__all__ = [
    "get_pillar_pack",
    "UnknownPillarError",
    "PillarPack",
    "SectionConfig",
    "FallbackContent",
    "FallbackTemplate",
]
