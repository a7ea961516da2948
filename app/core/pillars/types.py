"""Types for pillar packs."""

from collections.abc import Callable
from dataclasses import dataclass, field

from app.core.schemas_interpretation import InterpretationInput


@dataclass(frozen=True)
class SectionConfig:
    """A narrative section the pillar requires, in output order."""

    id: str
    title: str
    guidance: str
    max_words: int


@dataclass(frozen=True)
class FallbackContent:
    """Template output: prose plus the evidence ids it relies on."""

    content: str
    evidence_ids: list[str] = field(default_factory=list)


FallbackTemplate = Callable[[InterpretationInput], FallbackContent]


@dataclass(frozen=True)
class PillarPack:
    """Domain profile selecting section structure and vocabulary rules."""

    pillar_id: str
    pillar_name: str
    audience: str
    sections: tuple[SectionConfig, ...]
    forbidden_phrases: tuple[str, ...]
    fallback_templates: dict[str, FallbackTemplate]

    # Score-banded vocabulary: strong terms only at or above the threshold
    score_band_threshold: int = 65
    strong_terms: tuple[str, ...] = ("solid", "robust", "established", "mature", "advanced")
    developing_terms: tuple[str, ...] = ("emerging", "developing", "foundational", "early-stage")

    @property
    def section_ids(self) -> list[str]:
        return [s.id for s in self.sections]

    def section(self, section_id: str) -> SectionConfig | None:
        for config in self.sections:
            if config.id == section_id:
                return config
        return None
