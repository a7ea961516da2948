"""Pillar pack registry."""

from app.core.interpretation_inputs import PrecomputeError
from app.core.pillars.fpa import FPA_PACK
from app.core.pillars.types import PillarPack

_PACKS: dict[str, PillarPack] = {
    FPA_PACK.pillar_id: FPA_PACK,
}


class UnknownPillarError(PrecomputeError):
    """Raised when a run references a pillar with no registered pack."""


def get_pillar_pack(pillar_id: str) -> PillarPack:
    """
    Look up the pack for a pillar.

    Raises:
        UnknownPillarError: If no pack is registered for the pillar
    """
    pack = _PACKS.get(pillar_id)
    if pack is None:
        raise UnknownPillarError(f"Unknown pillar: {pillar_id}")
    return pack
