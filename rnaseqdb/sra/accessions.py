"""
Classification of SRA and private accession strings.

Private accessions (minted by this database for privately submitted data)
are checked before public ones, and within each family the order is
study, experiment, run, sample.
"""

from __future__ import annotations

import enum
import re
from typing import Iterable, List, Optional, Tuple

from rnaseqdb.db.repositories import SraEntity
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)


class AccessionKind(enum.Enum):
    # Definition order is the matching order
    PRIVATE_STUDY = (SraEntity.STUDY, True, r"VBSRP\d+")
    PRIVATE_EXPERIMENT = (SraEntity.EXPERIMENT, True, r"VBSRX\d+")
    PRIVATE_RUN = (SraEntity.RUN, True, r"VBSRR\d+")
    PRIVATE_SAMPLE = (SraEntity.SAMPLE, True, r"VBSRS\d+")
    STUDY = (SraEntity.STUDY, False, r"[SED]RP\d+")
    EXPERIMENT = (SraEntity.EXPERIMENT, False, r"[SED]RX\d+")
    RUN = (SraEntity.RUN, False, r"[SED]RR\d+")
    SAMPLE = (SraEntity.SAMPLE, False, r"[SED]RS\d+")

    def __init__(self, entity: SraEntity, private: bool, pattern: str):
        self.entity = entity
        self.private = private
        self.regex = re.compile(pattern)

    @property
    def column(self) -> str:
        """Column of the `sra_to_track` view (and of the entity table) holding this accession."""
        family = "private" if self.private else "sra"
        return f"{self.entity.value}_{family}_acc"


def classify_accession(text: Optional[str]) -> Optional[AccessionKind]:
    """
    Return the kind of an accession string, or None (with a warning) when it
    is not recognised. Never raises.
    """
    candidate = (text or "").strip()
    for kind in AccessionKind:
        if kind.regex.fullmatch(candidate):
            return kind
    log.warning("Can't identify SRA accession: %r", text)
    return None


def classify_all(accessions: Iterable[str]) -> List[Tuple[str, Optional[AccessionKind]]]:
    """Classify a list of accessions, keeping the stripped text next to its kind."""
    return [((acc or "").strip(), classify_accession(acc)) for acc in accessions]
