"""
Species/strain matching for imported samples.

Samples arrive with an NCBI taxon id and a free-text strain string. They are
mapped to a `strain` row with a best-effort chain:

1. exact (taxon_id, strain) match;
2. unique substring match: a known strain name of the taxon appearing in the
   sample's strain text;
3. taxon fallback: the taxon's only strain, or (ambiguous) the first one by
   strain name.

Ambiguous fallbacks are accepted but logged and flagged, so callers can treat
the match as advisory.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Dict, Optional

from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class StrainMatch:
    strain_id: int
    method: str  # exact / substring / taxon
    ambiguous: bool = False


class StrainCache:
    """
    Lazily-loaded {taxon_id: {strain_name: strain_id}} map of ACTIVE strains.

    Owned by the matcher; call `invalidate()` after adding strains so the
    next lookup reloads.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._strains: Optional[Dict[int, Dict[str, int]]] = None

    def invalidate(self):
        self._strains = None

    def reload(self) -> Dict[int, Dict[str, int]]:
        rows = self.conn.execute(
            """
            SELECT taxon_id, strain, strain_id FROM taxonomy
            WHERE status = 'ACTIVE'
            ORDER BY taxon_id, strain_id
            """
        ).fetchall()
        strains: Dict[int, Dict[str, int]] = {}
        for row in rows:
            strains.setdefault(int(row["taxon_id"]), {})[row["strain"] or ""] = int(row["strain_id"])
        if not strains:
            log.warning("No species loaded from the taxonomy table")
        self._strains = strains
        return strains

    def strains_for(self, taxon_id: int) -> Optional[Dict[str, int]]:
        if self._strains is None:
            self.reload()
        return self._strains.get(int(taxon_id))


class StrainMatcher:
    def __init__(self, cache: StrainCache):
        self.cache = cache

    def match(self, taxon_id: Optional[int], strain_name: Optional[str]) -> Optional[StrainMatch]:
        """
        Resolve a sample's (taxon_id, strain text) to a strain id.

        Returns:
            A StrainMatch, or None when the taxon is unknown.
        """
        if taxon_id is None:
            log.warning("Can't match a strain without a taxon id (strain=%r)", strain_name)
            return None
        strains = self.cache.strains_for(taxon_id)
        if not strains:
            log.warning("Taxon %s is not in the species table", taxon_id)
            return None
        strain_name = strain_name or ""

        if strain_name in strains:
            return StrainMatch(strains[strain_name], "exact")

        candidates = sorted(name for name in strains if name and name in strain_name)
        if len(candidates) == 1:
            log.info("Automatic strain match for taxon %s: '%s' -> '%s'",
                     taxon_id, strain_name, candidates[0])
            return StrainMatch(strains[candidates[0]], "substring")

        distinct_ids = sorted(set(strains.values()))
        if len(distinct_ids) == 1:
            log.info("Taxon-level strain match for taxon %s (strain '%s' not recognised)",
                     taxon_id, strain_name)
            return StrainMatch(distinct_ids[0], "taxon")

        first_name = sorted(strains)[0]
        log.warning(
            "Ambiguous strain for taxon %s ('%s' matches none of %d strains); using '%s'",
            taxon_id, strain_name, len(distinct_ids), first_name,
        )
        return StrainMatch(strains[first_name], "taxon", ambiguous=True)

    def match_production_name(self, production_name: str,
                              taxon_id: Optional[int] = None) -> Optional[sqlite3.Row]:
        """
        Resolve a private sample's strain by production name (and taxon when
        given). Exactly one taxonomy row must match.
        """
        sql = "SELECT * FROM taxonomy WHERE production_name = ? AND status = 'ACTIVE'"
        params: list = [production_name]
        if taxon_id is not None:
            sql += " AND taxon_id = ?"
            params.append(taxon_id)
        rows = self.cache.conn.execute(sql, params).fetchall()
        if len(rows) != 1:
            log.warning("Not just one taxon found for %s (%d)", production_name, len(rows))
            return None
        return rows[0]
