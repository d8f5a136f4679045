"""
Merge identity of a track: a (merge_level, merge_id) pair derived only from
the studies and samples of the track's runs, as seen through ACTIVE tracks.

    several studies                    -> ('taxon',  'SRP1_SRP2')
    one study, all its active samples  -> ('study',  'SRP1')
    one study, some of its samples     -> ('sample', 'SRS1') or ('taxon', 'SRS1_SRS2')
    no study, one sample               -> ('sample', 'SRS1')

Accessions are the public one when present, else the private one, and
multi-accession ids are sorted before joining, so the result is stable for a
given run-set.
"""

from __future__ import annotations

import sqlite3
from typing import Iterable, List, Optional, Tuple

from rnaseqdb.db.repositories import ENTITY_TABLES, SraEntity
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)

MergeIdentity = Tuple[Optional[str], Optional[str]]


def _accessions(conn: sqlite3.Connection, entity: SraEntity, ids: Iterable[int]) -> List[str]:
    table = ENTITY_TABLES[entity]
    accs = []
    for row_id in ids:
        row = table.get(conn, row_id)
        if row is not None:
            accs.append(table.accession_of(row))
    return sorted(acc for acc in accs if acc)


def compute_merge_identity(conn: sqlite3.Connection, track_id: int) -> MergeIdentity:
    """
    Compute (merge_level, merge_id) for a track from its active run set.

    Returns (None, None) when the track has no active runs.
    """
    rows = conn.execute(
        "SELECT DISTINCT study_id, sample_id FROM sra_to_active_track WHERE track_id = ?",
        (track_id,),
    ).fetchall()
    track_samples = {int(r["sample_id"]) for r in rows if r["sample_id"] is not None}
    studies = sorted({int(r["study_id"]) for r in rows if r["study_id"] is not None})
    log.debug("Track %s: studies=%s samples=%s", track_id, studies, sorted(track_samples))

    if len(studies) > 1:
        log.debug("Track %s has several studies: merge at taxon level", track_id)
        return "taxon", "_".join(_accessions(conn, SraEntity.STUDY, studies))

    if len(studies) == 1:
        study_id = studies[0]
        study_samples = {
            int(r[0]) for r in conn.execute(
                "SELECT DISTINCT sample_id FROM sra_to_active_track WHERE study_id = ?",
                (study_id,),
            ).fetchall()
        }
        if study_samples == track_samples:
            return "study", _accessions(conn, SraEntity.STUDY, [study_id])[0]
        log.debug("Study %s has other samples than track %s: merge on samples", study_id, track_id)
        sample_accs = _accessions(conn, SraEntity.SAMPLE, track_samples)
        level = "sample" if len(sample_accs) == 1 else "taxon"
        return level, "_".join(sample_accs)

    if len(track_samples) == 1:
        return "sample", _accessions(conn, SraEntity.SAMPLE, track_samples)[0]

    return None, None


def merge_text(conn: sqlite3.Connection, track: sqlite3.Row) -> str:
    """
    Text naming what a track is made of: its merge_id, or else its run
    accessions joined with '_'.
    """
    if track["merge_id"]:
        return track["merge_id"]
    rows = conn.execute(
        """
        SELECT r.run_sra_acc, r.run_private_acc FROM sra_track s
        JOIN run r ON r.run_id = s.run_id
        WHERE s.track_id = ?
        """,
        (track["track_id"],),
    ).fetchall()
    return "_".join(sorted(r["run_sra_acc"] or r["run_private_acc"] for r in rows))
