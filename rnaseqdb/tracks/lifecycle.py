"""
Track lifecycle: creation, merge, retirement and merge-identity upkeep.

A track is ACTIVE until it is either retired (RETIRED) or absorbed by a
merge (MERGED); both are terminal. Status updates only ever touch ACTIVE
rows. Every check-then-act sequence runs inside one `transaction`, together
with the matching presentation-node changes.
"""

from __future__ import annotations

import abc
import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from rnaseqdb.db.api import fetch_ids, transaction
from rnaseqdb.exceptions import OperationAborted
from rnaseqdb.sra.accessions import classify_accession
from rnaseqdb.tracks import results
from rnaseqdb.tracks.merge_identity import MergeIdentity, compute_merge_identity
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)

TRACK_STATUSES = ("ACTIVE", "RETIRED", "MERGED")


class NodeSink(abc.ABC):
    """Receives presentation-node changes that follow track changes."""

    @abc.abstractmethod
    def create_node_for_track(self, track_id: int) -> Optional[int]:
        raise NotImplementedError

    @abc.abstractmethod
    def retire_nodes_for_tracks(self, track_ids: Sequence[int]) -> int:
        raise NotImplementedError


def sra_to_run_ids(conn: sqlite3.Connection, accessions: Iterable[str]) -> Optional[List[int]]:
    """
    Expand study/experiment/run/sample accessions to run ids.

    Returns None if any accession is unclassifiable or matches no run.
    """
    run_ids = set()
    for accession in accessions:
        kind = classify_accession(accession)
        if kind is None:
            return None
        found = fetch_ids(
            conn,
            f"SELECT DISTINCT run_id FROM sra_to_track WHERE {kind.column} = ?",
            (accession.strip(),),
        )
        if not found:
            log.warning("No run found for %s", accession)
            return None
        run_ids.update(found)
    return sorted(run_ids)


def active_tracks_for_runs(conn: sqlite3.Connection, run_ids: Sequence[int]) -> List[int]:
    if not run_ids:
        return []
    placeholders = ",".join("?" for _ in run_ids)
    return fetch_ids(
        conn,
        f"""
        SELECT DISTINCT t.track_id FROM track t
        JOIN sra_track s ON s.track_id = t.track_id
        WHERE s.run_id IN ({placeholders}) AND t.status = 'ACTIVE'
        ORDER BY t.track_id
        """,
        list(run_ids),
    )


class TrackManager:
    def __init__(self, conn: sqlite3.Connection, node_sink: Optional[NodeSink] = None):
        self.conn = conn
        self.node_sink = node_sink

    # ---- Creation ----
    def _new_track(self) -> int:
        cur = self.conn.execute("INSERT INTO track DEFAULT VALUES")
        return int(cur.lastrowid)

    def add_run_to_track(self, run_id: int, track_id: int) -> bool:
        """Link a run to a track; an existing link is left alone."""
        existing = self.conn.execute(
            "SELECT 1 FROM sra_track WHERE run_id = ? AND track_id = ?", (run_id, track_id)
        ).fetchone()
        if existing:
            log.warning("There is already a link between run %s and track %s", run_id, track_id)
            return False
        self.conn.execute("INSERT INTO sra_track (run_id, track_id) VALUES (?, ?)", (run_id, track_id))
        return True

    def add_run_to_sample_track(self, run_id: int, sample_id: int) -> Optional[int]:
        """
        Link a new run of an already-tracked sample to that sample's ACTIVE
        track. Returns the track id, or None when the sample has none.
        """
        row = self.conn.execute(
            """
            SELECT DISTINCT track_id FROM sra_to_active_track
            WHERE sample_id = ? AND run_id != ? ORDER BY track_id LIMIT 1
            """,
            (sample_id, run_id),
        ).fetchone()
        if row is None:
            log.debug("Sample %s has no active track: run %s left without track", sample_id, run_id)
            return None
        self.add_run_to_track(run_id, int(row[0]))
        return int(row[0])

    def create_track_for_run(self, run_id: int) -> Optional[int]:
        """
        Create a fresh track holding one run, plus its presentation node.

        Returns the new track id, or None if the run already belongs to a
        track.
        """
        with transaction(self.conn):
            linked = self.conn.execute(
                "SELECT track_id FROM sra_track WHERE run_id = ? LIMIT 1", (run_id,)
            ).fetchone()
            if linked:
                log.warning("Track already exists for run %s", run_id)
                return None
            log.info("ADDING track for run %s", run_id)
            track_id = self._new_track()
            self.add_run_to_track(run_id, track_id)
            if self.node_sink is not None:
                self.node_sink.create_node_for_track(track_id)
        return track_id

    # ---- Status changes ----
    def _set_status(self, track_ids: Sequence[int], status: str) -> int:
        if status not in TRACK_STATUSES or status == "ACTIVE":
            raise ValueError(f"Invalid track status for inactivation: {status}")
        if not track_ids:
            return 0
        placeholders = ",".join("?" for _ in track_ids)
        cur = self.conn.execute(
            f"UPDATE track SET status = ? WHERE status = 'ACTIVE' AND track_id IN ({placeholders})",
            [status, *track_ids],
        )
        log.debug("Inactivated tracks (%s): %s", status, ",".join(str(t) for t in track_ids))
        if self.node_sink is not None:
            self.node_sink.retire_nodes_for_tracks(track_ids)
        return cur.rowcount

    def inactivate_tracks(self, track_ids: Sequence[int], status: str = "RETIRED") -> int:
        """Move ACTIVE tracks to RETIRED (or MERGED) and retire their nodes."""
        with transaction(self.conn):
            return self._set_status(list(track_ids), status)

    def merge_tracks_by_sra_ids(self, accessions: Sequence[str]) -> Optional[int]:
        """
        Merge the ACTIVE tracks holding the given accessions' runs into one
        new track.

        The old tracks become MERGED, every run of the old tracks is linked to
        the new track, its merge identity is computed and presentation nodes
        are swapped, all in one transaction.

        Returns:
            The new track id, or None (nothing changed) when an accession has
            no run or fewer than two tracks are involved.
        """
        try:
            with transaction(self.conn):
                run_ids = sra_to_run_ids(self.conn, accessions)
                if run_ids is None:
                    raise OperationAborted("can't find all the members to merge")
                old_track_ids = active_tracks_for_runs(self.conn, run_ids)
                if len(old_track_ids) < 2:
                    raise OperationAborted(
                        f"only {len(old_track_ids)} track(s) to merge for {', '.join(accessions)}"
                    )
                log.debug("Can merge %d tracks: %s", len(old_track_ids), old_track_ids)

                placeholders = ",".join("?" for _ in old_track_ids)
                member_runs = fetch_ids(
                    self.conn,
                    f"SELECT DISTINCT run_id FROM sra_track WHERE track_id IN ({placeholders}) ORDER BY run_id",
                    old_track_ids,
                )
                self._set_status(old_track_ids, "MERGED")

                new_track_id = self._new_track()
                for run_id in member_runs:
                    self.add_run_to_track(run_id, new_track_id)
                self._store_identity(new_track_id, compute_merge_identity(self.conn, new_track_id))
                if self.node_sink is not None:
                    self.node_sink.create_node_for_track(new_track_id)
        except OperationAborted as e:
            log.warning("Abort merging: %s", e)
            return None
        log.info("MERGED tracks %s into track %s", old_track_ids, new_track_id)
        return new_track_id

    def merge_sample_tracks(self, accession: str) -> List[int]:
        """
        Merge, sample by sample, the tracks of every sample under a study or
        experiment accession (replicate runs of one sample end up in one
        track). Returns the new track ids.
        """
        kind = classify_accession(accession)
        if kind is None:
            return []
        rows = self.conn.execute(
            f"""
            SELECT DISTINCT sample_sra_acc, sample_private_acc FROM sra_to_active_track
            WHERE {kind.column} = ? ORDER BY sample_id
            """,
            (accession.strip(),),
        ).fetchall()
        merged = []
        for row in rows:
            sample_acc = row["sample_sra_acc"] or row["sample_private_acc"]
            log.debug("Merge tracks for sample %s", sample_acc)
            track_id = self.merge_tracks_by_sra_ids([sample_acc])
            if track_id is not None:
                merged.append(track_id)
        return merged

    def inactivate_tracks_by_sra_ids(self, accessions: Sequence[str]) -> bool:
        """
        Retire the tracks of the given accessions, one track per accession.

        Returns False (nothing changed) when the accessions do not resolve to
        exactly as many ACTIVE tracks.
        """
        try:
            with transaction(self.conn):
                run_ids = sra_to_run_ids(self.conn, accessions)
                if run_ids is None:
                    raise OperationAborted("can't find all the members listed")
                track_ids = active_tracks_for_runs(self.conn, run_ids)
                if len(track_ids) != len(accessions):
                    raise OperationAborted(
                        f"not the same number of tracks ({len(track_ids)}) "
                        f"and SRA accessions ({len(accessions)})"
                    )
                self._set_status(track_ids, "RETIRED")
        except OperationAborted as e:
            log.warning("Abort inactivation: %s", e)
            return False
        log.info("RETIRED tracks %s", track_ids)
        return True

    # ---- Merge identity ----
    def _store_identity(self, track_id: int, identity: MergeIdentity) -> bool:
        """Store a track's identity unless another ACTIVE track holds its merge_id."""
        level, merge_id = identity
        if merge_id is not None:
            clash = self.conn.execute(
                "SELECT track_id FROM track WHERE merge_id = ? AND status = 'ACTIVE' AND track_id != ?",
                (merge_id, track_id),
            ).fetchone()
            if clash:
                log.warning("merge_id %s of track %s is already used by active track %s: not stored",
                            merge_id, track_id, clash[0])
                return False
        self.conn.execute(
            "UPDATE track SET merge_level = ?, merge_id = ? WHERE track_id = ?",
            (level, merge_id, track_id),
        )
        return True

    def compute_merge_identity(self, track_id: int) -> MergeIdentity:
        return compute_merge_identity(self.conn, track_id)

    def regenerate_merge_identities(self, force: bool = False) -> int:
        """
        Recompute merge_level/merge_id of ACTIVE tracks (only those without a
        merge_id unless `force`). Returns the number of tracks processed.
        """
        sql = "SELECT track_id FROM track WHERE status = 'ACTIVE'"
        if not force:
            sql += " AND merge_id IS NULL"
        with transaction(self.conn):
            track_ids = fetch_ids(self.conn, sql + " ORDER BY track_id")
            for track_id in track_ids:
                self._store_identity(track_id, compute_merge_identity(self.conn, track_id))
        log.info("Regenerated merge ids for %d tracks", len(track_ids))
        return len(track_ids)

    def get_track_level(self, track_id: int) -> MergeIdentity:
        row = self.conn.execute(
            "SELECT merge_level, merge_id FROM track WHERE track_id = ?", (track_id,)
        ).fetchone()
        if row is None:
            return None, None
        return row["merge_level"], row["merge_id"]

    def get_track_id_from_merge_id(self, merge_id: str) -> Optional[int]:
        row = self.conn.execute(
            "SELECT track_id FROM track WHERE merge_id = ? AND status = 'ACTIVE' ORDER BY track_id LIMIT 1",
            (merge_id,),
        ).fetchone()
        if row is None:
            log.warning("Can't get a track with merge_id = %s", merge_id)
            return None
        return int(row[0])

    # ---- Lookups ----
    def get_tracks_from_sra(self, accessions: Iterable[str]) -> List[int]:
        """ACTIVE track ids holding any of the accessions (unknown ones are skipped)."""
        track_ids = set()
        for accession in accessions:
            kind = classify_accession(accession)
            if kind is None:
                continue
            track_ids.update(fetch_ids(
                self.conn,
                f"SELECT DISTINCT track_id FROM sra_to_active_track WHERE {kind.column} = ?",
                (accession.strip(),),
            ))
        log.debug("Tracks found: %s", sorted(track_ids))
        return sorted(track_ids)

    def get_new_runs_tracks(self, species: Optional[str] = None) -> Dict[str, Dict[int, Dict[str, Any]]]:
        """
        ACTIVE tracks without any file yet, i.e. still to be aligned, grouped
        by production name.

        Returns:
            {production_name: {track_id: {run_accs, merge_level, merge_id,
            taxon_id, fastqs}}}; private runs list their submitted fastq paths.
        """
        sql = """
            SELECT t.track_id, t.merge_level, t.merge_id, r.run_id, r.run_sra_acc,
                   r.run_private_acc, tx.production_name, tx.taxon_id
            FROM track t
            JOIN sra_track s ON s.track_id = t.track_id
            JOIN run r ON r.run_id = s.run_id
            JOIN sample sa ON sa.sample_id = r.sample_id
            JOIN taxonomy tx ON tx.strain_id = sa.strain_id
            WHERE t.status = 'ACTIVE'
              AND NOT EXISTS (SELECT 1 FROM file f WHERE f.track_id = t.track_id)
        """
        params: list = []
        if species:
            sql += " AND tx.production_name = ?"
            params.append(species)
        sql += " ORDER BY t.track_id, r.run_id"

        new_tracks: Dict[str, Dict[int, Dict[str, Any]]] = {}
        for row in self.conn.execute(sql, params).fetchall():
            by_track = new_tracks.setdefault(row["production_name"], {})
            data = by_track.get(row["track_id"])
            if data is None:
                data = {
                    "run_accs": [],
                    "merge_level": row["merge_level"],
                    "merge_id": row["merge_id"],
                    "taxon_id": row["taxon_id"],
                    "fastqs": [],
                }
                by_track[row["track_id"]] = data
            if row["run_sra_acc"]:
                data["run_accs"].append(row["run_sra_acc"])
            else:
                data["fastqs"].extend(
                    r[0] for r in self.conn.execute(
                        "SELECT path FROM private_file WHERE run_id = ? ORDER BY private_file_id",
                        (row["run_id"],),
                    ).fetchall()
                )
        log.debug("%d species with tracks to align", len(new_tracks))
        return new_tracks

    # ---- Results ----
    def add_track_results(self, track_id: int,
                          commands: Sequence[Union[str, Dict[str, Any]]],
                          file_paths: Sequence[str]) -> bool:
        """
        Attach analysis commands and result files to a track, at most once.

        Returns False (nothing written) if the track is unknown or already
        has analyses or non-fastq files.
        """
        log.debug("Add results for track %s", track_id)
        try:
            with transaction(self.conn):
                exists = self.conn.execute(
                    "SELECT 1 FROM track WHERE track_id = ?", (track_id,)
                ).fetchone()
                if not exists:
                    raise OperationAborted(f"unknown track {track_id}")
                if results.track_has_analyses(self.conn, track_id):
                    raise OperationAborted(f"the track {track_id} already has commands")
                if results.track_has_results_files(self.conn, track_id):
                    raise OperationAborted(f"the track {track_id} already has files")
                n_cmds = results.insert_commands(self.conn, track_id, commands)
                n_files = results.insert_files(self.conn, track_id, file_paths)
        except OperationAborted as e:
            log.warning("Skip results addition: %s", e)
            return False
        log.info("ADDED %d commands and %d files to track %s", n_cmds, n_files, track_id)
        return True
