"""
Bundles: display groups of tracks.

`BundleManager` is also the default presentation-node sink of the track
lifecycle: every new track gets a bundle of its own, and retiring or merging
tracks retires the bundles that show them.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Dict, List, Optional, Sequence

from rnaseqdb.bundles.projection import project_bundles
from rnaseqdb.bundles.solr import bundles_to_solr
from rnaseqdb.db.api import fetch_ids, transaction
from rnaseqdb.exceptions import OperationAborted
from rnaseqdb.tracks.lifecycle import NodeSink
from rnaseqdb.utils.logging import get_logger
from rnaseqdb.vocabulary import KeywordLookup, VocabularyLookup

log = get_logger(__name__)

UPDATABLE_FIELDS = ("title_manual", "text_manual", "title_auto", "text_auto")


def _unique(ids: Sequence[int]) -> List[int]:
    seen = set()
    ordered = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


class BundleManager(NodeSink):
    def __init__(self, conn: sqlite3.Connection, keywords: Optional[KeywordLookup] = None):
        self.conn = conn
        self.keywords = keywords or VocabularyLookup(conn)

    # ---- Links ----
    def _add_bundle_track(self, bundle_id: int, track_id: int) -> bool:
        existing = self.conn.execute(
            "SELECT 1 FROM bundle_track WHERE bundle_id = ? AND track_id = ?", (bundle_id, track_id)
        ).fetchone()
        if existing:
            log.warning("There is already a link between bundle %s and track %s", bundle_id, track_id)
            return False
        others = self.get_bundle_id_from_track_id(track_id)
        if others:
            log.warning("Track %s is already in active bundle(s) %s", track_id, others)
        self.conn.execute(
            "INSERT INTO bundle_track (bundle_id, track_id) VALUES (?, ?)", (bundle_id, track_id)
        )
        log.debug("ADDED bundle_track link from %s to %s", bundle_id, track_id)
        return True

    def get_bundle_tracks(self, bundle_id: int) -> List[int]:
        return fetch_ids(
            self.conn,
            "SELECT track_id FROM bundle_track WHERE bundle_id = ? ORDER BY bundle_track_id",
            (bundle_id,),
        )

    def get_bundle_id_from_track_id(self, track_id: int) -> List[int]:
        """ACTIVE bundles showing a track."""
        return fetch_ids(
            self.conn,
            """
            SELECT DISTINCT b.bundle_id FROM bundle b
            JOIN bundle_track bt ON bt.bundle_id = b.bundle_id
            WHERE bt.track_id = ? AND b.status = 'ACTIVE'
            ORDER BY b.bundle_id
            """,
            (track_id,),
        )

    # ---- Creation ----
    def create_bundle_from_tracks(self, track_ids: Sequence[int]) -> Optional[int]:
        """
        Create a bundle over the given tracks.

        A single-track bundle copies the track's manual-or-auto title and
        text into its auto fields.

        Returns:
            The new bundle id, or None if no track was given or one is unknown.
        """
        track_ids = list(track_ids)
        if not track_ids:
            log.warning("Can't create a bundle without tracks")
            return None

        try:
            with transaction(self.conn):
                tracks = [
                    self.conn.execute("SELECT * FROM track WHERE track_id = ?", (track_id,)).fetchone()
                    for track_id in track_ids
                ]
                unknown = [t for t, row in zip(track_ids, tracks) if row is None]
                if unknown:
                    raise OperationAborted(f"unknown tracks {unknown}")

                bundle_data: Dict[str, Any] = {"title_auto": None, "text_auto": None}
                if len(tracks) == 1:
                    log.debug("Bundle: copy data from track %s", track_ids[0])
                    bundle_data = {
                        "title_auto": tracks[0]["title_manual"] or tracks[0]["title_auto"],
                        "text_auto": tracks[0]["text_manual"] or tracks[0]["text_auto"],
                    }
                cur = self.conn.execute(
                    "INSERT INTO bundle (title_auto, text_auto) VALUES (:title_auto, :text_auto)",
                    bundle_data,
                )
                bundle_id = int(cur.lastrowid)
                for track_id in track_ids:
                    self._add_bundle_track(bundle_id, track_id)
        except OperationAborted as e:
            log.warning("Can't create a bundle: %s", e)
            return None
        log.debug("ADDED bundle %s", bundle_id)
        return bundle_id

    def create_node_for_track(self, track_id: int) -> Optional[int]:
        if self.get_bundle_id_from_track_id(track_id):
            log.warning("Bundle already exists for track %s", track_id)
            return None
        return self.create_bundle_from_tracks([track_id])

    # ---- Retirement and merge ----
    def inactivate_bundles(self, bundle_ids: Sequence[int]) -> int:
        """Retire bundles; duplicate ids are ignored. Returns the number retired."""
        bundle_ids = sorted(set(bundle_ids))
        if not bundle_ids:
            return 0
        log.debug("Inactivate the bundles: %s", ",".join(str(b) for b in bundle_ids))
        placeholders = ",".join("?" for _ in bundle_ids)
        with transaction(self.conn):
            cur = self.conn.execute(
                f"UPDATE bundle SET status = 'RETIRED' WHERE status = 'ACTIVE' AND bundle_id IN ({placeholders})",
                bundle_ids,
            )
        return cur.rowcount

    def retire_nodes_for_tracks(self, track_ids: Sequence[int]) -> int:
        bundle_ids: List[int] = []
        for track_id in track_ids:
            bundle_ids.extend(self.get_bundle_id_from_track_id(track_id))
        return self.inactivate_bundles(bundle_ids)

    def merge_bundles(self, bundle_ids: Sequence[int]) -> Optional[int]:
        """
        Replace bundles by one bundle over the union of their tracks.

        Returns:
            The new bundle id, or None when the bundles hold no track.
        """
        bundle_ids = _unique(bundle_ids)
        track_ids: List[int] = []
        for bundle_id in bundle_ids:
            log.debug("Merge bundle %s", bundle_id)
            track_ids.extend(self.get_bundle_tracks(bundle_id))
        track_ids = _unique(track_ids)
        if not track_ids:
            log.warning("No tracks found in bundles %s: nothing to merge", bundle_ids)
            return None

        with transaction(self.conn):
            # Retired first so the new links don't report the old bundles
            self.inactivate_bundles(bundle_ids)
            new_bundle_id = self.create_bundle_from_tracks(track_ids)
        log.info("MERGED bundles %s into bundle %s", bundle_ids, new_bundle_id)
        return new_bundle_id

    def update_bundle(self, bundle_id: int, content: Dict[str, Any]) -> bool:
        """Set a bundle's title/text fields. Unknown fields raise ValueError."""
        unknown = sorted(set(content) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValueError(f"Can't update bundle field(s): {', '.join(unknown)}")
        if not content:
            return False
        log.debug("Update bundle %s", bundle_id)
        assignments = ", ".join(f"{key} = :{key}" for key in content)
        with transaction(self.conn):
            cur = self.conn.execute(
                f"UPDATE bundle SET {assignments} WHERE bundle_id = :bundle_id",
                {**content, "bundle_id": bundle_id},
            )
        if cur.rowcount == 0:
            log.warning("No bundle %s to update", bundle_id)
            return False
        return True

    # ---- Projections ----
    def get_bundles(self, opt: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return project_bundles(self.conn, self.keywords, opt or {})

    def get_bundles_for_solr(self, opt: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return bundles_to_solr(self.get_bundles(opt))
