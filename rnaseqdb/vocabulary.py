"""
Keyword vocabulary attached to tracks, grouped by vocabulary type
(e.g. 'tissue', 'developmental_stage').
"""

from __future__ import annotations

import abc
import sqlite3
from typing import Dict, List, Optional

from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)


class KeywordLookup(abc.ABC):
    @abc.abstractmethod
    def get_keywords_for_track(self, track_id: int) -> Dict[str, List[str]]:
        """Return {vocabulary type: [keywords]} for a track."""
        raise NotImplementedError


class VocabularyLookup(KeywordLookup):
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get_keywords_for_track(self, track_id: int) -> Dict[str, List[str]]:
        rows = self.conn.execute(
            """
            SELECT v.voc_type, v.voc_text FROM vocabulary_track vt
            JOIN vocabulary v ON v.vocabulary_id = vt.vocabulary_id
            WHERE vt.track_id = ?
            ORDER BY v.voc_type, v.voc_text
            """,
            (track_id,),
        ).fetchall()
        keywords: Dict[str, List[str]] = {}
        for row in rows:
            keywords.setdefault(row["voc_type"], []).append(row["voc_text"])
        return keywords

    def add_vocabulary(self, voc_acc: str, voc_type: str, voc_text: str) -> int:
        self.conn.execute(
            """
            INSERT INTO vocabulary (voc_acc, voc_type, voc_text) VALUES (?, ?, ?)
            ON CONFLICT(voc_acc, voc_type) DO NOTHING
            """,
            (voc_acc, voc_type, voc_text),
        )
        row = self.conn.execute(
            "SELECT vocabulary_id FROM vocabulary WHERE voc_acc = ? AND voc_type = ?",
            (voc_acc, voc_type),
        ).fetchone()
        return int(row[0])

    def tag_track(self, track_id: int, vocabulary_id: int) -> Optional[int]:
        """Tag a track with a vocabulary term; returns the link id (None if already tagged)."""
        cur = self.conn.execute(
            """
            INSERT INTO vocabulary_track (track_id, vocabulary_id) VALUES (?, ?)
            ON CONFLICT(track_id, vocabulary_id) DO NOTHING
            """,
            (track_id, vocabulary_id),
        )
        if cur.rowcount == 0:
            log.debug("Track %s already tagged with vocabulary %s", track_id, vocabulary_id)
            return None
        return int(cur.lastrowid)
