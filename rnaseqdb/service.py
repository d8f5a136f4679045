"""
RNAseqDB service: one object composing the import, track, bundle and export
components over a single database connection.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from rnaseqdb.bundles.manager import BundleManager
from rnaseqdb.db import api as db_api
from rnaseqdb.sra.accessor import SraAccessor
from rnaseqdb.sra.importer import SraImporter
from rnaseqdb.sra.private import PrivateStudyImporter
from rnaseqdb.taxonomy.strains import StrainCache, StrainMatcher
from rnaseqdb.tracks.lifecycle import TrackManager
from rnaseqdb.utils.logging import get_logger
from rnaseqdb.vocabulary import KeywordLookup, VocabularyLookup

log = get_logger(__name__)


class RNAseqDB:
    """
    Facade over the RNAseqDB components.

    Args:
        conn: Connection from `db_api.connect`, with the schema initialized.
        accessor: Source of SRA metadata; required only for public imports.
        keywords: Keyword lookup for projections (defaults to the vocabulary tables).
    """

    def __init__(self, conn: sqlite3.Connection, accessor: Optional[SraAccessor] = None,
                 keywords: Optional[KeywordLookup] = None):
        self.conn = conn
        self.accessor = accessor
        self.vocabulary = VocabularyLookup(conn)
        self.strain_cache = StrainCache(conn)
        self.strain_matcher = StrainMatcher(self.strain_cache)
        self.bundles = BundleManager(conn, keywords or self.vocabulary)
        self.tracks = TrackManager(conn, node_sink=self.bundles)
        self.private_importer = PrivateStudyImporter(conn, self.strain_matcher, self.tracks)
        self._sra_importer: Optional[SraImporter] = None

    @classmethod
    def open(cls, db_path: Path, accessor: Optional[SraAccessor] = None) -> "RNAseqDB":
        conn = db_api.connect(Path(db_path))
        db_api.init_schema(conn)
        return cls(conn, accessor)

    def close(self):
        self.conn.close()

    @property
    def sra_importer(self) -> SraImporter:
        if self.accessor is None:
            raise RuntimeError("No SRA accessor configured for public imports")
        if self._sra_importer is None:
            self._sra_importer = SraImporter(self.conn, self.accessor, self.strain_matcher, self.tracks)
        return self._sra_importer

    # ---- Taxonomy ----
    def add_species(self, taxon_id: int, binomial_name: str) -> Optional[int]:
        species_id = db_api.add_species(self.conn, taxon_id, binomial_name)
        self.strain_cache.invalidate()
        return species_id

    def add_strain(self, strain: Dict[str, Any]) -> Optional[int]:
        strain_id = db_api.add_strain(self.conn, strain)
        self.strain_cache.invalidate()
        return strain_id

    # ---- Import ----
    def import_accession(self, accession: str) -> int:
        return self.sra_importer.import_accession(accession)

    def import_private_study(self, descriptor: Dict[str, Any]) -> int:
        return self.private_importer.import_private_study(descriptor)

    def import_private_study_from_json(self, path: Union[str, Path]) -> int:
        return self.private_importer.import_private_study_from_json(path)

    # ---- Tracks ----
    def create_track_for_run(self, run_id: int) -> Optional[int]:
        return self.tracks.create_track_for_run(run_id)

    def merge_tracks_by_sra_ids(self, accessions: Sequence[str]) -> Optional[int]:
        return self.tracks.merge_tracks_by_sra_ids(accessions)

    def inactivate_tracks_by_sra_ids(self, accessions: Sequence[str]) -> bool:
        return self.tracks.inactivate_tracks_by_sra_ids(accessions)

    def regenerate_merge_identities(self, force: bool = False) -> int:
        return self.tracks.regenerate_merge_identities(force)

    def add_track_results(self, track_id: int, commands: Sequence[Any], file_paths: Sequence[str]) -> bool:
        return self.tracks.add_track_results(track_id, commands, file_paths)

    # ---- Bundles ----
    def create_bundle_from_tracks(self, track_ids: Sequence[int]) -> Optional[int]:
        return self.bundles.create_bundle_from_tracks(track_ids)

    def merge_bundles(self, bundle_ids: Sequence[int]) -> Optional[int]:
        return self.bundles.merge_bundles(bundle_ids)

    def get_bundles(self, opt: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self.bundles.get_bundles(opt)

    def get_bundles_for_solr(self, opt: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self.bundles.get_bundles_for_solr(opt)

    # ---- Files ----
    def check_files(self, files_dir: Optional[Path] = None) -> Dict[str, Any]:
        """
        Count the bigwig, bam and private fastq files known to the database.
        With `files_dir`, also list ACTIVE-track files missing from
        <files_dir>/<type>/<production_name>/.
        """
        counts = {
            "bigwig": self.conn.execute("SELECT COUNT(*) FROM file WHERE type = 'bigwig'").fetchone()[0],
            "bam": self.conn.execute("SELECT COUNT(*) FROM file WHERE type = 'bam'").fetchone()[0],
            "private_fastq": self.conn.execute("SELECT COUNT(*) FROM private_file").fetchone()[0],
        }
        log.info("%d bigwig files, %d bam files, %d private fastq files",
                 counts["bigwig"], counts["bam"], counts["private_fastq"])
        missing: List[str] = []
        if files_dir is not None:
            rows = self.conn.execute(
                """
                SELECT DISTINCT f.path, f.type, tx.production_name FROM file f
                JOIN track t ON t.track_id = f.track_id
                JOIN sra_track s ON s.track_id = t.track_id
                JOIN run r ON r.run_id = s.run_id
                JOIN sample sa ON sa.sample_id = r.sample_id
                JOIN taxonomy tx ON tx.strain_id = sa.strain_id
                WHERE t.status = 'ACTIVE' AND f.type != 'fastq'
                ORDER BY f.path
                """
            ).fetchall()
            for row in rows:
                subdir = "bam" if row["type"] == "bai" else row["type"]
                path = Path(files_dir) / subdir / row["production_name"] / row["path"]
                if not path.exists():
                    log.warning("Missing file: %s", path)
                    missing.append(str(path))
        return {**counts, "missing": missing}
