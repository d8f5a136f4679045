"""
Import of public SRA data into the database.

Any accession is expanded to its runs; each run is imported with its
experiment, study (with publications) and sample, deduplicated by accession.
The accessor is queried before any write, and all rows for one run are
written in one transaction, so a failed strain match leaves nothing behind.
"""

from __future__ import annotations

import sqlite3
from typing import Optional

from rnaseqdb.db.api import transaction
from rnaseqdb.db.repositories import ENTITY_TABLES, SraEntity
from rnaseqdb.exceptions import OperationAborted
from rnaseqdb.sra.accessions import classify_accession
from rnaseqdb.sra.accessor import SraAccessor, SraExperiment, SraRun, SraSample, SraStudy
from rnaseqdb.taxonomy.strains import StrainMatcher
from rnaseqdb.tracks.lifecycle import TrackManager
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)


def link_publication(conn: sqlite3.Connection, study_id: int, pubmed_id: int) -> int:
    """Link a study to a PubMed publication, creating the publication row if needed."""
    conn.execute(
        "INSERT INTO publication (pubmed_id) VALUES (?) ON CONFLICT(pubmed_id) DO NOTHING",
        (pubmed_id,),
    )
    pub_id = conn.execute(
        "SELECT publication_id FROM publication WHERE pubmed_id = ?", (pubmed_id,)
    ).fetchone()[0]
    conn.execute(
        """
        INSERT INTO study_publication (study_id, publication_id) VALUES (?, ?)
        ON CONFLICT(study_id, publication_id) DO NOTHING
        """,
        (study_id, pub_id),
    )
    log.debug("Linked study %s to pubmed %s", study_id, pubmed_id)
    return int(pub_id)


class SraImporter:
    def __init__(self, conn: sqlite3.Connection, accessor: SraAccessor,
                 strain_matcher: StrainMatcher, tracks: TrackManager):
        self.conn = conn
        self.accessor = accessor
        self.strain_matcher = strain_matcher
        self.tracks = tracks

    def import_accession(self, accession: str) -> int:
        """
        Import every run under a study, experiment, sample or run accession.

        Returns:
            The number of runs newly inserted (0 if none or on failure).
        """
        kind = classify_accession(accession)
        if kind is None:
            return 0
        accession = accession.strip()
        if kind.private:
            log.warning("Private accession %s can't be retrieved from the SRA", accession)
            return 0
        if kind.entity is SraEntity.RUN:
            return self.import_run(accession)

        if ENTITY_TABLES[kind.entity].find_ids(self.conn, accession):
            log.debug("%s %s has 1 id already.", kind.entity.value, accession)

        # Any accessor failure is treated as no data
        try:
            records = self.accessor.resolve_by_accession(kind.entity, accession)
        except Exception as e:
            log.warning("Could not retrieve SRA data for %s: %s", accession, e)
            return 0
        if not records:
            log.warning("%s impossible to get: %s", kind.entity.value, accession)
            return 0

        total = 0
        for record in records:
            for run_acc in record.run_accessions:
                total += self.import_run(run_acc)
        log.info("Imported %d new runs from %s", total, accession)
        return total

    def import_run(self, run_accession: str) -> int:
        """
        Import one public run. Returns 1 if it was inserted, 0 otherwise
        (already present, unknown, accessor failure or no strain match).
        """
        run_table = ENTITY_TABLES[SraEntity.RUN]
        if not run_accession or not run_accession.strip():
            return 0
        run_accession = run_accession.strip()
        if run_table.find_ids(self.conn, run_accession):
            log.debug("Run %s has 1 id already.", run_accession)
            return 0

        try:
            records = self.accessor.resolve_by_accession(SraEntity.RUN, run_accession)
        except Exception as e:
            log.warning("Could not retrieve SRA data for %s: %s", run_accession, e)
            return 0
        run = records[0] if records else None
        if not isinstance(run, SraRun) or run.experiment is None or run.sample is None:
            log.warning("Run impossible to get: %s", run_accession)
            return 0

        try:
            with transaction(self.conn):
                sample_id, new_sample = self._get_sample_id(run.sample)
                experiment_id = self._get_experiment_id(run.experiment)
                log.info("ADDING run %s", run.accession)
                run_id = run_table.insert(self.conn, {
                    "run_sra_acc": run.accession,
                    "experiment_id": experiment_id,
                    "sample_id": sample_id,
                    "title": run.title,
                    "submitter": run.submitter,
                })
                if new_sample:
                    self.tracks.create_track_for_run(run_id)
                else:
                    self.tracks.add_run_to_sample_track(run_id, sample_id)
        except OperationAborted as e:
            log.warning("Can't insert the run %s: %s", run_accession, e)
            return 0
        return 1

    # ---- Hierarchy resolution (inside the run transaction) ----
    def _single_id(self, entity: SraEntity, accession: str) -> Optional[int]:
        ids = ENTITY_TABLES[entity].find_ids(self.conn, accession)
        if len(ids) > 1:
            raise OperationAborted(f"several {entity.value}s found with accession {accession}")
        if ids:
            log.debug("%s %s has 1 id already.", entity.value.capitalize(), accession)
            return ids[0]
        return None

    def _get_study_id(self, study: SraStudy) -> int:
        study_id = self._single_id(SraEntity.STUDY, study.accession)
        if study_id is not None:
            return study_id
        log.info("ADDING study %s", study.accession)
        study_id = ENTITY_TABLES[SraEntity.STUDY].insert(self.conn, {
            "study_sra_acc": study.accession,
            "title": study.title,
            "abstract": study.abstract,
        })
        for pubmed_id in study.pubmed_ids:
            link_publication(self.conn, study_id, pubmed_id)
        return study_id

    def _get_experiment_id(self, experiment: SraExperiment) -> int:
        experiment_id = self._single_id(SraEntity.EXPERIMENT, experiment.accession)
        if experiment_id is not None:
            return experiment_id
        if experiment.study is None:
            raise OperationAborted(f"experiment {experiment.accession} has no study")
        study_id = self._get_study_id(experiment.study)
        log.info("ADDING experiment %s", experiment.accession)
        return ENTITY_TABLES[SraEntity.EXPERIMENT].insert(self.conn, {
            "experiment_sra_acc": experiment.accession,
            "title": experiment.title,
            "study_id": study_id,
        })

    def _get_sample_id(self, sample: SraSample) -> tuple[int, bool]:
        """Return (sample_id, newly_inserted)."""
        sample_id = self._single_id(SraEntity.SAMPLE, sample.accession)
        if sample_id is not None:
            return sample_id, False

        strain = sample.strain
        match = self.strain_matcher.match(sample.taxon_id, strain)
        if match is None:
            raise OperationAborted(
                f"the species ({sample.taxon_id}, {strain}) could not be found in the species table"
            )
        if match.ambiguous:
            log.warning("Sample %s: strain assignment is ambiguous", sample.accession)

        log.info("ADDING sample %s", sample.accession)
        sample_id = ENTITY_TABLES[SraEntity.SAMPLE].insert(self.conn, {
            "sample_sra_acc": sample.accession,
            "title": sample.title,
            "description": sample.description,
            "taxon_id": sample.taxon_id,
            "strain": strain,
            "strain_id": match.strain_id,
            "biosample_acc": sample.biosample_acc,
            "label": sample.label,
        })
        return sample_id, True
