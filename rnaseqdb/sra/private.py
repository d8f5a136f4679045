"""
Import of privately submitted studies from a nested descriptor.

Descriptor layout (JSON or an equivalent dict):

    {
      "info": {"title": ..., "abstract": ...},      # study columns
      "production_name": "aedes_aegypti_lvpagwg",
      "taxon_id": 7159,                               # optional
      "pubmed_id": 12345,                             # optional
      "samples": [
        {"sample_name": "s1", "info": {...}, "production_name": ...}
      ],
      "experiments": [
        {"info": {...},
         "runs": [{"sample_name": "s1", "info": {...}, "files": ["a.fastq.gz"]}]}
      ]
    }

Accessions missing from an `info` block are synthesised from the new row id
(VBSRP12, VBSRS3, ...). The study's metasum (md5 of its `info`) prevents the
same descriptor from being imported twice.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Union

from rnaseqdb.db.api import transaction
from rnaseqdb.db.repositories import ENTITY_TABLES, SraEntity
from rnaseqdb.exceptions import OperationAborted
from rnaseqdb.sra.importer import link_publication
from rnaseqdb.taxonomy.strains import StrainMatcher
from rnaseqdb.tracks.lifecycle import TrackManager
from rnaseqdb.utils.hashing import metasum
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)


class PrivateStudyImporter:
    def __init__(self, conn: sqlite3.Connection, strain_matcher: StrainMatcher, tracks: TrackManager):
        self.conn = conn
        self.strain_matcher = strain_matcher
        self.tracks = tracks

    def import_private_study(self, descriptor: Dict[str, Any]) -> int:
        """
        Insert a private study tree. Returns the number of runs inserted, or
        0 (nothing written) on any failure.
        """
        try:
            with transaction(self.conn):
                return self._import(descriptor)
        except OperationAborted as e:
            log.warning("Private study not imported: %s", e)
            return 0
        except (KeyError, TypeError, ValueError) as e:
            log.warning("Malformed private study descriptor: %s", e)
            return 0
        except sqlite3.IntegrityError as e:
            log.warning("Private study conflicts with stored data: %s", e)
            return 0

    def import_private_study_from_json(self, json_path: Union[str, Path]) -> int:
        path = Path(json_path)
        if not path.is_file() or path.stat().st_size == 0:
            log.warning("No private study descriptor at %s", path)
            return 0
        try:
            with open(path, 'r') as f:
                descriptor = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            log.warning("Can't read private study descriptor %s: %s", path, e)
            return 0
        return self.import_private_study(descriptor)

    def _insert(self, entity: SraEntity, info: Dict[str, Any], extra: Dict[str, Any]) -> int:
        table = ENTITY_TABLES[entity]
        values = {**info, **extra}
        row_id = table.insert(self.conn, values)
        if not values.get(table.private_column):
            table.assign_private_accession(self.conn, row_id)
        return row_id

    def _import(self, descriptor: Dict[str, Any]) -> int:
        study_info = dict(descriptor["info"])
        study_sum = metasum(study_info)
        if ENTITY_TABLES[SraEntity.STUDY].find_id_by_metasum(self.conn, study_sum) is not None:
            raise OperationAborted(f"study with metasum {study_sum} already imported")

        study_id = self._insert(SraEntity.STUDY, study_info, {"metasum": study_sum})
        if descriptor.get("pubmed_id") is not None:
            link_publication(self.conn, study_id, int(descriptor["pubmed_id"]))

        # Symbolic sample names link runs to their sample rows
        sample_ids: Dict[str, int] = {}
        for sample in descriptor.get("samples", []):
            production_name = sample.get("production_name") or descriptor.get("production_name")
            taxon = self.strain_matcher.match_production_name(
                production_name, sample.get("taxon_id", descriptor.get("taxon_id"))
            )
            if taxon is None:
                raise OperationAborted(f"no unique strain for {production_name}")
            sample_ids[sample["sample_name"]] = self._insert(SraEntity.SAMPLE, dict(sample.get("info", {})), {
                "taxon_id": taxon["taxon_id"],
                "strain": taxon["strain"],
                "strain_id": taxon["strain_id"],
            })

        num = 0
        tracked_samples = set()
        for experiment in descriptor.get("experiments", []):
            experiment_id = self._insert(SraEntity.EXPERIMENT, dict(experiment.get("info", {})), {
                "study_id": study_id,
            })
            for run in experiment.get("runs", []):
                sample_name = run.get("sample_name")
                if sample_name not in sample_ids:
                    raise OperationAborted(f"run refers to unknown sample_name {sample_name!r}")
                sample_id = sample_ids[sample_name]
                run_id = self._insert(SraEntity.RUN, dict(run.get("info", {})), {
                    "experiment_id": experiment_id,
                    "sample_id": sample_id,
                })
                for path in run.get("files", []):
                    self.conn.execute(
                        "INSERT INTO private_file (run_id, path) VALUES (?, ?)", (run_id, path)
                    )
                if sample_id in tracked_samples:
                    self.tracks.add_run_to_sample_track(run_id, sample_id)
                else:
                    self.tracks.create_track_for_run(run_id)
                    tracked_samples.add(sample_id)
                num += 1
        log.info("Imported private study %s with %d runs", study_id, num)
        return num
