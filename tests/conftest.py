from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest
from typer.testing import CliRunner

from rnaseqdb.db import api as db_api
from rnaseqdb.db.repositories import SraEntity
from rnaseqdb.exceptions import AccessorError
from rnaseqdb.service import RNAseqDB
from rnaseqdb.sra.accessor import (
    SraAccessor,
    SraExperiment,
    SraRecord,
    SraRun,
    SraSample,
    SraStudy,
)

TAXON = 7159
PRODUCTION_NAME = "aedes_aegypti_lvpagwg"


class FakeAccessor(SraAccessor):
    """In-memory SRA: records are registered run by run."""

    def __init__(self):
        self.records: Dict[Tuple[SraEntity, str], SraRecord] = {}
        self.failing: Set[str] = set()
        self.calls: List[Tuple[SraEntity, str]] = []

    def add_run(self, run_acc: str, experiment: str = "SRX000001", study: str = "SRP000001",
                sample: str = "SRS000001", taxon_id: int = TAXON, strain: str = "LVPagwg",
                pubmed_ids: Iterable[int] = ()) -> SraRun:
        study_rec = SraStudy(study, title=f"Study {study}", abstract="Abstract", pubmed_ids=list(pubmed_ids))
        run = SraRun(
            run_acc,
            title=f"Run {run_acc}",
            submitter="VectorBase",
            experiment=SraExperiment(experiment, title=f"Experiment {experiment}", study=study_rec),
            sample=SraSample(
                sample,
                title=f"Sample {sample}",
                description="whole body",
                taxon_id=taxon_id,
                attributes=[("strain", strain), ("label", "adult")],
                biosample_acc=f"SAMN{sample[3:]}",
            ),
        )
        self.records[(SraEntity.RUN, run_acc)] = run
        for entity, acc, factory in (
            (SraEntity.STUDY, study, lambda: SraStudy(study)),
            (SraEntity.EXPERIMENT, experiment, lambda: SraExperiment(experiment)),
            (SraEntity.SAMPLE, sample, lambda: SraSample(sample)),
        ):
            record = self.records.setdefault((entity, acc), factory())
            record.run_accessions.append(run_acc)
        return run

    def resolve_by_accession(self, entity: SraEntity, accession: str) -> List[SraRecord]:
        self.calls.append((entity, accession))
        if accession in self.failing:
            raise AccessorError(accession, "service unavailable")
        record: Optional[SraRecord] = self.records.get((entity, accession))
        return [record] if record is not None else []


@pytest.fixture
def cli_runner():
    """Reusable Typer CLI runner."""
    return CliRunner()


@pytest.fixture
def conn(tmp_path):
    connection = db_api.connect(tmp_path / "rnaseqdb.sqlite")
    db_api.init_schema(connection)
    yield connection
    connection.close()


@pytest.fixture
def accessor():
    return FakeAccessor()


@pytest.fixture
def rdb(conn, accessor):
    """Service over a database that knows Aedes aegypti LVPagwg."""
    service = RNAseqDB(conn, accessor)
    service.add_species(TAXON, "Aedes aegypti")
    service.add_strain({
        "taxon_id": TAXON,
        "strain": "LVPagwg",
        "production_name": PRODUCTION_NAME,
        "assembly": "AaegL5",
        "assembly_accession": "GCA_002204515.1",
    })
    return service


def count(conn, table: str, where: str = "1 = 1", params=()) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]


@pytest.fixture
def counter(conn):
    return lambda table, where="1 = 1", params=(): count(conn, table, where, params)
