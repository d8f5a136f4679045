import json

import pytest

from rnaseqdb.db.repositories import SraEntity
from rnaseqdb.service import RNAseqDB

from conftest import PRODUCTION_NAME, TAXON


def _three_sample_study(accessor):
    for i in (1, 2, 3):
        accessor.add_run(f"SRR00000{i}", experiment="SRX000001", study="SRP009679", sample=f"SRS00000{i}")


def test_import_study_creates_one_track_per_sample(rdb, accessor, counter):
    _three_sample_study(accessor)

    assert rdb.import_accession("SRP009679") == 3

    assert counter("run") == 3
    assert counter("experiment") == 1
    assert counter("study") == 1
    assert counter("sample") == 3
    assert counter("track", "status = 'ACTIVE'") == 3
    assert counter("sra_track") == 3
    # Every new track gets a bundle of its own
    assert counter("bundle", "status = 'ACTIVE'") == 3


def test_import_is_idempotent(rdb, accessor, counter):
    _three_sample_study(accessor)
    rdb.import_accession("SRP009679")
    run_calls = [c for c in accessor.calls if c[0] is SraEntity.RUN]

    assert rdb.import_accession("SRP009679") == 0
    assert rdb.import_accession("SRR000002") == 0
    assert counter("run") == 3
    assert counter("track") == 3
    # Known runs are not fetched again
    assert [c for c in accessor.calls if c[0] is SraEntity.RUN] == run_calls


def test_new_run_of_known_sample_joins_its_track(rdb, accessor, counter, conn):
    accessor.add_run("SRR000001", sample="SRS000001")
    accessor.add_run("SRR000002", sample="SRS000001")

    assert rdb.import_accession("SRR000001") == 1
    assert rdb.import_accession("SRR000002") == 1

    assert counter("track") == 1
    track_ids = {r[0] for r in conn.execute("SELECT track_id FROM sra_track").fetchall()}
    assert len(track_ids) == 1


def test_accessor_failure_writes_nothing(rdb, accessor, counter):
    accessor.add_run("SRR000001")
    accessor.failing.add("SRR000001")

    assert rdb.import_accession("SRR000001") == 0
    assert counter("run") == 0
    assert counter("track") == 0


def test_unknown_taxon_leaves_no_partial_rows(rdb, accessor, counter):
    accessor.add_run("SRR000009", study="SRP000009", experiment="SRX000009",
                     sample="SRS000009", taxon_id=9606)

    assert rdb.import_accession("SRR000009") == 0
    for table in ("study", "experiment", "sample", "run", "track", "bundle"):
        assert counter(table) == 0, table


def test_unknown_and_private_accessions_are_skipped(rdb, accessor):
    assert rdb.import_accession("not-an-accession") == 0
    assert rdb.import_accession("VBSRP1") == 0
    assert rdb.import_accession("SRP999999") == 0
    assert accessor.calls == [(SraEntity.STUDY, "SRP999999")]


def test_import_links_publications(rdb, accessor, counter, conn):
    accessor.add_run("SRR000001", pubmed_ids=[22442141])
    accessor.add_run("SRR000002", sample="SRS000002", pubmed_ids=[22442141])

    assert rdb.import_accession("SRP000001") == 2
    assert counter("publication") == 1
    assert counter("study_publication") == 1
    row = conn.execute("SELECT pubmed_id FROM publication").fetchone()
    assert row[0] == 22442141


def test_imported_sample_keeps_metadata(rdb, accessor, conn):
    accessor.add_run("SRR000001", strain="LVPagwg")
    rdb.import_accession("SRR000001")

    sample = conn.execute("SELECT * FROM sample").fetchone()
    assert sample["taxon_id"] == TAXON
    assert sample["strain"] == "LVPagwg"
    assert sample["label"] == "adult"
    assert sample["biosample_acc"] == "SAMN000001"
    strain = conn.execute("SELECT production_name FROM strain WHERE strain_id = ?",
                          (sample["strain_id"],)).fetchone()
    assert strain[0] == PRODUCTION_NAME


def _private_descriptor():
    return {
        "info": {"title": "Private Aedes study", "abstract": "Midguts"},
        "production_name": PRODUCTION_NAME,
        "pubmed_id": 1234,
        "samples": [
            {"sample_name": "gut", "info": {"title": "Midgut", "label": "gut"}},
            {"sample_name": "body", "info": {"title": "Carcass"}},
        ],
        "experiments": [
            {
                "info": {"title": "Paired-end RNA-seq"},
                "runs": [
                    {"sample_name": "gut", "info": {"title": "gut rep1"},
                     "files": ["gut1_R1.fastq.gz", "gut1_R2.fastq.gz"]},
                    {"sample_name": "gut", "info": {"title": "gut rep2"}, "files": ["gut2.fastq.gz"]},
                    {"sample_name": "body", "info": {"title": "body rep1"}, "files": ["body1.fastq.gz"]},
                ],
            }
        ],
    }


def test_import_private_study(rdb, counter, conn):
    assert rdb.import_private_study(_private_descriptor()) == 3

    assert counter("run", "run_private_acc LIKE 'VBSRR%'") == 3
    assert counter("sample", "sample_private_acc LIKE 'VBSRS%'") == 2
    assert conn.execute("SELECT study_private_acc FROM study").fetchone()[0] == "VBSRP1"
    assert counter("private_file") == 4
    assert counter("study_publication") == 1
    # One track per sample; replicate runs share it
    assert counter("track", "status = 'ACTIVE'") == 2
    assert counter("sra_track") == 3


def test_private_study_is_imported_once(rdb, counter):
    assert rdb.import_private_study(_private_descriptor()) == 3
    assert rdb.import_private_study(_private_descriptor()) == 0
    assert counter("study") == 1


def test_private_study_with_unknown_sample_is_rolled_back(rdb, counter):
    descriptor = _private_descriptor()
    descriptor["experiments"][0]["runs"][2]["sample_name"] = "legs"

    assert rdb.import_private_study(descriptor) == 0
    for table in ("study", "sample", "experiment", "run", "private_file", "track"):
        assert counter(table) == 0, table


def test_private_study_with_unknown_species(rdb, counter):
    descriptor = _private_descriptor()
    descriptor["production_name"] = "culex_quinquefasciatus"

    assert rdb.import_private_study(descriptor) == 0
    assert counter("study") == 0


def test_import_private_study_from_json(rdb, tmp_path):
    path = tmp_path / "study.json"
    path.write_text(json.dumps(_private_descriptor()))
    empty = tmp_path / "empty.json"
    empty.write_text("")

    assert rdb.import_private_study_from_json(path) == 3
    assert rdb.import_private_study_from_json(empty) == 0
    assert rdb.import_private_study_from_json(tmp_path / "missing.json") == 0


def test_public_import_needs_an_accessor(conn):
    service = RNAseqDB(conn)
    with pytest.raises(RuntimeError):
        service.import_accession("SRR000001")


def test_any_accessor_error_is_no_data(rdb, accessor, counter, monkeypatch):
    accessor.add_run("SRR000001")

    def timeout(entity, accession):
        raise TimeoutError("transient")

    monkeypatch.setattr(accessor, "resolve_by_accession", timeout)

    assert rdb.import_accession("SRR000001") == 0
    assert rdb.import_accession("SRP000001") == 0
    assert counter("run") == 0


def test_private_study_with_taken_accession(rdb, counter):
    first = _private_descriptor()
    first["info"]["study_private_acc"] = "VBSRP9"
    second = _private_descriptor()
    second["info"].update(study_private_acc="VBSRP9", title="Another title")

    assert rdb.import_private_study(first) == 3
    assert rdb.import_private_study(second) == 0
    assert counter("study") == 1
    assert counter("run") == 3


def test_import_private_study_from_bad_json(rdb, tmp_path, counter):
    path = tmp_path / "broken.json"
    path.write_text("{not json")

    assert rdb.import_private_study_from_json(path) == 0
    assert counter("study") == 0
