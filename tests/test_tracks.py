import pytest

from rnaseqdb.db import api as db_api
from rnaseqdb.db.repositories import ENTITY_TABLES, SraEntity
from rnaseqdb.tracks.results import command_program, expand_file_paths, infer_file_type

from conftest import PRODUCTION_NAME, TAXON


def _status(conn, track_id):
    return conn.execute("SELECT status FROM track WHERE track_id = ?", (track_id,)).fetchone()[0]


def _track_of(rdb, accession):
    track_ids = rdb.tracks.get_tracks_from_sra([accession])
    assert len(track_ids) == 1
    return track_ids[0]


@pytest.fixture
def two_samples(rdb, accessor):
    accessor.add_run("SRR000001", sample="SRS000001")
    accessor.add_run("SRR000002", sample="SRS000002")
    assert rdb.import_accession("SRP000001") == 2
    return rdb


@pytest.fixture
def three_samples(rdb, accessor):
    for i in (1, 2, 3):
        accessor.add_run(f"SRR00000{i}", sample=f"SRS00000{i}")
    assert rdb.import_accession("SRP000001") == 3
    return rdb


def test_merge_two_sample_tracks(two_samples, conn, counter):
    rdb = two_samples
    old = [_track_of(rdb, "SRS000001"), _track_of(rdb, "SRS000002")]

    new_track = rdb.merge_tracks_by_sra_ids(["SRS000001", "SRS000002"])

    assert new_track is not None and new_track not in old
    assert [_status(conn, t) for t in old] == ["MERGED", "MERGED"]
    assert _status(conn, new_track) == "ACTIVE"
    runs = conn.execute(
        "SELECT r.run_sra_acc FROM sra_track s JOIN run r ON r.run_id = s.run_id "
        "WHERE s.track_id = ? ORDER BY r.run_sra_acc",
        (new_track,),
    ).fetchall()
    assert [r[0] for r in runs] == ["SRR000001", "SRR000002"]
    assert counter("track", "status = 'ACTIVE'") == 1
    assert rdb.tracks.get_track_level(new_track) == ("study", "SRP000001")

    # The old bundles are retired and the new track has its own
    assert counter("bundle", "status = 'ACTIVE'") == 1
    assert rdb.bundles.get_bundle_id_from_track_id(new_track)
    for track_id in old:
        assert rdb.bundles.get_bundle_id_from_track_id(track_id) == []


def test_merge_single_track_is_a_noop(two_samples, counter):
    assert two_samples.merge_tracks_by_sra_ids(["SRS000001"]) is None
    assert counter("track") == 2
    assert counter("track", "status = 'ACTIVE'") == 2
    assert counter("bundle", "status = 'ACTIVE'") == 2


def test_merge_with_unknown_accession_is_a_noop(two_samples, counter):
    assert two_samples.merge_tracks_by_sra_ids(["SRS000001", "SRS999999"]) is None
    assert two_samples.merge_tracks_by_sra_ids(["SRS000001", "garbage"]) is None
    assert counter("track", "status = 'ACTIVE'") == 2


def test_merged_tracks_can_not_be_merged_again(two_samples, counter):
    rdb = two_samples
    rdb.merge_tracks_by_sra_ids(["SRS000001", "SRS000002"])
    # Only the new ACTIVE track holds those runs now
    assert rdb.merge_tracks_by_sra_ids(["SRS000001", "SRS000002"]) is None
    assert counter("track") == 3


def test_inactivate_tracks(two_samples, conn, counter):
    rdb = two_samples
    track_id = _track_of(rdb, "SRS000001")
    bundle_ids = rdb.bundles.get_bundle_id_from_track_id(track_id)

    assert rdb.inactivate_tracks_by_sra_ids(["SRS000001"]) is True

    assert _status(conn, track_id) == "RETIRED"
    status = conn.execute("SELECT status FROM bundle WHERE bundle_id = ?", (bundle_ids[0],)).fetchone()[0]
    assert status == "RETIRED"
    assert counter("track", "status = 'ACTIVE'") == 1


def test_inactivate_needs_one_track_per_accession(two_samples, counter):
    rdb = two_samples
    # One study accession, but two tracks
    assert rdb.inactivate_tracks_by_sra_ids(["SRP000001"]) is False
    assert rdb.inactivate_tracks_by_sra_ids(["SRS000001", "SRS999999"]) is False
    assert counter("track", "status = 'ACTIVE'") == 2


def test_retired_tracks_stay_retired(two_samples, conn):
    rdb = two_samples
    track_id = _track_of(rdb, "SRS000001")
    rdb.inactivate_tracks_by_sra_ids(["SRS000001"])

    assert rdb.tracks.inactivate_tracks([track_id], status="MERGED") == 0
    assert _status(conn, track_id) == "RETIRED"
    with pytest.raises(ValueError):
        rdb.tracks.inactivate_tracks([track_id], status="ACTIVE")


def test_merge_identity_escalates_with_coverage(three_samples):
    rdb = three_samples
    assert rdb.regenerate_merge_identities() == 3
    assert rdb.tracks.get_track_level(_track_of(rdb, "SRS000001")) == ("sample", "SRS000001")

    partial = rdb.merge_tracks_by_sra_ids(["SRS000002", "SRS000001"])
    assert rdb.tracks.get_track_level(partial) == ("taxon", "SRS000001_SRS000002")

    whole = rdb.merge_tracks_by_sra_ids(["SRS000001", "SRS000003"])
    assert rdb.tracks.get_track_level(whole) == ("study", "SRP000001")
    assert rdb.tracks.get_track_id_from_merge_id("SRP000001") == whole
    assert rdb.tracks.get_track_id_from_merge_id("SRS000001_SRS000002") is None


def test_merge_identity_across_studies(rdb, accessor):
    accessor.add_run("SRR000001", study="SRP000002", experiment="SRX000002", sample="SRS000001")
    accessor.add_run("SRR000002", study="SRP000001", experiment="SRX000001", sample="SRS000002")
    rdb.import_accession("SRR000001")
    rdb.import_accession("SRR000002")

    merged = rdb.merge_tracks_by_sra_ids(["SRR000001", "SRR000002"])

    assert rdb.tracks.get_track_level(merged) == ("taxon", "SRP000001_SRP000002")


def test_regenerate_merge_identities_is_stable(three_samples, conn):
    rdb = three_samples
    rdb.regenerate_merge_identities()
    before = conn.execute("SELECT track_id, merge_level, merge_id FROM track ORDER BY track_id").fetchall()

    assert rdb.regenerate_merge_identities() == 0
    assert rdb.regenerate_merge_identities(force=True) == 3
    after = conn.execute("SELECT track_id, merge_level, merge_id FROM track ORDER BY track_id").fetchall()
    assert [tuple(r) for r in after] == [tuple(r) for r in before]


def test_merge_id_is_never_shared_by_active_tracks(two_samples, conn):
    rdb = two_samples
    t1, t2 = _track_of(rdb, "SRS000001"), _track_of(rdb, "SRS000002")
    conn.execute("UPDATE track SET merge_level = 'sample', merge_id = 'SRS000002' WHERE track_id = ?", (t1,))

    assert rdb.regenerate_merge_identities() == 1

    assert rdb.tracks.get_track_level(t2) == (None, None)
    assert rdb.tracks.get_track_id_from_merge_id("SRS000002") == t1


def test_merge_sample_tracks(rdb, accessor, conn):
    accessor.add_run("SRR000001", sample="SRS000001")
    rdb.import_accession("SRR000001")
    sample_id = conn.execute("SELECT sample_id FROM sample").fetchone()[0]
    experiment_id = conn.execute("SELECT experiment_id FROM experiment").fetchone()[0]
    # A replicate run that got a track of its own
    run_id = ENTITY_TABLES[SraEntity.RUN].insert(conn, {
        "run_sra_acc": "SRR000002", "experiment_id": experiment_id, "sample_id": sample_id,
    })
    assert rdb.create_track_for_run(run_id) is not None
    assert rdb.create_track_for_run(run_id) is None

    merged = rdb.tracks.merge_sample_tracks("SRP000001")

    assert len(merged) == 1
    assert rdb.tracks.get_tracks_from_sra(["SRR000001", "SRR000002"]) == merged
    assert rdb.tracks.get_track_level(merged[0]) == ("study", "SRP000001")


def test_add_track_results(two_samples, conn, counter):
    rdb = two_samples
    db_api.add_analysis_description(conn, "STAR", "aligner")
    track_id = _track_of(rdb, "SRS000001")

    ok = rdb.add_track_results(
        track_id,
        ["/usr/bin/STAR --runMode alignReads --readFilesIn SRR000001.fastq.gz",
         {"command": "bamCoverage -b run1.bam -o run1.bw", "version": "3.1"}],
        ["/data/out/run1.bam"],
    )

    assert ok is True
    files = conn.execute(
        "SELECT path, type FROM file WHERE track_id = ? ORDER BY path", (track_id,)
    ).fetchall()
    assert [tuple(f) for f in files] == [("run1.bam", "bam"), ("run1.bam.bai", "bai")]
    assert counter("file", "type = 'bigwig'") == 0
    analyses = conn.execute(
        "SELECT analysis_description_id, version FROM analysis WHERE track_id = ? ORDER BY analysis_id",
        (track_id,),
    ).fetchall()
    assert analyses[0]["analysis_description_id"] is not None
    assert analyses[1]["analysis_description_id"] is None
    assert analyses[1]["version"] == "3.1"


def test_add_track_results_only_once(two_samples, counter):
    rdb = two_samples
    track_id = _track_of(rdb, "SRS000001")

    assert rdb.add_track_results(track_id, ["STAR"], ["run1.bw"]) is True
    assert rdb.add_track_results(track_id, [], ["run2.bw"]) is False
    assert rdb.add_track_results(track_id, ["hisat2"], []) is False
    assert rdb.add_track_results(9999, ["STAR"], ["run1.bw"]) is False
    assert counter("file") == 1
    assert counter("analysis") == 1


def test_get_new_runs_tracks(two_samples):
    rdb = two_samples
    done = _track_of(rdb, "SRS000001")
    todo = _track_of(rdb, "SRS000002")
    rdb.add_track_results(done, ["STAR"], ["run1.bw"])

    new_tracks = rdb.tracks.get_new_runs_tracks()

    assert list(new_tracks) == [PRODUCTION_NAME]
    assert list(new_tracks[PRODUCTION_NAME]) == [todo]
    entry = new_tracks[PRODUCTION_NAME][todo]
    assert entry["run_accs"] == ["SRR000002"]
    assert entry["taxon_id"] == TAXON
    assert entry["fastqs"] == []
    assert rdb.tracks.get_new_runs_tracks("culex_quinquefasciatus") == {}


def test_get_new_runs_tracks_lists_private_fastqs(rdb):
    rdb.import_private_study({
        "info": {"title": "Private"},
        "production_name": PRODUCTION_NAME,
        "samples": [{"sample_name": "s1"}],
        "experiments": [{"runs": [{"sample_name": "s1", "files": ["a_1.fq.gz", "a_2.fq.gz"]}]}],
    })

    (entry,) = rdb.tracks.get_new_runs_tracks(PRODUCTION_NAME)[PRODUCTION_NAME].values()
    assert entry["run_accs"] == []
    assert entry["fastqs"] == ["a_1.fq.gz", "a_2.fq.gz"]


@pytest.mark.parametrize(
    "name, file_type",
    [
        ("a.bw", "bigwig"),
        ("a.BAM", "bam"),
        ("a.bam.bai", "bai"),
        ("a.cram", "cram"),
        ("a_1.fastq.gz", "fastq"),
        ("a.txt", None),
    ],
)
def test_infer_file_type(name, file_type):
    assert infer_file_type(name) == file_type


def test_expand_file_paths_adds_bam_index_once():
    rows = expand_file_paths(["/x/run1.bam", "/x/run1.bam.bai", "notes.txt", "run1.bw"])
    assert rows == [("run1.bam", "bam"), ("run1.bam.bai", "bai"), ("run1.bw", "bigwig")]


def test_command_program():
    assert command_program("/opt/hisat2/hisat2 -x idx -U r.fq") == "hisat2"
    assert command_program("") is None
