import logging
from unittest import mock

import pytest
import requests

from rnaseqdb.db.repositories import SraEntity
from rnaseqdb.exceptions import AccessorError
from rnaseqdb.sra.accessor import EnaAccessor, SraRun, SraStudy
from rnaseqdb.utils.config import DEFAULT_CONFIG, load_config, resolve
from rnaseqdb.utils.hashing import metasum
from rnaseqdb.utils.logging import get_logger, setup_logger


def test_load_config_reads_yaml(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        "db: /data/rnaseq.sqlite\n"
        "export:\n"
        "  email: help@example.org\n"
    )

    data = load_config(cfg_path)
    assert data["db"] == "/data/rnaseq.sqlite"
    assert data["export"]["email"] == "help@example.org"
    # Defaults survive a partial section
    assert data["export"]["hub_root"] == DEFAULT_CONFIG["export"]["hub_root"]
    assert data["ena"]["timeout"] == 30


def test_load_config_rejects_non_mapping(tmp_path):
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(cfg_path)


def test_resolve_prefers_override():
    cfg = load_config(None)
    assert resolve(cfg, "ena.base_url") == "https://www.ebi.ac.uk/ena"
    assert resolve(cfg, "ena.base_url", "http://mirror") == "http://mirror"
    assert resolve(cfg, "db.nothing") is None
    assert resolve(cfg, "missing") is None


def test_metasum_ignores_key_order():
    assert metasum({"title": "A", "abstract": "B"}) == metasum({"abstract": "B", "title": "A"})
    assert metasum({"title": "A"}) != metasum({"title": "B"})
    assert len(metasum({})) == 32


def test_setup_logger_creates_file(tmp_path):
    log_path = tmp_path / "rnaseqdb.log"
    logger = setup_logger(logfile=log_path, verbose=True)
    child = get_logger("rnaseqdb.tests")

    child.debug("debug message")
    child.info("info message")

    for handler in logger.handlers:
        flush = getattr(handler, "flush", None)
        if callable(flush):
            flush()

    assert log_path.is_file()
    contents = log_path.read_text()
    assert "info message" in contents
    assert "debug message" in contents
    assert logging.getLogger("urllib3").level == logging.WARNING


RUN_XML = """<RUN_SET><RUN accession="SRR000001">
  <IDENTIFIERS><SUBMITTER_ID namespace="VectorBase">run1</SUBMITTER_ID></IDENTIFIERS>
  <TITLE>Adult female run</TITLE>
  <EXPERIMENT_REF accession="SRX000001"/>
</RUN></RUN_SET>"""

EXPERIMENT_XML = """<EXPERIMENT_SET><EXPERIMENT accession="SRX000001">
  <TITLE>Illumina RNA-seq</TITLE>
  <STUDY_REF accession="SRP000001"/>
  <DESIGN><SAMPLE_DESCRIPTOR accession="SRS000001"/></DESIGN>
</EXPERIMENT></EXPERIMENT_SET>"""

STUDY_XML = """<STUDY_SET><STUDY accession="SRP000001">
  <DESCRIPTOR><STUDY_TITLE>Aedes transcriptome</STUDY_TITLE><STUDY_ABSTRACT>Tissues</STUDY_ABSTRACT></DESCRIPTOR>
  <STUDY_LINKS><STUDY_LINK><XREF_LINK><DB>PUBMED</DB><ID>22442141</ID></XREF_LINK></STUDY_LINK></STUDY_LINKS>
</STUDY></STUDY_SET>"""

SAMPLE_XML = """<SAMPLE_SET><SAMPLE accession="SRS000001">
  <IDENTIFIERS><EXTERNAL_ID namespace="BioSample">SAMN000001</EXTERNAL_ID></IDENTIFIERS>
  <TITLE>Adult females</TITLE>
  <SAMPLE_NAME><TAXON_ID>7159</TAXON_ID></SAMPLE_NAME>
  <SAMPLE_ATTRIBUTES>
    <SAMPLE_ATTRIBUTE><TAG>strain</TAG><VALUE>LVPagwg</VALUE></SAMPLE_ATTRIBUTE>
    <SAMPLE_ATTRIBUTE><TAG>strain</TAG><VALUE>missing</VALUE></SAMPLE_ATTRIBUTE>
  </SAMPLE_ATTRIBUTES>
</SAMPLE></SAMPLE_SET>"""

PAGES = {
    "SRR000001": RUN_XML,
    "SRX000001": EXPERIMENT_XML,
    "SRP000001": STUDY_XML,
    "SRS000001": SAMPLE_XML,
}


def _response(status_code=200, text="", rows=None):
    response = mock.Mock(status_code=status_code, text=text)
    response.json.return_value = rows or []
    if status_code >= 400 and status_code != 404:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status_code} error")
    return response


def _fake_get(url, params=None, timeout=None):
    if url.endswith("/portal/api/filereport"):
        return _response(text="[...]", rows=[{"run_accession": "SRR000002"}, {"run_accession": "SRR000001"}])
    accession = url.rsplit("/", 1)[-1]
    if accession in PAGES:
        return _response(text=PAGES[accession])
    return _response(status_code=404)


def _accessor(get=_fake_get):
    session = mock.Mock(spec=requests.Session)
    session.get.side_effect = get
    return EnaAccessor(base_url="https://ena.test/", timeout=5, session=session), session


def test_ena_accessor_resolves_run():
    accessor, session = _accessor()

    (run,) = accessor.resolve_by_accession(SraEntity.RUN, "SRR000001")

    assert isinstance(run, SraRun)
    assert run.submitter == "VectorBase"
    assert run.experiment.accession == "SRX000001"
    assert run.experiment.study.pubmed_ids == [22442141]
    assert run.experiment.study.title == "Aedes transcriptome"
    assert run.sample.taxon_id == 7159
    assert run.sample.strain == "LVPagwg"
    assert run.sample.biosample_acc == "SAMN000001"
    session.get.assert_any_call("https://ena.test/browser/api/xml/SRR000001", params=None, timeout=5)


def test_ena_accessor_lists_study_runs():
    accessor, _ = _accessor()

    (study,) = accessor.resolve_by_accession(SraEntity.STUDY, "SRP000001")

    assert isinstance(study, SraStudy)
    assert study.run_accessions == ["SRR000001", "SRR000002"]


def test_ena_accessor_unknown_accession():
    accessor, _ = _accessor()
    assert accessor.resolve_by_accession(SraEntity.SAMPLE, "SRS999999") == []


def test_ena_accessor_errors():
    accessor, _ = _accessor(lambda url, params=None, timeout=None: _response(status_code=500))
    with pytest.raises(AccessorError) as excinfo:
        accessor.resolve_by_accession(SraEntity.RUN, "SRR000001")
    assert excinfo.value.accession == "SRR000001"

    def _down(url, params=None, timeout=None):
        raise requests.ConnectionError("no route to host")

    accessor, _ = _accessor(_down)
    with pytest.raises(AccessorError):
        accessor.resolve_by_accession(SraEntity.STUDY, "SRP000001")

    accessor, _ = _accessor(lambda url, params=None, timeout=None: _response(text="<RUN_SET>"))
    with pytest.raises(AccessorError):
        accessor.resolve_by_accession(SraEntity.RUN, "SRR000001")


def test_ena_accessor_cache_lasts_one_lookup():
    accessor, session = _accessor()
    xml_url = "https://ena.test/browser/api/xml/SRP000001"

    accessor.resolve_by_accession(SraEntity.RUN, "SRR000001")
    accessor.resolve_by_accession(SraEntity.STUDY, "SRP000001")

    xml_calls = [c for c in session.get.call_args_list if c.args[0] == xml_url]
    assert len(xml_calls) == 2
    assert set(accessor._xml_cache) == {"SRP000001"}
