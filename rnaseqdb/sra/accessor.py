"""
SRA metadata accessor interface and its ENA implementation.

The importer only depends on `SraAccessor`; tests substitute an in-memory
accessor. `EnaAccessor` answers from the ENA browser (XML records) and
portal (run listings) REST APIs.
"""

from __future__ import annotations

import abc
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

import requests

from rnaseqdb.db.repositories import SraEntity
from rnaseqdb.exceptions import AccessorError
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)

ENA_BASE_URL = "https://www.ebi.ac.uk/ena"
ENA_TIMEOUT = 30


@dataclass(slots=True)
class SraStudy:
    accession: str
    title: Optional[str] = None
    abstract: Optional[str] = None
    pubmed_ids: List[int] = field(default_factory=list)
    run_accessions: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SraExperiment:
    accession: str
    title: Optional[str] = None
    study: Optional[SraStudy] = None
    run_accessions: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SraSample:
    accession: str
    title: Optional[str] = None
    description: Optional[str] = None
    taxon_id: Optional[int] = None
    # (tag, value) pairs as submitted
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    biosample_acc: Optional[str] = None
    run_accessions: List[str] = field(default_factory=list)

    @property
    def strain(self) -> str:
        values = [v for t, v in self.attributes if t.lower() == "strain" and v != "missing"]
        return ",".join(values)

    @property
    def label(self) -> str:
        return ",".join(v for t, v in self.attributes if t.lower() == "label")


@dataclass(slots=True)
class SraRun:
    accession: str
    title: Optional[str] = None
    submitter: Optional[str] = None
    experiment: Optional[SraExperiment] = None
    sample: Optional[SraSample] = None

    @property
    def run_accessions(self) -> List[str]:
        return [self.accession]


SraRecord = Union[SraStudy, SraExperiment, SraRun, SraSample]


class SraAccessor(abc.ABC):
    """Abstract source of SRA metadata."""

    @abc.abstractmethod
    def resolve_by_accession(self, entity: SraEntity, accession: str) -> List[SraRecord]:
        """
        Return the records for one accession (usually a single element; empty
        when the accession is unknown).

        Runs are returned fully populated (experiment with its study, and
        sample). Studies, experiments and samples carry at least their
        `run_accessions`.

        Raises:
            AccessorError: on transport or payload errors.
        """
        raise NotImplementedError


def _text(node: Optional[ET.Element], path: str) -> Optional[str]:
    if node is None:
        return None
    found = node.find(path)
    if found is None or found.text is None:
        return None
    return found.text.strip()


class EnaAccessor(SraAccessor):
    """SraAccessor backed by the ENA REST APIs."""

    def __init__(self, base_url: str = ENA_BASE_URL, timeout: float = ENA_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self._xml_cache: Dict[str, ET.Element] = {}

    # ---- Transport ----
    def _get(self, accession: str, url: str, params: Optional[Dict[str, str]] = None) -> requests.Response:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise AccessorError(accession, f"request failed: {e}") from e
        if response.status_code == 404:
            return response
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise AccessorError(accession, f"HTTP {response.status_code}") from e
        return response

    def _xml(self, accession: str) -> Optional[ET.Element]:
        if accession in self._xml_cache:
            return self._xml_cache[accession]
        response = self._get(accession, f"{self.base_url}/browser/api/xml/{accession}")
        if response.status_code == 404 or not response.text.strip():
            return None
        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as e:
            raise AccessorError(accession, f"invalid XML: {e}") from e
        self._xml_cache[accession] = root
        return root

    def _run_accessions(self, accession: str) -> List[str]:
        response = self._get(
            accession,
            f"{self.base_url}/portal/api/filereport",
            params={"accession": accession, "result": "read_run",
                    "fields": "run_accession", "format": "json"},
        )
        if response.status_code == 404 or not response.text.strip():
            return []
        try:
            rows = response.json()
        except ValueError as e:
            raise AccessorError(accession, f"invalid JSON: {e}") from e
        return sorted({row["run_accession"] for row in rows if row.get("run_accession")})

    # ---- Record builders ----
    def _study(self, accession: str, with_runs: bool = False) -> Optional[SraStudy]:
        root = self._xml(accession)
        node = root.find(".//STUDY") if root is not None else None
        if node is None:
            return None
        pubmed_ids = []
        for link in node.iter("XREF_LINK"):
            if (_text(link, "DB") or "").lower() == "pubmed":
                pubmed_id = _text(link, "ID")
                if pubmed_id and pubmed_id.isdigit():
                    pubmed_ids.append(int(pubmed_id))
        return SraStudy(
            accession=node.get("accession", accession),
            title=_text(node, ".//STUDY_TITLE"),
            abstract=_text(node, ".//STUDY_ABSTRACT"),
            pubmed_ids=pubmed_ids,
            run_accessions=self._run_accessions(accession) if with_runs else [],
        )

    def _experiment_node(self, accession: str) -> Optional[ET.Element]:
        root = self._xml(accession)
        return root.find(".//EXPERIMENT") if root is not None else None

    def _experiment(self, accession: str, with_runs: bool = False) -> Optional[SraExperiment]:
        node = self._experiment_node(accession)
        if node is None:
            return None
        study_ref = node.find(".//STUDY_REF")
        study = None
        if study_ref is not None and study_ref.get("accession"):
            study = self._study(study_ref.get("accession"))
        return SraExperiment(
            accession=node.get("accession", accession),
            title=_text(node, "TITLE"),
            study=study,
            run_accessions=self._run_accessions(accession) if with_runs else [],
        )

    def _sample(self, accession: str, with_runs: bool = False) -> Optional[SraSample]:
        root = self._xml(accession)
        node = root.find(".//SAMPLE") if root is not None else None
        if node is None:
            return None
        biosample = None
        for ext in node.iter("EXTERNAL_ID"):
            if ext.get("namespace") == "BioSample":
                biosample = (ext.text or "").strip() or None
                break
        taxon = _text(node, ".//TAXON_ID")
        attributes = [
            (_text(attr, "TAG") or "", _text(attr, "VALUE") or "")
            for attr in node.iter("SAMPLE_ATTRIBUTE")
        ]
        return SraSample(
            accession=node.get("accession", accession),
            title=_text(node, "TITLE"),
            description=_text(node, "DESCRIPTION"),
            taxon_id=int(taxon) if taxon and taxon.isdigit() else None,
            attributes=attributes,
            biosample_acc=biosample,
            run_accessions=self._run_accessions(accession) if with_runs else [],
        )

    def _run(self, accession: str) -> Optional[SraRun]:
        root = self._xml(accession)
        node = root.find(".//RUN") if root is not None else None
        if node is None:
            return None
        submitter = None
        submitter_id = node.find(".//IDENTIFIERS/SUBMITTER_ID")
        if submitter_id is not None:
            submitter = submitter_id.get("namespace")

        exp_ref = node.find(".//EXPERIMENT_REF")
        if exp_ref is None or not exp_ref.get("accession"):
            raise AccessorError(accession, "run without experiment reference")
        exp_acc = exp_ref.get("accession")
        experiment = self._experiment(exp_acc)
        if experiment is None:
            raise AccessorError(accession, f"experiment {exp_acc} not found")

        sample_ref = self._experiment_node(exp_acc).find(".//SAMPLE_DESCRIPTOR")
        sample = None
        if sample_ref is not None and sample_ref.get("accession"):
            sample = self._sample(sample_ref.get("accession"))
        return SraRun(
            accession=node.get("accession", accession),
            title=_text(node, "TITLE"),
            submitter=submitter,
            experiment=experiment,
            sample=sample,
        )

    def resolve_by_accession(self, entity: SraEntity, accession: str) -> List[SraRecord]:
        log.debug("ENA lookup for %s %s", entity.value, accession)
        # Cached XML only lives for one lookup
        self._xml_cache.clear()
        builders = {
            SraEntity.STUDY: lambda acc: self._study(acc, with_runs=True),
            SraEntity.EXPERIMENT: lambda acc: self._experiment(acc, with_runs=True),
            SraEntity.SAMPLE: lambda acc: self._sample(acc, with_runs=True),
            SraEntity.RUN: self._run,
        }
        record = builders[entity](accession)
        return [record] if record is not None else []
