"""
Reshape projected groups into parent/child documents for the search index.
"""

from __future__ import annotations

from typing import Any, Dict, List

SOLR_CHILDREN = "_childDocuments_"
SEARCH_ROOT = "/vbsearch/details/"

_ACCESSION_FIELDS = (
    ("runs", "run_accessions_ss"),
    ("experiments", "experiment_accessions_ss"),
    ("studies", "study_accessions_ss"),
    ("samples", "sample_accessions_ss"),
)


def _solr_track(group: Dict[str, Any], track: Dict[str, Any]) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "id": track["id"],
        "site": "Expression",
        "bundle_name": "RNA-seq tracks",
        "species": group["species"],
        "label": track["title"],
        "description": track["description"],
        "url": SEARCH_ROOT + group["trackhub_id"],
        "aligner_s": track["aligner"],
    }
    for key, field in _ACCESSION_FIELDS:
        doc[field] = track[key]
        if track.get(f"{key}_urls"):
            doc[f"{field}_urls"] = track[f"{key}_urls"]

    for f in track["files"]:
        if f["type"] == "bigwig":
            doc["bigwig_s"] = f["name"]
            doc["bigwig_s_url"] = f["url"]
        elif f["type"] == "bam":
            doc["bam_s"] = f["name"]
            doc["bam_s_url"] = f["url"]

    doc["keywords_ss"] = [kw for kws in track["keywords"].values() for kw in kws]
    return doc


def bundles_to_solr(groups: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    solr_groups = []
    for group in groups:
        solr_groups.append({
            "id": group["trackhub_id"],
            "label": group["label"],
            "description": group["description"],
            "species": group["species"],
            "strain_s": group["strain"],
            "assembly": group["assembly"],
            "site": "Expression",
            "bundle_name": "RNA-seq track groups",
            "publications_ss": group["publications"],
            "publications_ss_urls": group["publications_urls"],
            "hash": "parentDocument",
            SOLR_CHILDREN: [_solr_track(group, track) for track in group["tracks"]],
        })
    return solr_groups
