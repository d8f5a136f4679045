"""
Export-ready projection of the ACTIVE bundle/track graph.

One group per ACTIVE bundle with at least one ACTIVE track. The group's
species data come from a single representative: the bundle's first ACTIVE
track by track_id, and that track's first run by run_id.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any, Dict, List, Optional

from rnaseqdb.tracks.merge_identity import merge_text
from rnaseqdb.utils.logging import get_logger
from rnaseqdb.vocabulary import KeywordLookup

log = get_logger(__name__)

GROUP_PREFIX = "VBRNAseq_group_"
TRACK_PREFIX = "VBRNAseq_track_"
PUBMED_ROOT = "http://europepmc.org/abstract/MED/"
SRA_URL_ROOT = "http://www.ebi.ac.uk/ena/data/view/"
UNDEFINED_ALIGNER = "(undefined aligner)"

HTML_TAG_PATTERN = re.compile(r"<[^>]+>")
ACCESSION_LINK_PATTERN = re.compile(r"(.R[PXRS]\d{6,8})")
TRACKHUB_ID_PATTERN = re.compile(r"^([^_]+)_.+_([^-]+)$")


def strip_html(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return HTML_TAG_PATTERN.sub("", text).strip()


def track_title(track: sqlite3.Row, merge: str) -> str:
    """Manual title, else auto title, else derived from the merge text."""
    title = track["title_manual"] or track["title_auto"]
    if title:
        return title
    if "_" in merge:
        return merge.split("_", 1)[0] + "-..."
    return merge


def sra_description(merge: str) -> str:
    """'RNA-seq data from X' with every accession linked to its ENA page."""
    linked = ACCESSION_LINK_PATTERN.sub(rf'<a href="{SRA_URL_ROOT}\1">\1</a>', merge)
    if "_" in merge:
        return "Merged RNA-seq data from: " + linked.replace("_", ", ")
    return "RNA-seq data from " + linked


def determine_aligner(conn: sqlite3.Connection, track_id: int) -> str:
    """First aligner analysis of the track by analysis_id."""
    row = conn.execute(
        """
        SELECT ad.name, a.version FROM analysis a
        JOIN analysis_description ad ON ad.analysis_description_id = a.analysis_description_id
        WHERE a.track_id = ? AND ad.type = 'aligner'
        ORDER BY a.analysis_id LIMIT 1
        """,
        (track_id,),
    ).fetchone()
    if row is None:
        return UNDEFINED_ALIGNER
    return f"{row['name']} {row['version'] or ''}".strip()


def publication_abbrev(pub: sqlite3.Row) -> str:
    """Short citation, e.g. 'Smith et al. (2015)'."""
    authors = [a.strip() for a in (pub["authors"] or "").split(",") if a.strip()]
    first = authors[0].split()[0] if authors else f"PMID:{pub['pubmed_id']}"
    name = f"{first} et al." if len(authors) > 1 else first
    return f"{name} ({pub['year']})" if pub["year"] else name


def _representative_strain(conn: sqlite3.Connection, track_id: int) -> Optional[sqlite3.Row]:
    return conn.execute(
        """
        SELECT tx.* FROM sra_track s
        JOIN run r ON r.run_id = s.run_id
        JOIN sample sa ON sa.sample_id = r.sample_id
        JOIN taxonomy tx ON tx.strain_id = sa.strain_id
        WHERE s.track_id = ?
        ORDER BY r.run_id LIMIT 1
        """,
        (track_id,),
    ).fetchone()


def _track_publications(conn: sqlite3.Connection, track_id: int) -> List[sqlite3.Row]:
    return conn.execute(
        """
        SELECT DISTINCT p.* FROM sra_track s
        JOIN run r ON r.run_id = s.run_id
        JOIN experiment e ON e.experiment_id = r.experiment_id
        JOIN study_publication sp ON sp.study_id = e.study_id
        JOIN publication p ON p.publication_id = sp.publication_id
        WHERE s.track_id = ?
        ORDER BY p.pubmed_id
        """,
        (track_id,),
    ).fetchall()


def _project_track(conn: sqlite3.Connection, keywords: KeywordLookup, track: sqlite3.Row,
                   production_name: str, files_dir: Optional[str]) -> Dict[str, Any]:
    track_id = track["track_id"]
    merge = merge_text(conn, track)
    title = track_title(track, merge)

    description_parts = []
    text = strip_html(track["text_manual"] or track["text_auto"])
    if text:
        description_parts.append(text)
    else:
        log.warning("Track '%s%s' with title '%s' has no description", TRACK_PREFIX, track_id, title)
    description_parts.append(sra_description(merge))

    files = []
    for f in conn.execute(
        "SELECT path, type FROM file WHERE track_id = ? ORDER BY file_id", (track_id,)
    ).fetchall():
        url_path = ["bam" if f["type"] == "bai" else f["type"], production_name, f["path"]]
        if files_dir:
            url_path.insert(0, files_dir.rstrip("/"))
        files.append({"name": f["path"], "url": "/".join(url_path), "type": f["type"]})

    accs = conn.execute(
        """
        SELECT run_sra_acc, run_private_acc, experiment_sra_acc, experiment_private_acc,
               study_sra_acc, study_private_acc, sample_sra_acc, sample_private_acc
        FROM sra_to_track WHERE track_id = ?
        """,
        (track_id,),
    ).fetchall()
    runs = sorted({r["run_sra_acc"] or r["run_private_acc"] for r in accs})
    experiments = sorted({r["experiment_sra_acc"] or r["experiment_private_acc"] for r in accs})
    studies = sorted({r["study_sra_acc"] or r["study_private_acc"] for r in accs})
    samples = sorted({r["sample_sra_acc"] or r["sample_private_acc"] for r in accs})
    private = any(r["run_sra_acc"] is None for r in accs)

    data: Dict[str, Any] = {
        "id": f"{TRACK_PREFIX}{track_id}",
        "title": title,
        "description": "<br>".join(description_parts),
        "merge_text": merge,
        "files": files,
        "aligner": determine_aligner(conn, track_id),
        "runs": runs,
        "experiments": experiments,
        "studies": studies,
        "samples": samples,
        "keywords": keywords.get_keywords_for_track(track_id),
    }
    if not private:
        data["runs_urls"] = [SRA_URL_ROOT + acc for acc in runs]
        data["experiments_urls"] = [SRA_URL_ROOT + acc for acc in experiments]
        data["studies_urls"] = [SRA_URL_ROOT + acc for acc in studies]
        data["samples_urls"] = [SRA_URL_ROOT + acc for acc in samples]
    return data


def _project_bundle(conn: sqlite3.Connection, keywords: KeywordLookup, bundle: sqlite3.Row,
                    opt: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    bundle_id = bundle["bundle_id"]
    tracks = conn.execute(
        """
        SELECT t.* FROM bundle_track bt
        JOIN track t ON t.track_id = bt.track_id
        WHERE bt.bundle_id = ? AND t.status = 'ACTIVE'
        ORDER BY t.track_id
        """,
        (bundle_id,),
    ).fetchall()
    if not tracks:
        log.debug("Bundle %s has no active track: skipped", bundle_id)
        return None

    strain = _representative_strain(conn, tracks[0]["track_id"])
    if strain is None:
        log.warning("Bundle %s: no species found for track %s", bundle_id, tracks[0]["track_id"])
        return None
    if opt.get("species") and strain["production_name"] != opt["species"]:
        return None

    group: Dict[str, Any] = {
        "id": f"{GROUP_PREFIX}{bundle_id}",
        "label": bundle["title_manual"] or bundle["title_auto"],
        "description": bundle["text_manual"] or bundle["text_auto"],
        "species": strain["binomial_name"],
        "strain": strain["strain"],
        "assembly": strain["assembly"],
        "assembly_accession": strain["assembly_accession"],
        "production_name": strain["production_name"],
    }
    if not group["label"]:
        log.warning("Bundle %s has no label (no auto or manual title). Using the id as label.", group["id"])
        group["label"] = group["id"]
    if not group["description"]:
        log.warning("Bundle %s has no description.", group["id"])

    group["trackhub_id"] = group["id"]
    if len(tracks) == 1:
        simplified = TRACKHUB_ID_PATTERN.sub(r"\1-\2", merge_text(conn, tracks[0]))
        group["trackhub_id"] = GROUP_PREFIX + simplified

    publications: Dict[int, sqlite3.Row] = {}
    projected = []
    for track in tracks:
        projected.append(_project_track(conn, keywords, track, strain["production_name"], opt.get("files_dir")))
        for pub in _track_publications(conn, track["track_id"]):
            publications[pub["pubmed_id"]] = pub
    group["tracks"] = sorted(projected, key=lambda t: t["title"])

    pubs = [publications[k] for k in sorted(publications)]
    group["publications"] = [
        f"{p['title'] or ''}, {p['authors'] or ''} ({p['year'] or ''})" for p in pubs
    ]
    group["publications_urls"] = [f"{PUBMED_ROOT}{p['pubmed_id']}" for p in pubs]
    group["publications_pubmeds"] = [str(p["pubmed_id"]) for p in pubs]
    group["publications_abbrevs"] = [publication_abbrev(p) for p in pubs]
    return group


def project_bundles(conn: sqlite3.Connection, keywords: KeywordLookup,
                    opt: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Build the list of groups of tracks.

    Args:
        opt: 'species' (production name filter) and 'files_dir' (prefix of
            file URLs), both optional.

    Returns:
        Groups sorted by species, each with its tracks sorted by title.
    """
    bundles = conn.execute(
        "SELECT * FROM bundle WHERE status = 'ACTIVE' ORDER BY bundle_id"
    ).fetchall()
    groups = []
    for bundle in bundles:
        group = _project_bundle(conn, keywords, bundle, opt)
        if group is not None:
            groups.append(group)
    # Stable sort keeps bundle_id order within a species
    groups.sort(key=lambda g: g["species"] or "")
    log.debug("%d groups projected", len(groups))
    return groups
