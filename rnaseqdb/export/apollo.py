"""
WebApollo metatracks: one record per bigwig/bam/cram file of the projected
groups, with the metadata block WebApollo displays.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List

from rnaseqdb.bundles.projection import HTML_TAG_PATTERN
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)

ALLOWED_TYPE_CATEGORY = {
    "bigwig": "RNAseq",
    "bam": "BAM",
    "cram": "CRAM",
}

SRA_SUFFIX_PATTERN = re.compile(r"(<br>.*)?( ?Merged )?RNA-seq data from.+$")


def _study_accession_type(study: str) -> tuple[str, str | None]:
    """Metadata key for the study accessions, and the source when it is fixed."""
    if study.startswith("VB"):
        return "VB_study_accession", "VectorBase website"
    if study.startswith("E"):
        return "ERA_study_accession", None
    if study.startswith("D"):
        return "DRA_study_accession", None
    return "SRA_study_accession", None


def convert_for_webapollo(groups: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    metatracks = []
    log.debug("(%d groups)", len(groups))
    for group in groups:
        for track in group["tracks"]:
            for f in track["files"]:
                category = ALLOWED_TYPE_CATEGORY.get(f["type"])
                if category is None:
                    continue
                label = track["title"]
                studies = track.get("studies") or []
                accession_type, source = _study_accession_type(studies[0] if studies else "")
                study_list = ", ".join(studies)

                description = SRA_SUFFIX_PATTERN.sub("", track.get("description") or "", count=1)
                description = f"{study_list} {description or label}"
                if group.get("publications_abbrevs"):
                    description += f" ({', '.join(group['publications_abbrevs'])})"

                metadata = {
                    accession_type: study_list,
                    "caption": label,
                    "category": category,
                    "display": "off",
                    "description": HTML_TAG_PATTERN.sub("", description).strip(),
                    "version": group.get("assembly"),
                    "source_url": f["url"],
                    "source_type": f["type"],
                    "source": (source or track.get("merge_text") or "").replace("_", ", "),
                }
                if group.get("publications_pubmeds"):
                    metadata["pubmed"] = ", ".join(group["publications_pubmeds"])

                metatracks.append({
                    "production_name": group["production_name"],
                    "track": {"label": label, "metadata": metadata},
                    "file_name": f["name"],
                })
    log.info("%d WebApollo metatracks", len(metatracks))
    return metatracks


def write_metatracks(metatracks: List[Dict[str, Any]], output_dir: Path) -> List[Path]:
    """Write each metatrack to <output_dir>/<production_name>/<file_name>.json."""
    written = []
    for metatrack in metatracks:
        species_dir = Path(output_dir) / metatrack["production_name"]
        species_dir.mkdir(parents=True, exist_ok=True)
        path = species_dir / f"{metatrack['file_name']}.json"
        with open(path, 'w') as f:
            json.dump(metatrack["track"], f, indent=2, sort_keys=True)
        written.append(path)
    return written
