"""
Genome-browser track hubs built from projected groups.

One hub per group: a single genome (the group's assembly) holding two
super-tracks, bigwig signal (shown) and bam reads (hidden). Only the first
ten bigwig tracks are displayed by default.

Files written by `Hub.create_files()`:

    <root_dir>/<hub id>/hub.txt
    <root_dir>/<hub id>/genomes.txt
    <root_dir>/<hub id>/<assembly>/trackDb.txt
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)

MAX_VISIBLE_BIGWIGS = 10


@dataclass
class Track:
    track: str
    short_label: str
    long_label: str
    big_data_url: str
    type: str
    visibility: str = "full"

    def stanza(self, parent: Optional[str] = None) -> List[str]:
        lines = [
            f"track {self.track}",
            f"shortLabel {self.short_label}",
            f"longLabel {self.long_label}",
            f"bigDataUrl {self.big_data_url}",
            f"type {self.type}",
            f"visibility {self.visibility}",
        ]
        if parent:
            lines.insert(1, f"parent {parent}")
        return lines


@dataclass
class SuperTrack:
    track: str
    short_label: str
    long_label: str
    type: str
    show: bool = True
    sub_tracks: List[Track] = field(default_factory=list)

    def add_sub_track(self, track: Track):
        self.sub_tracks.append(track)

    def stanza(self) -> List[str]:
        lines = [
            f"track {self.track}",
            "superTrack on" + (" show" if self.show else ""),
            f"shortLabel {self.short_label}",
            f"longLabel {self.long_label}",
            f"type {self.type}",
            "",
        ]
        for sub in self.sub_tracks:
            lines.extend(sub.stanza(parent=self.track))
            lines.append("")
        return lines


@dataclass
class Genome:
    id: str
    insdc: Optional[str] = None
    tracks: List[SuperTrack] = field(default_factory=list)

    def add_track(self, track: SuperTrack):
        self.tracks.append(track)

    def track_db(self) -> str:
        lines: List[str] = []
        for track in self.tracks:
            lines.extend(track.stanza())
        return "\n".join(lines)


@dataclass
class Hub:
    id: str
    short_label: str
    long_label: str
    email: str
    root_dir: Path
    server_dir: Optional[str] = None
    genomes: List[Genome] = field(default_factory=list)

    def add_genome(self, genome: Genome):
        self.genomes.append(genome)

    @property
    def hub_dir(self) -> Path:
        return Path(self.root_dir) / self.id

    @property
    def url(self) -> Optional[str]:
        if not self.server_dir:
            return None
        return f"{self.server_dir.rstrip('/')}/{self.id}/hub.txt"

    def create_files(self) -> Path:
        """Write the hub's text files and return the path of hub.txt."""
        self.hub_dir.mkdir(parents=True, exist_ok=True)
        hub_txt = self.hub_dir / "hub.txt"
        hub_txt.write_text("\n".join([
            f"hub {self.id}",
            f"shortLabel {self.short_label}",
            f"longLabel {self.long_label}",
            "genomesFile genomes.txt",
            f"email {self.email}",
            "",
        ]))
        genome_lines = []
        for genome in self.genomes:
            genome_lines += [f"genome {genome.id}", f"trackDb {genome.id}/trackDb.txt", ""]
            genome_dir = self.hub_dir / genome.id
            genome_dir.mkdir(parents=True, exist_ok=True)
            (genome_dir / "trackDb.txt").write_text(genome.track_db())
        (self.hub_dir / "genomes.txt").write_text("\n".join(genome_lines))
        log.debug("Hub %s written to %s", self.id, self.hub_dir)
        return hub_txt


def _get_file(track: Dict[str, Any], file_type: str) -> Optional[Dict[str, Any]]:
    for f in track.get("files", []):
        if f["type"] == file_type:
            return f
    return None


def prepare_hubs(groups: List[Dict[str, Any]], hub_root: Path, email: str,
                 hub_server: Optional[str] = None) -> List[Hub]:
    """
    Build (without writing) one Hub per group that has assembly information
    and at least one track with a bigwig file.

    Raises:
        ValueError: if `email` is empty.
    """
    if not email:
        raise ValueError("An email address is needed to create track hubs")

    hubs = []
    for group in groups:
        if not group.get("assembly") and not group.get("assembly_accession"):
            log.warning("No Assembly information for hub %s", group["trackhub_id"])
            continue

        hub = Hub(
            id=group["trackhub_id"],
            short_label=group.get("label") or group["id"],
            long_label=group.get("description") or group.get("label") or group["id"],
            email=email,
            root_dir=Path(hub_root) / group["production_name"],
            server_dir=f"{hub_server.rstrip('/')}/{group['production_name']}" if hub_server else None,
        )
        genome = Genome(id=group.get("assembly") or group["assembly_accession"],
                        insdc=group.get("assembly_accession"))

        super_big = SuperTrack(f"{hub.id}_bigwig", "Signal density (bigwig)",
                               "Signal density (bigwig)", "bigWig", show=True)
        super_bam = SuperTrack(f"{hub.id}_bam", "Reads (bam)", "Reads (bam)", "bam", show=False)

        for track in sorted(group.get("tracks", []), key=lambda t: t["id"]):
            bigwig = _get_file(track, "bigwig")
            if bigwig is None:
                log.warning("No bigwig file for this track %s", track["id"])
                continue
            visibility = "full" if len(super_big.sub_tracks) < MAX_VISIBLE_BIGWIGS else "hide"
            super_big.add_sub_track(Track(
                track=f"{track['id']}_bigwig",
                short_label=track.get("title") or track["id"],
                long_label=track.get("description") or track["id"],
                big_data_url=bigwig["url"],
                type="bigWig",
                visibility=visibility,
            ))

            bam = _get_file(track, "bam")
            if bam is None:
                log.warning("No bam file for this track %s", track["id"])
                continue
            super_bam.add_sub_track(Track(
                track=f"{track['id']}_bam",
                short_label=track.get("title") or track["id"],
                long_label=track.get("description") or track["id"],
                big_data_url=bam["url"],
                type="bam",
                visibility="hide",
            ))

        if not super_big.sub_tracks:
            log.warning("No track can be used for this group %s: skip", group["id"])
            continue
        genome.add_track(super_big)
        if super_bam.sub_tracks:
            genome.add_track(super_bam)
        hub.add_genome(genome)
        hubs.append(hub)
    log.info("%d hubs prepared", len(hubs))
    return hubs


def create_hubs(hubs: List[Hub]) -> List[Path]:
    return [hub.create_files() for hub in hubs]
