"""
Attach alignment results (analysis commands and produced files) to a track.

Results are appended at most once per track: a second submission is refused
as soon as the track already holds analyses or non-fastq files.
"""

from __future__ import annotations

import shlex
import sqlite3
from pathlib import PurePath
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)

_SUFFIX_TYPES: Tuple[Tuple[str, str], ...] = (
    # Longest suffixes first
    (".bam.bai", "bai"),
    (".fastq.gz", "fastq"),
    (".fq.gz", "fastq"),
    (".bw", "bigwig"),
    (".bam", "bam"),
    (".cram", "cram"),
    (".fastq", "fastq"),
    (".fq", "fastq"),
)


def infer_file_type(filename: str) -> Optional[str]:
    """Return the file type for a filename, or None if the extension is unknown."""
    lowered = filename.lower()
    for suffix, file_type in _SUFFIX_TYPES:
        if lowered.endswith(suffix):
            return file_type
    return None


def expand_file_paths(paths: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Turn submitted paths into (filename, type) rows. Only the filename is
    kept; every bam implies its `.bai` index.
    """
    rows: List[Tuple[str, str]] = []
    for path in paths:
        name = PurePath(path).name
        file_type = infer_file_type(name)
        if file_type is None:
            log.warning("Unknown file type for %s: skipped", path)
            continue
        rows.append((name, file_type))
        if file_type == "bam":
            rows.append((f"{name}.bai", "bai"))
    # A bai listed explicitly next to its bam must not appear twice
    seen = set()
    unique = []
    for row in rows:
        if row not in seen:
            seen.add(row)
            unique.append(row)
    return unique


def command_program(command: str) -> Optional[str]:
    """Program name of a shell command: the basename of its first token."""
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()
    if not tokens:
        return None
    return PurePath(tokens[0]).name


def track_has_analyses(conn: sqlite3.Connection, track_id: int) -> bool:
    row = conn.execute("SELECT 1 FROM analysis WHERE track_id = ? LIMIT 1", (track_id,)).fetchone()
    return row is not None


def track_has_results_files(conn: sqlite3.Connection, track_id: int) -> bool:
    row = conn.execute(
        "SELECT 1 FROM file WHERE track_id = ? AND type != 'fastq' LIMIT 1", (track_id,)
    ).fetchone()
    return row is not None


def insert_commands(conn: sqlite3.Connection, track_id: int,
                    commands: Iterable[Union[str, Dict[str, Any]]]) -> int:
    """
    Store analysis commands, linking each to the analysis_description whose
    name matches its program (case-insensitive).

    Args:
        commands: Command lines, or dicts with 'command' and optional 'version'.
    """
    n = 0
    for entry in commands:
        if isinstance(entry, dict):
            command, version = entry["command"], entry.get("version")
        else:
            command, version = entry, None
        program = command_program(command)
        desc = None
        if program:
            desc = conn.execute(
                "SELECT analysis_description_id FROM analysis_description WHERE lower(name) = lower(?)",
                (program,),
            ).fetchone()
        if desc is None:
            log.debug("No analysis description for program %r", program)
        conn.execute(
            """
            INSERT INTO analysis (track_id, analysis_description_id, version, command)
            VALUES (?, ?, ?, ?)
            """,
            (track_id, desc[0] if desc else None, version, command),
        )
        n += 1
    return n


def insert_files(conn: sqlite3.Connection, track_id: int, paths: Iterable[str]) -> int:
    rows = expand_file_paths(paths)
    for name, file_type in rows:
        conn.execute(
            "INSERT INTO file (track_id, path, type) VALUES (?, ?, ?)",
            (track_id, name, file_type),
        )
        log.debug("ADDED %s file %s to track %s", file_type, name, track_id)
    return len(rows)
