"""
Typed access to the four SRA hierarchy tables.

Each entity kind maps to one `EntityTable` describing its id column, its
public/private accession columns and the columns callers may set. Code that
needs "the table for this accession" looks it up in `ENTITY_TABLES` instead
of building table names from strings.
"""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)


class SraEntity(str, enum.Enum):
    """The four levels of the SRA hierarchy."""

    STUDY = "study"
    EXPERIMENT = "experiment"
    RUN = "run"
    SAMPLE = "sample"


@dataclass(frozen=True)
class EntityTable:
    entity: SraEntity
    private_prefix: str
    columns: Tuple[str, ...]

    @property
    def table(self) -> str:
        return self.entity.value

    @property
    def id_column(self) -> str:
        return f"{self.entity.value}_id"

    @property
    def sra_column(self) -> str:
        return f"{self.entity.value}_sra_acc"

    @property
    def private_column(self) -> str:
        return f"{self.entity.value}_private_acc"

    def accession_column(self, private: bool) -> str:
        return self.private_column if private else self.sra_column

    def accession_of(self, row: Mapping[str, Any]) -> Optional[str]:
        """Public accession when set, else the private one."""
        return row[self.sra_column] or row[self.private_column]

    def find_ids(self, conn: sqlite3.Connection, accession: str, private: bool = False) -> List[int]:
        column = self.accession_column(private)
        rows = conn.execute(
            f"SELECT {self.id_column} FROM {self.table} WHERE {column} = ? ORDER BY {self.id_column}",
            (accession,),
        ).fetchall()
        return [int(r[0]) for r in rows]

    def find_id_by_metasum(self, conn: sqlite3.Connection, metasum: str) -> Optional[int]:
        row = conn.execute(
            f"SELECT {self.id_column} FROM {self.table} WHERE metasum = ?", (metasum,)
        ).fetchone()
        return int(row[0]) if row else None

    def get(self, conn: sqlite3.Connection, row_id: int) -> Optional[sqlite3.Row]:
        return conn.execute(
            f"SELECT * FROM {self.table} WHERE {self.id_column} = ?", (row_id,)
        ).fetchone()

    def insert(self, conn: sqlite3.Connection, values: Dict[str, Any]) -> int:
        """
        Insert one row and return its id.

        Raises:
            ValueError: if `values` names a column that callers may not set.
        """
        unknown = sorted(set(values) - set(self.columns))
        if unknown:
            raise ValueError(f"Unknown {self.table} column(s): {', '.join(unknown)}")
        keys = list(values)
        placeholders = ", ".join(f":{k}" for k in keys)
        cur = conn.execute(
            f"INSERT INTO {self.table} ({', '.join(keys)}) VALUES ({placeholders})",
            values,
        )
        return int(cur.lastrowid)

    def assign_private_accession(self, conn: sqlite3.Connection, row_id: int) -> str:
        """Synthesise `<prefix><row id>` as the row's private accession."""
        accession = f"{self.private_prefix}{row_id}"
        conn.execute(
            f"UPDATE {self.table} SET {self.private_column} = ? WHERE {self.id_column} = ?",
            (accession, row_id),
        )
        log.info("CREATED %s %s", self.table, accession)
        return accession


ENTITY_TABLES: Dict[SraEntity, EntityTable] = {
    SraEntity.STUDY: EntityTable(
        SraEntity.STUDY, "VBSRP",
        ("study_sra_acc", "study_private_acc", "title", "abstract", "metasum", "status"),
    ),
    SraEntity.EXPERIMENT: EntityTable(
        SraEntity.EXPERIMENT, "VBSRX",
        ("study_id", "experiment_sra_acc", "experiment_private_acc", "title", "metasum", "status"),
    ),
    SraEntity.RUN: EntityTable(
        SraEntity.RUN, "VBSRR",
        ("experiment_id", "sample_id", "run_sra_acc", "run_private_acc", "title",
         "submitter", "metasum", "status"),
    ),
    SraEntity.SAMPLE: EntityTable(
        SraEntity.SAMPLE, "VBSRS",
        ("sample_sra_acc", "sample_private_acc", "title", "description", "taxon_id",
         "strain", "strain_id", "biosample_acc", "label", "metasum", "status"),
    ),
}
