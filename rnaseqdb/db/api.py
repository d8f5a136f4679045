# rnaseqdb/db/api.py
"""
This module provides the connection, schema and transaction primitives
shared by every RNAseqDB component, plus the taxonomy and analysis
reference-data helpers.
"""

import itertools
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from rnaseqdb.db.schema import ALL_TABLES, ALL_INDEXES, VIEW_DEFINITIONS
from rnaseqdb.utils.logging import get_logger

log = get_logger(__name__)


_LOCK_RETRY_MESSAGES: tuple[str, ...] = (
    "database is locked",
    "database is busy",
    "database is in use",
)

_savepoint_ids = itertools.count(1)


def _is_lock_error(err: sqlite3.Error) -> bool:
    """Return True if the sqlite error looks like a lock/busy condition."""
    msg = str(err).lower()
    return any(token in msg for token in _LOCK_RETRY_MESSAGES)


def _run_with_retry(
    conn: sqlite3.Connection,
    operation: Callable[[], Any],
    description: str,
    *,
    retries: int = 5,
    initial_delay: float = 0.1,
    backoff: float = 2.0,
) -> Any:
    """
    Execute `operation`, retrying when SQLite reports a lock/busy error.

    Retries are exponential-backoff with jitter-free timing to keep behaviour
    predictable for batch jobs.
    """
    delay = initial_delay
    last_error: Optional[sqlite3.Error] = None
    for attempt in range(1, retries + 1):
        try:
            return operation()
        except sqlite3.OperationalError as err:
            last_error = err
            if not _is_lock_error(err):
                raise
            if attempt == retries:
                break
            log.warning(
                "SQLite busy during %s (attempt %s/%s); retrying in %.2fs",
                description,
                attempt,
                retries,
                delay,
            )
            time.sleep(delay)
            delay *= backoff
    if last_error is not None:
        raise last_error


def connect(db_path: Path) -> sqlite3.Connection:
    """
    Establishes a connection to the SQLite database.

    The connection runs in autocommit mode; multi-statement changes are
    grouped with `transaction`.

    Args:
        db_path: The file path to the SQLite database.

    Returns:
        A sqlite3.Connection object.
    """
    try:
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA busy_timeout = 5000")
        log.debug("Database connection established to %s", db_path)
        return conn
    except sqlite3.Error as e:
        log.exception("Database connection failed: %s", e)
        raise


def init_schema(conn: sqlite3.Connection):
    """
    Initializes the database schema by creating all tables, indexes and views.

    Args:
        conn: An active sqlite3.Connection object.
    """
    try:
        with transaction(conn):
            for table_sql in ALL_TABLES:
                conn.execute(table_sql)
            for index_sql in ALL_INDEXES:
                conn.execute(index_sql)
            for view_name, view_sql in VIEW_DEFINITIONS:
                conn.execute(f"DROP VIEW IF EXISTS {view_name}")
                conn.execute(view_sql)
        log.info("Database schema initialized successfully.")
    except sqlite3.Error as e:
        log.exception("Schema initialization failed: %s", e)
        raise


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run the enclosed statements atomically.

    The outermost call opens an IMMEDIATE transaction so the write lock is
    taken before any check-then-act read. Nested calls use a savepoint, so an
    inner failure only undoes the inner block before re-raising.
    """
    if conn.in_transaction:
        name = f"rnaseqdb_sp_{next(_savepoint_ids)}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        conn.execute(f"RELEASE SAVEPOINT {name}")
        return

    _run_with_retry(conn, lambda: conn.execute("BEGIN IMMEDIATE"), "begin transaction")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def fetch_ids(conn: sqlite3.Connection, sql: str, params: Any = ()) -> List[int]:
    """Run a query whose first column is an id and return the ids in order."""
    return [int(row[0]) for row in conn.execute(sql, params).fetchall()]


# ---------------------------------------------------------------------------
# Taxonomy reference data
# ---------------------------------------------------------------------------

def add_species(conn: sqlite3.Connection, taxon_id: int, binomial_name: str) -> Optional[int]:
    """
    Insert a species or return the existing id for its taxon.

    Returns the species id, or None on failure.
    """
    def _upsert() -> int:
        with transaction(conn):
            conn.execute(
                """
                INSERT INTO species (taxon_id, binomial_name) VALUES (?, ?)
                ON CONFLICT(taxon_id) DO NOTHING
                """,
                (taxon_id, binomial_name),
            )
            row = conn.execute(
                "SELECT species_id FROM species WHERE taxon_id = ?", (taxon_id,)
            ).fetchone()
        return int(row[0])

    try:
        species_id = _run_with_retry(conn, _upsert, "add_species")
        log.debug("Species %s (taxon %s) -> id=%s", binomial_name, taxon_id, species_id)
        return species_id
    except sqlite3.Error as e:
        log.exception("Failed to add species %s: %s", binomial_name, e)
        return None


def add_strain(conn: sqlite3.Connection, strain: Dict[str, Any]) -> Optional[int]:
    """
    Insert a strain for an existing species, keyed on its production name.

    Args:
        conn: An active sqlite3.Connection object.
        strain: Dict with 'taxon_id', 'production_name' and optionally
            'strain', 'assembly', 'assembly_accession'.

    Returns:
        The strain id, or None if the species is unknown or on failure.
    """
    row = conn.execute(
        "SELECT species_id FROM species WHERE taxon_id = ?", (strain.get("taxon_id"),)
    ).fetchone()
    if row is None:
        log.warning("Can't add strain %s: unknown taxon %s",
                    strain.get("production_name"), strain.get("taxon_id"))
        return None
    params = {
        "species_id": int(row[0]),
        "strain": strain.get("strain") or "",
        "production_name": strain["production_name"],
        "assembly": strain.get("assembly"),
        "assembly_accession": strain.get("assembly_accession"),
    }

    def _upsert() -> int:
        with transaction(conn):
            conn.execute(
                """
                INSERT INTO strain (species_id, strain, production_name, assembly, assembly_accession)
                VALUES (:species_id, :strain, :production_name, :assembly, :assembly_accession)
                ON CONFLICT(production_name) DO NOTHING
                """,
                params,
            )
            found = conn.execute(
                "SELECT strain_id FROM strain WHERE production_name = ?",
                (params["production_name"],),
            ).fetchone()
        return int(found[0])

    try:
        strain_id = _run_with_retry(conn, _upsert, "add_strain")
        log.debug("Strain %s -> id=%s", params["production_name"], strain_id)
        return strain_id
    except sqlite3.Error as e:
        log.exception("Failed to add strain %s: %s", params["production_name"], e)
        return None


def add_analysis_description(conn: sqlite3.Connection, name: str, type_: str = "other",
                             description: Optional[str] = None) -> Optional[int]:
    """
    Register a program that can appear in analysis commands (e.g. an aligner).

    Returns the analysis_description id, or None on failure.
    """
    try:
        with transaction(conn):
            conn.execute(
                """
                INSERT INTO analysis_description (name, type, description) VALUES (?, ?, ?)
                ON CONFLICT(name) DO NOTHING
                """,
                (name, type_, description),
            )
            row = conn.execute(
                "SELECT analysis_description_id FROM analysis_description WHERE name = ?",
                (name,),
            ).fetchone()
        return int(row[0])
    except sqlite3.Error as e:
        log.exception("Failed to add analysis description %s: %s", name, e)
        return None
