# rnaseqdb/cli.py
"""
Command-line interface for RNAseqDB, powered by Typer.
"""

import json
from pathlib import Path
from typing import Any, Callable, List, Optional

import typer

from rnaseqdb.export.apollo import convert_for_webapollo, write_metatracks
from rnaseqdb.export.trackhub import create_hubs, prepare_hubs
from rnaseqdb.service import RNAseqDB
from rnaseqdb.sra.accessor import EnaAccessor
from rnaseqdb.utils.config import load_config, resolve
from rnaseqdb.utils.logging import setup_logger, get_logger

app = typer.Typer(
    no_args_is_help=True,
    help="RNAseqDB: track and bundle management for RNA-seq runs.",
    context_settings={"help_option_names": ["-h", "--help"]},
)

# Global options set by the callback
state = {}


@app.callback()
def main_callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose (DEBUG) logging."
    ),
    db: Optional[Path] = typer.Option(
        None, "--db", help="Path to the SQLite database file. Defaults to `db` from the config."
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        help="Path to a YAML configuration file.",
    ),
    log_file: Optional[Path] = typer.Option(
        None, "--log-file", help="Path to a file for logging. Defaults to `log_file` from the config."
    ),
):
    """
    Main callback to set up logging and global state.
    """
    cfg = load_config(config)
    state["verbose"] = verbose
    state["cfg"] = cfg
    state["db"] = Path(resolve(cfg, "db", db))
    state["log_file"] = resolve(cfg, "log_file", log_file)

    setup_logger(logfile=state["log_file"], verbose=verbose)
    log = get_logger(__name__)
    log.debug("CLI context initialized. verbose=%s, db=%s", verbose, state["db"])


def _run(action: str, operation: Callable[[RNAseqDB], Any], with_accessor: bool = False) -> Any:
    """Open the database, run `operation` on the service and close it again."""
    log = get_logger(__name__)
    cfg = state.get("cfg") or load_config(None)
    accessor = None
    if with_accessor:
        accessor = EnaAccessor(
            base_url=resolve(cfg, "ena.base_url"),
            timeout=resolve(cfg, "ena.timeout"),
        )
    rdb = None
    try:
        rdb = RNAseqDB.open(state.get("db") or Path(resolve(cfg, "db")), accessor)
        return operation(rdb)
    except Exception as e:
        log.exception("Failed to %s: %s", action, e)
        raise typer.Exit(code=1)
    finally:
        if rdb is not None:
            rdb.close()
            log.debug("Database connection closed.")


def _emit(data: Any, output: Optional[Path]):
    text = json.dumps(data, indent=2, sort_keys=True)
    if output is None:
        typer.echo(text)
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text)


def _fail_if(condition: bool, message: str):
    if condition:
        get_logger(__name__).error(message)
        raise typer.Exit(code=1)


@app.command()
def init():
    """
    Create the database schema.
    """
    _run("initialize the database", lambda rdb: None)
    typer.echo(f"Initialized {state['db']}")


@app.command("add-species")
def add_species(
    taxon_id: int = typer.Argument(..., help="NCBI taxon id."),
    binomial_name: str = typer.Argument(..., help="Species name, e.g. 'Aedes aegypti'."),
    production_name: str = typer.Option(..., "--production-name", "-p", help="Canonical strain name."),
    strain: str = typer.Option("", "--strain", help="Strain name as found in sample metadata."),
    assembly: Optional[str] = typer.Option(None, "--assembly"),
    assembly_accession: Optional[str] = typer.Option(None, "--assembly-accession"),
):
    """
    Register a species and one of its strains.
    """
    def _add(rdb: RNAseqDB):
        if rdb.add_species(taxon_id, binomial_name) is None:
            return None
        return rdb.add_strain({
            "taxon_id": taxon_id,
            "strain": strain,
            "production_name": production_name,
            "assembly": assembly,
            "assembly_accession": assembly_accession,
        })

    strain_id = _run("add species", _add)
    _fail_if(strain_id is None, f"Could not add strain {production_name}")
    typer.echo(f"Strain {production_name} -> id {strain_id}")


@app.command("import")
def import_sra(
    accessions: List[str] = typer.Argument(..., help="SRA study/experiment/sample/run accessions."),
):
    """
    Import public SRA data.
    """
    total = _run(
        "import SRA data",
        lambda rdb: sum(rdb.import_accession(acc) for acc in accessions),
        with_accessor=True,
    )
    typer.echo(f"{total} new runs imported")


@app.command("import-private")
def import_private(
    json_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True,
                                     help="JSON descriptor of a private study."),
):
    """
    Import a private study from its JSON descriptor.
    """
    num = _run("import private study", lambda rdb: rdb.import_private_study_from_json(json_path))
    _fail_if(num == 0, f"No run imported from {json_path}")
    typer.echo(f"{num} private runs imported")


@app.command("merge-tracks")
def merge_tracks(
    accessions: List[str] = typer.Argument(..., help="Accessions whose tracks are merged."),
):
    """
    Merge the tracks of the given accessions into one track.
    """
    track_id = _run("merge tracks", lambda rdb: rdb.merge_tracks_by_sra_ids(accessions))
    _fail_if(track_id is None, "Tracks were not merged")
    typer.echo(f"Merged into track {track_id}")


@app.command("retire-tracks")
def retire_tracks(
    accessions: List[str] = typer.Argument(..., help="One accession per track to retire."),
):
    """
    Retire the tracks of the given accessions.
    """
    ok = _run("retire tracks", lambda rdb: rdb.inactivate_tracks_by_sra_ids(accessions))
    _fail_if(not ok, "Tracks were not retired")
    typer.echo(f"Retired {len(accessions)} tracks")


@app.command("merge-ids")
def merge_ids(
    force: bool = typer.Option(False, "--force", help="Recompute merge ids that are already set."),
):
    """
    (Re)compute the merge level and merge id of active tracks.
    """
    n = _run("regenerate merge ids", lambda rdb: rdb.regenerate_merge_identities(force))
    typer.echo(f"{n} tracks updated")


@app.command("new-tracks")
def new_tracks(
    species: Optional[str] = typer.Option(None, "--species", "-s", help="Production name filter."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="JSON output file."),
):
    """
    List the active tracks that still need to be aligned.
    """
    tracks = _run("list new tracks", lambda rdb: rdb.tracks.get_new_runs_tracks(species))
    _emit(tracks, output)


@app.command("add-results")
def add_results(
    track_id: int = typer.Argument(..., help="Track id."),
    commands: List[str] = typer.Option([], "--command", help="Command used to produce the files (repeatable)."),
    files: List[str] = typer.Option([], "--file", help="Produced file (repeatable)."),
):
    """
    Attach alignment commands and files to a track.
    """
    ok = _run("add track results", lambda rdb: rdb.add_track_results(track_id, commands, files))
    _fail_if(not ok, f"Results not added to track {track_id}")
    typer.echo(f"Results added to track {track_id}")


@app.command("create-bundle")
def create_bundle(
    track_ids: List[int] = typer.Argument(..., help="Tracks to group."),
):
    """
    Create a bundle over the given tracks.
    """
    bundle_id = _run("create bundle", lambda rdb: rdb.create_bundle_from_tracks(track_ids))
    _fail_if(bundle_id is None, "Bundle not created")
    typer.echo(f"Created bundle {bundle_id}")


@app.command("merge-bundles")
def merge_bundles(
    bundle_ids: List[int] = typer.Argument(..., help="Bundles to merge."),
):
    """
    Merge bundles into a new one and retire them.
    """
    bundle_id = _run("merge bundles", lambda rdb: rdb.merge_bundles(bundle_ids))
    _fail_if(bundle_id is None, "Bundles not merged")
    typer.echo(f"Merged into bundle {bundle_id}")


def _bundle_opt(species: Optional[str]) -> dict:
    return {
        "species": species,
        "files_dir": resolve(state.get("cfg") or {}, "export.files_dir"),
    }


@app.command("export-solr")
def export_solr(
    species: Optional[str] = typer.Option(None, "--species", "-s", help="Production name filter."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="JSON output file."),
):
    """
    Export the bundles as search-index documents.
    """
    docs = _run("export Solr documents", lambda rdb: rdb.get_bundles_for_solr(_bundle_opt(species)))
    _emit(docs, output)


@app.command("export-hubs")
def export_hubs(
    species: Optional[str] = typer.Option(None, "--species", "-s", help="Production name filter."),
    hub_root: Optional[Path] = typer.Option(None, "--hub-root", help="Directory where hubs are written."),
    email: Optional[str] = typer.Option(None, "--email", help="Contact email of the hubs."),
    hub_server: Optional[str] = typer.Option(None, "--hub-server", help="Public URL of the hub root."),
):
    """
    Write one track hub per bundle.
    """
    cfg = state.get("cfg") or {}
    email = resolve(cfg, "export.email", email)
    _fail_if(not email, "An email is needed to create track hubs (--email or export.email)")
    groups = _run("collect bundles", lambda rdb: rdb.get_bundles(_bundle_opt(species)))
    hubs = prepare_hubs(
        groups,
        Path(resolve(cfg, "export.hub_root", hub_root)),
        email,
        resolve(cfg, "export.hub_server", hub_server),
    )
    for path in create_hubs(hubs):
        typer.echo(str(path))


@app.command("export-webapollo")
def export_webapollo(
    output_dir: Path = typer.Argument(..., help="Directory for the metatrack JSON files."),
    species: Optional[str] = typer.Option(None, "--species", "-s", help="Production name filter."),
):
    """
    Write WebApollo metatracks for every bigwig/bam/cram file.
    """
    groups = _run("collect bundles", lambda rdb: rdb.get_bundles(_bundle_opt(species)))
    written = write_metatracks(convert_for_webapollo(groups), output_dir)
    typer.echo(f"{len(written)} metatracks written to {output_dir}")


@app.command("check-files")
def check_files(
    files_dir: Optional[Path] = typer.Option(None, "--files-dir", help="Root of the results files."),
):
    """
    Count result files and report those missing on disk.
    """
    report = _run("check files", lambda rdb: rdb.check_files(files_dir))
    typer.echo(f"bigwig: {report['bigwig']}, bam: {report['bam']}, private fastq: {report['private_fastq']}")
    for path in report["missing"]:
        typer.echo(f"missing: {path}")


if __name__ == "__main__":
    app()
