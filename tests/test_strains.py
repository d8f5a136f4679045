from rnaseqdb.db import api as db_api
from rnaseqdb.taxonomy.strains import StrainCache, StrainMatcher

from conftest import PRODUCTION_NAME, TAXON


def _matcher(conn):
    return StrainMatcher(StrainCache(conn))


def test_exact_match(rdb, conn):
    match = _matcher(conn).match(TAXON, "LVPagwg")
    assert match.method == "exact"
    assert not match.ambiguous


def test_single_strain_taxon_fallback(rdb, conn):
    match = _matcher(conn).match(TAXON, "Liverpool")
    assert match.method == "taxon"
    assert not match.ambiguous


def test_unknown_taxon_is_rejected(rdb, conn):
    matcher = _matcher(conn)
    assert matcher.match(9999, "LVPagwg") is None
    assert matcher.match(None, "LVPagwg") is None


def test_substring_and_ambiguous_matches(rdb, conn):
    db_api.add_strain(conn, {"taxon_id": TAXON, "strain": "Rockefeller", "production_name": "aedes_aegypti_rock"})
    matcher = _matcher(conn)

    sub = matcher.match(TAXON, "Rockefeller (lab colony)")
    assert sub.method == "substring"
    rock_id = conn.execute(
        "SELECT strain_id FROM strain WHERE production_name = 'aedes_aegypti_rock'"
    ).fetchone()[0]
    assert sub.strain_id == rock_id

    ambiguous = matcher.match(TAXON, "field population")
    assert ambiguous.ambiguous
    # First strain by name
    lvp_id = conn.execute(
        "SELECT strain_id FROM strain WHERE production_name = ?", (PRODUCTION_NAME,)
    ).fetchone()[0]
    assert ambiguous.strain_id == lvp_id


def test_cache_needs_invalidation(rdb, conn):
    cache = StrainCache(conn)
    matcher = StrainMatcher(cache)
    assert matcher.match(7165, "PEST") is None

    db_api.add_species(conn, 7165, "Anopheles gambiae")
    db_api.add_strain(conn, {"taxon_id": 7165, "strain": "PEST", "production_name": "anopheles_gambiae"})
    assert matcher.match(7165, "PEST") is None
    cache.invalidate()
    assert matcher.match(7165, "PEST").method == "exact"


def test_match_production_name(rdb, conn):
    matcher = _matcher(conn)
    row = matcher.match_production_name(PRODUCTION_NAME)
    assert row["taxon_id"] == TAXON
    assert matcher.match_production_name(PRODUCTION_NAME, TAXON) is not None
    assert matcher.match_production_name(PRODUCTION_NAME, 1234) is None
    assert matcher.match_production_name("unknown_species") is None


def test_add_strain_needs_species(conn):
    assert db_api.add_strain(conn, {"taxon_id": 42, "production_name": "nothing"}) is None
