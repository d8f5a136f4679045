import pytest

from rnaseqdb.db.repositories import SraEntity
from rnaseqdb.sra.accessions import AccessionKind, classify_accession, classify_all


@pytest.mark.parametrize(
    "accession, kind",
    [
        ("SRP009679", AccessionKind.STUDY),
        ("ERX000001", AccessionKind.EXPERIMENT),
        ("DRR123456", AccessionKind.RUN),
        ("SRS000002", AccessionKind.SAMPLE),
        ("VBSRP12", AccessionKind.PRIVATE_STUDY),
        ("VBSRX1", AccessionKind.PRIVATE_EXPERIMENT),
        ("VBSRR00042", AccessionKind.PRIVATE_RUN),
        ("VBSRS7", AccessionKind.PRIVATE_SAMPLE),
    ],
)
def test_classify_accession(accession, kind):
    assert classify_accession(accession) is kind


def test_classify_accession_strips_whitespace():
    assert classify_accession("  SRR000001\n") is AccessionKind.RUN


@pytest.mark.parametrize("text", ["", None, "XRP000001", "SRP", "SRP12a", "srr000001", "GCA_002204515.1"])
def test_classify_accession_rejects_garbage(text):
    assert classify_accession(text) is None


def test_private_kinds_know_their_columns():
    kind = classify_accession("VBSRS3")
    assert kind.private
    assert kind.entity is SraEntity.SAMPLE
    assert kind.column == "sample_private_acc"
    assert AccessionKind.STUDY.column == "study_sra_acc"


def test_classify_all_keeps_order_and_unknowns():
    result = classify_all([" SRP000001", "nope", "SRR1"])
    assert result == [
        ("SRP000001", AccessionKind.STUDY),
        ("nope", None),
        ("SRR1", AccessionKind.RUN),
    ]
