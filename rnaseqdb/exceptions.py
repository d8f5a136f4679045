"""
Module of all RNAseqDB-specific exception types.
"""

__all__ = (
    "RNAseqDBError",
    "AccessorError",
    "OperationAborted",
)


class RNAseqDBError(Exception):
    """
    Base class for errors raised by the rnaseqdb package.
    """


class AccessorError(RNAseqDBError):
    """
    Exception raised when the SRA metadata accessor cannot answer a
    request (network failure, unexpected payload).
    """

    def __init__(self, accession: str, message: str):
        super().__init__(f"{accession}: {message}")
        self.accession = accession


class OperationAborted(RNAseqDBError):
    """
    Exception to signal that a precondition failed inside a transaction.
    Raising it rolls the transaction back; public operations turn it into
    a logged no-op.
    """
