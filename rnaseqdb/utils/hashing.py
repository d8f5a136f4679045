# rnaseqdb/utils/hashing.py
"""
Utilities for generating consistent hashes from metadata records.
"""

import json
import hashlib
from typing import Dict, Any


def _canonical(data: Dict[str, Any]) -> bytes:
    # Sorted keys make the digest independent of the descriptor's key order
    return json.dumps(data, sort_keys=True, ensure_ascii=True).encode('utf-8')


def metasum(data: Dict[str, Any]) -> str:
    """
    Computes the md5 checksum used to deduplicate privately submitted records.

    Args:
        data: The record's metadata dictionary.

    Returns:
        A 32-character hexadecimal digest.
    """
    return hashlib.md5(_canonical(data)).hexdigest()
