"""
Evidence blobs and content identifier validation.

Two CID shapes are accepted, both checked before any store call:
  - CIDv0: "Qm" + 44 base58btc characters (no 0, O, I, l).
  - CIDv1: "b" + 58 base32 characters.
"""

import re
from dataclasses import dataclass, field
from typing import List

from fotomultas.core.errors import ValidationError

CID_PATTERN = re.compile(r"^(Qm[1-9A-HJ-NP-Za-km-z]{44}|b[A-Za-z2-7]{58})$")


def is_valid_cid(cid: str) -> bool:
    return bool(cid) and CID_PATTERN.match(cid) is not None


def validate_cid(cid: str) -> str:
    """Return the CID unchanged, or raise ValidationError."""
    if not is_valid_cid(cid):
        raise ValidationError(
            f"Invalid IPFS CID format: {cid!r}. Expected CIDv0 (Qm...) or CIDv1 (b...)"
        )
    return cid


@dataclass
class EvidenceBlob:
    """Evidence file as retrieved from the store, chunks in arrival order."""
    cid: str
    chunks: List[bytes] = field(default_factory=list)

    @property
    def size(self) -> int:
        return sum(len(c) for c in self.chunks)

    @property
    def content(self) -> bytes:
        return b"".join(self.chunks)
