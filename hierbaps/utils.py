"""Utility functions for hierbaps.

FASTA I/O and partition comparison helpers.
"""

from __future__ import annotations

import gzip
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from sklearn.metrics import adjusted_rand_score


@dataclass
class FastaRecord:
    """A single aligned FASTA sequence."""

    seq_id: str
    sequence: str

    def __len__(self) -> int:
        return len(self.sequence)


def parse_fasta(path: Path) -> Iterator[FastaRecord]:
    """Parse a FASTA file (plain or gzipped).

    Multi-line sequences are joined. The identifier is the first
    whitespace-delimited token of the header.
    """
    opener = gzip.open if str(path).endswith(".gz") else open
    with opener(path, "rt") as fh:
        seq_id = None
        chunks: list[str] = []
        for line in fh:
            line = line.strip()
            if not line:
                continue
            if line.startswith(">"):
                if seq_id is not None:
                    yield FastaRecord(seq_id=seq_id, sequence="".join(chunks))
                header = line[1:].split()
                seq_id = header[0] if header else ""
                chunks = []
            else:
                chunks.append(line)
        if seq_id is not None:
            yield FastaRecord(seq_id=seq_id, sequence="".join(chunks))


def write_fasta(records: Iterable[FastaRecord], path: Path, width: int = 80) -> None:
    """Write FASTA records to a file (plain or gzipped)."""
    opener = gzip.open if str(path).endswith(".gz") else open
    with opener(path, "wt") as fh:
        for rec in records:
            fh.write(f">{rec.seq_id}\n")
            seq = rec.sequence
            for i in range(0, len(seq), width):
                fh.write(f"{seq[i : i + width]}\n")


def adjusted_rand_index(labels_a, labels_b) -> float:
    """Adjusted Rand index between two labelings of the same items.

    1.0 for identical partitions (up to relabelling), ~0.0 for random
    agreement.
    """
    a = np.asarray(labels_a)
    b = np.asarray(labels_b)
    if a.shape != b.shape:
        raise ValueError(f"Label vectors differ in shape: {a.shape} vs {b.shape}")
    return float(adjusted_rand_score(a.ravel(), b.ravel()))
