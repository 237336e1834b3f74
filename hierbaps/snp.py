"""SNP matrix construction and sub-alignment views.

An alignment is reduced to the columns that carry at least two distinct
non-gap alleles. Each retained site keeps its own small alphabet and the
matrix stores integer codes into those alphabets, so allele counting is a
pure array operation.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from hierbaps.errors import InputError
from hierbaps.utils import FastaRecord, parse_fasta

logger = logging.getLogger(__name__)

GAP = "-"
_GAP_BYTE = ord(GAP)
_ACGT_BYTES = np.frombuffer(b"acgt", dtype=np.uint8)


@dataclass
class SNPMatrix:
    """Sequences x variable sites, stored as per-site allele codes.

    Attributes:
        sequence_ids: Unique sequence identifiers, in input order.
        positions: 1-based alignment column of each site.
        alphabets: Observed symbols per site, sorted; ``codes`` index into these.
        codes: (n_sequences, n_sites) allele codes.
    """

    sequence_ids: list[str]
    positions: np.ndarray  # (S,)
    alphabets: list[tuple[str, ...]]
    codes: np.ndarray  # (N, S)

    def __post_init__(self) -> None:
        self.sequence_ids = list(self.sequence_ids)
        self.positions = np.asarray(self.positions, dtype=np.int64)
        self.alphabets = [tuple(a) for a in self.alphabets]
        self.codes = np.asarray(self.codes, dtype=np.int16)

        n = len(self.sequence_ids)
        if n == 0:
            raise InputError("SNP matrix contains no sequences")
        if len(set(self.sequence_ids)) != n:
            raise InputError("SNP matrix contains duplicate sequence identifiers")
        if self.codes.ndim != 2 or self.codes.shape[0] != n:
            raise InputError(
                f"Code matrix shape {self.codes.shape} does not match {n} sequences"
            )
        n_sites = self.codes.shape[1]
        if len(self.positions) != n_sites or len(self.alphabets) != n_sites:
            raise InputError(
                f"{n_sites} sites but {len(self.positions)} positions and "
                f"{len(self.alphabets)} alphabets"
            )
        if n_sites:
            sizes = np.array([len(a) for a in self.alphabets])
            if np.any(sizes == 0):
                raise InputError("Every site needs a non-empty alphabet")
            if self.codes.min() < 0 or np.any(self.codes.max(axis=0) >= sizes):
                raise InputError("Allele code outside its site alphabet")

        self.positions.setflags(write=False)
        self.codes.setflags(write=False)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_sequences(
        cls,
        sequence_ids: Sequence[str],
        sequences: Sequence[str],
        positions: Sequence[int] | None = None,
    ) -> SNPMatrix:
        """Build a matrix from equal-length symbol strings.

        Every column is kept, including invariant ones; use
        :meth:`variable_sites` to drop those. Symbols are used verbatim.
        """
        chars = _char_matrix(sequence_ids, sequences)
        alphabets, codes = _encode_columns(chars)
        if positions is None:
            positions = np.arange(1, chars.shape[1] + 1)
        return cls(
            sequence_ids=list(sequence_ids),
            positions=np.asarray(positions),
            alphabets=alphabets,
            codes=codes,
        )

    # ------------------------------------------------------------------
    # Shape
    # ------------------------------------------------------------------

    @property
    def n_sequences(self) -> int:
        return len(self.sequence_ids)

    @property
    def n_sites(self) -> int:
        return self.codes.shape[1]

    @property
    def n_cells(self) -> int:
        return self.n_sequences * self.n_sites

    @property
    def alphabet_sizes(self) -> np.ndarray:
        return np.array([len(a) for a in self.alphabets], dtype=np.int64)

    @property
    def max_alphabet_size(self) -> int:
        return int(self.alphabet_sizes.max()) if self.n_sites else 1

    @property
    def is_invariant(self) -> bool:
        """True when no site shows two distinct symbols."""
        if self.n_sites == 0:
            return True
        return not np.any(self.codes.min(axis=0) != self.codes.max(axis=0))

    def symbols(self, row: int) -> str:
        """The allele string of one sequence across all sites."""
        return "".join(self.alphabets[s][c] for s, c in enumerate(self.codes[row]))

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def subset(self, indices: Sequence[int]) -> SNPMatrix:
        """Matrix restricted to the given rows.

        Alphabets are recomputed from the symbols the subset actually
        carries, so unobserved alleles do not inflate the prior.
        """
        idx = np.asarray(indices, dtype=np.int64)
        if idx.size == 0:
            raise InputError("Cannot take an empty subset of a SNP matrix")
        sub = self.codes[idx]
        alphabets = []
        codes = np.empty_like(sub)
        for s in range(self.n_sites):
            uniq, inverse = np.unique(sub[:, s], return_inverse=True)
            codes[:, s] = inverse.ravel()
            alphabets.append(tuple(self.alphabets[s][u] for u in uniq))
        return SNPMatrix(
            sequence_ids=[self.sequence_ids[i] for i in idx],
            positions=self.positions.copy(),
            alphabets=alphabets,
            codes=codes,
        )

    def select_sites(self, mask: np.ndarray) -> SNPMatrix:
        """Matrix restricted to the sites where *mask* is True."""
        mask = np.asarray(mask, dtype=bool)
        return SNPMatrix(
            sequence_ids=list(self.sequence_ids),
            positions=self.positions[mask],
            alphabets=[a for a, keep in zip(self.alphabets, mask) if keep],
            codes=self.codes[:, mask],
        )

    def variable_mask(self) -> np.ndarray:
        """Sites with at least two distinct non-gap symbols."""
        mask = np.zeros(self.n_sites, dtype=bool)
        for s, alphabet in enumerate(self.alphabets):
            alleles = [a for a in alphabet if a != GAP]
            if len(alleles) < 2:
                continue
            observed = np.unique(self.codes[:, s])
            n_alleles = sum(1 for c in observed if alphabet[c] != GAP)
            mask[s] = n_alleles >= 2
        return mask

    def variable_sites(self) -> SNPMatrix:
        """Matrix restricted to sites still variable among its sequences."""
        return self.select_sites(self.variable_mask())

    def to_records(self) -> list[FastaRecord]:
        return [
            FastaRecord(seq_id=sid, sequence=self.symbols(i))
            for i, sid in enumerate(self.sequence_ids)
        ]


# ---------------------------------------------------------------------------
# Alignment loading
# ---------------------------------------------------------------------------


def load_fasta(path: Path, keep_singletons: bool = False) -> SNPMatrix:
    """Load an aligned FASTA file and reduce it to a SNP matrix.

    Symbols are lower-cased and anything outside ``acgt`` becomes the gap
    symbol. A column is retained when it carries at least two distinct
    non-gap alleles; unless *keep_singletons* is set it is also dropped
    when at most one sequence differs from the column's majority allele.

    Args:
        path: FASTA alignment (plain or gzipped).
        keep_singletons: Keep columns whose variation is a single sequence.

    Returns:
        SNPMatrix over the retained columns.

    Raises:
        InputError: If the file holds no sequences, sequences differ in
            length or identifiers repeat.
    """
    records = list(parse_fasta(Path(path)))
    if not records:
        raise InputError(f"No sequences found in {path}")
    return snp_matrix_from_records(records, keep_singletons=keep_singletons)


def snp_matrix_from_records(
    records: Sequence[FastaRecord], keep_singletons: bool = False
) -> SNPMatrix:
    """Reduce aligned records to a SNP matrix (see :func:`load_fasta`)."""
    ids = [r.seq_id for r in records]
    chars = _char_matrix(ids, [r.sequence.lower() for r in records])
    chars = np.where(np.isin(chars, _ACGT_BYTES), chars, _GAP_BYTE).astype(np.uint8)

    keep = segregating_columns(chars, keep_singletons=keep_singletons)
    logger.info(
        "Alignment: %d sequences x %d columns, %d SNP sites retained",
        chars.shape[0], chars.shape[1], int(keep.sum()),
    )
    alphabets, codes = _encode_columns(chars[:, keep])
    return SNPMatrix(
        sequence_ids=ids,
        positions=np.flatnonzero(keep) + 1,
        alphabets=alphabets,
        codes=codes,
    )


def segregating_columns(chars: np.ndarray, keep_singletons: bool = False) -> np.ndarray:
    """Boolean mask of alignment columns carrying real allelic variation.

    Args:
        chars: (N, L) uint8 matrix of lower-case ``acgt-`` bytes.
        keep_singletons: If False, drop columns where at most one
            sequence carries a non-majority allele.
    """
    allele_counts = np.stack([(chars == b).sum(axis=0) for b in _ACGT_BYTES])
    n_alleles = (allele_counts > 0).sum(axis=0)
    keep = n_alleles >= 2
    if not keep_singletons:
        minor = allele_counts.sum(axis=0) - allele_counts.max(axis=0)
        keep &= minor > 1
    return keep


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _char_matrix(sequence_ids: Sequence[str], sequences: Sequence[str]) -> np.ndarray:
    """Stack equal-length sequences into an (N, L) uint8 array."""
    if len(sequences) == 0:
        raise InputError("No sequences supplied")
    if len(sequence_ids) != len(sequences):
        raise InputError(
            f"{len(sequence_ids)} identifiers for {len(sequences)} sequences"
        )
    length = len(sequences[0])
    for sid, seq in zip(sequence_ids, sequences):
        if len(seq) != length:
            raise InputError(
                f"Sequence {sid!r} has {len(seq)} sites, expected {length}"
            )
    try:
        rows = [np.frombuffer(seq.encode("ascii"), dtype=np.uint8) for seq in sequences]
    except UnicodeEncodeError as exc:
        raise InputError("Sequences must contain ASCII symbols only") from exc
    if length == 0:
        return np.empty((len(sequences), 0), dtype=np.uint8)
    return np.vstack(rows)


def _encode_columns(chars: np.ndarray) -> tuple[list[tuple[str, ...]], np.ndarray]:
    """Per-column alphabets and integer codes for a uint8 symbol matrix."""
    n, n_sites = chars.shape
    codes = np.empty((n, n_sites), dtype=np.int16)
    alphabets: list[tuple[str, ...]] = []
    for s in range(n_sites):
        uniq, inverse = np.unique(chars[:, s], return_inverse=True)
        codes[:, s] = inverse.ravel()
        alphabets.append(tuple(chr(b) for b in uniq))
    return alphabets, codes
