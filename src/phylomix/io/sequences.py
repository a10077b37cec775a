"""
Sequence file parsing, alignment handling and site-pattern compression.
"""

import re
from dataclasses import dataclass
from pathlib import Path

import numpy as np


# PAML nucleotide order
NUCLEOTIDES = 'TCAG'
NUCLEOTIDE_TO_INDEX = {'T': 0, 'C': 1, 'A': 2, 'G': 3, 'U': 0}
INDEX_TO_NUCLEOTIDE = {0: 'T', 1: 'C', 2: 'A', 3: 'G'}

# Gaps, N and ambiguity codes are treated as missing data
UNKNOWN_CODE = -1


@dataclass
class PatternTable:
    """
    Distinct alignment columns and how often each occurs.

    Attributes
    ----------
    names : list[str]
        Sequence names, row order of ``patterns``
    patterns : ndarray, shape (n_species, n_patterns)
        Encoded states of each distinct column
    frequencies : ndarray, shape (n_patterns,)
        Number of alignment sites showing each pattern (integers)
    is_constant : ndarray, shape (n_patterns,)
        True where every non-missing state in the pattern is identical
    site_to_pattern : ndarray, shape (n_sites,)
        Pattern index of every alignment site
    """

    names: list[str]
    patterns: np.ndarray
    frequencies: np.ndarray
    is_constant: np.ndarray
    site_to_pattern: np.ndarray

    @property
    def n_patterns(self) -> int:
        return self.patterns.shape[1]

    @property
    def n_sites(self) -> int:
        return int(self.frequencies.sum())

    def state_frequencies(self, n_states: int = 4) -> np.ndarray:
        """
        Empirical state frequencies, counted over all sites.

        Missing data is ignored. Falls back to equal frequencies when the
        alignment holds no observed states at all.
        """
        counts = np.zeros(n_states)
        for state in range(n_states):
            counts[state] = np.sum((self.patterns == state) * self.frequencies[np.newaxis, :])
        if counts.sum() == 0:
            return np.ones(n_states) / n_states
        # Keep every state reachable
        counts = np.maximum(counts, 1e-4 * counts.sum())
        return counts / counts.sum()


@dataclass
class Alignment:
    """
    Multiple sequence alignment of DNA sequences.

    Attributes
    ----------
    names : list[str]
        Sequence names/labels
    sequences : ndarray, shape (n_species, n_sites)
        Encoded sequences as integer arrays (0=T, 1=C, 2=A, 3=G, -1=missing)
    n_species : int
        Number of sequences
    n_sites : int
        Number of sites (alignment length)
    """

    names: list[str]
    sequences: np.ndarray
    n_species: int
    n_sites: int

    @classmethod
    def from_sequences(cls, records: dict[str, str]) -> "Alignment":
        """
        Build an alignment from a name -> sequence mapping.

        Examples
        --------
        >>> aln = Alignment.from_sequences({"a": "ACGT", "b": "ACGA"})
        >>> aln.n_sites
        4
        """
        names = list(records)
        sequences_clean = [re.sub(r'\s', '', records[name]).upper() for name in names]
        return cls._build(names, sequences_clean)

    @classmethod
    def from_phylip(cls, filepath: Path | str) -> "Alignment":
        """
        Parse sequential PHYLIP format alignment file.

        The first line contains n_sequences and sequence_length. Each record
        is either ``name sequence`` on one line or a name line followed by
        sequence lines.

        Parameters
        ----------
        filepath : Path or str
            Path to PHYLIP format file

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        with open(filepath, 'r') as f:
            lines = [line.rstrip() for line in f.readlines()]
        lines = [line for line in lines if line.strip()]
        if not lines:
            raise ValueError(f"Empty PHYLIP file: {filepath}")

        header = lines[0].strip().split()
        if len(header) < 2:
            raise ValueError("Invalid PHYLIP header: expected '<n_species> <n_sites>'")
        n_species = int(header[0])
        n_chars = int(header[1])

        names = []
        sequences_raw = []

        i = 1
        while i < len(lines) and len(names) < n_species:
            fields = lines[i].strip().split(None, 1)
            i += 1
            name = fields[0]
            seq_data = re.sub(r'\s', '', fields[1]).upper() if len(fields) > 1 else ""

            while len(seq_data) < n_chars and i < len(lines):
                seq_data += re.sub(r'\s', '', lines[i]).upper()
                i += 1

            names.append(name)
            sequences_raw.append(seq_data)

        if len(names) != n_species:
            raise ValueError(f"Expected {n_species} sequences, found {len(names)}")

        for name, seq in zip(names, sequences_raw):
            if len(seq) != n_chars:
                raise ValueError(
                    f"Sequence {name} has length {len(seq)}, expected {n_chars}"
                )

        return cls._build(names, sequences_raw)

    @classmethod
    def from_fasta(cls, filepath: Path | str) -> "Alignment":
        """
        Parse FASTA format alignment file.

        Parameters
        ----------
        filepath : Path or str
            Path to FASTA format file

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        names = []
        sequences_raw = []

        with open(filepath, 'r') as f:
            current_name = None
            current_seq = []

            for line in f:
                line = line.strip()

                if not line:
                    continue

                if line.startswith('>'):
                    if current_name is not None:
                        names.append(current_name)
                        sequences_raw.append(''.join(current_seq))
                    current_name = line[1:].strip()
                    current_seq = []
                else:
                    current_seq.append(line.upper())

            if current_name is not None:
                names.append(current_name)
                sequences_raw.append(''.join(current_seq))

        if not names:
            raise ValueError("No sequences found in FASTA file")

        sequences_clean = [re.sub(r'\s', '', seq) for seq in sequences_raw]
        return cls._build(names, sequences_clean)

    @classmethod
    def _build(cls, names: list[str], sequences: list[str]) -> "Alignment":
        if not names:
            raise ValueError("Alignment has no sequences")
        if len(set(names)) != len(names):
            raise ValueError("Alignment contains duplicate sequence names")

        seq_lengths = {len(seq) for seq in sequences}
        if len(seq_lengths) > 1:
            raise ValueError(f"Sequences have different lengths: {seq_lengths}")

        return cls(
            names=list(names),
            sequences=cls._encode_nucleotides(sequences),
            n_species=len(names),
            n_sites=len(sequences[0]),
        )

    @staticmethod
    def _encode_nucleotides(sequences: list[str]) -> np.ndarray:
        """Encode DNA sequences as integer arrays (0=T, 1=C, 2=A, 3=G)."""
        n_sequences = len(sequences)
        n_sites = len(sequences[0])

        encoded = np.full((n_sequences, n_sites), UNKNOWN_CODE, dtype=np.int8)

        for i, seq in enumerate(sequences):
            for j, nucleotide in enumerate(seq):
                if nucleotide in NUCLEOTIDE_TO_INDEX:
                    encoded[i, j] = NUCLEOTIDE_TO_INDEX[nucleotide]

        return encoded

    def compress_patterns(self) -> PatternTable:
        """
        Collapse identical alignment columns into weighted site patterns.

        Returns
        -------
        PatternTable
            Distinct patterns with integer occurrence counts
        """
        patterns, site_to_pattern, counts = np.unique(
            self.sequences, axis=1, return_inverse=True, return_counts=True
        )
        site_to_pattern = np.asarray(site_to_pattern).reshape(-1)

        is_constant = np.zeros(patterns.shape[1], dtype=bool)
        for p in range(patterns.shape[1]):
            observed = patterns[:, p][patterns[:, p] >= 0]
            is_constant[p] = len(np.unique(observed)) <= 1

        return PatternTable(
            names=list(self.names),
            patterns=patterns,
            frequencies=counts.astype(np.int64),
            is_constant=is_constant,
            site_to_pattern=site_to_pattern,
        )

    def to_fasta(self, filepath: Path | str) -> None:
        """
        Write alignment to FASTA format file.

        Parameters
        ----------
        filepath : Path or str
            Output file path
        """
        filepath = Path(filepath)

        with open(filepath, 'w') as f:
            for name, encoded_seq in zip(self.names, self.sequences):
                f.write(f">{name}\n")
                seq = ''.join(INDEX_TO_NUCLEOTIDE.get(int(idx), '-') for idx in encoded_seq)
                for i in range(0, len(seq), 60):
                    f.write(seq[i:i+60] + '\n')

    def __repr__(self) -> str:
        return f"Alignment(n_species={self.n_species}, n_sites={self.n_sites})"
