"""
RNA-seq Data Loader
===================

This module handles:
1. Loading the tab-delimited counts matrix (genes x samples)
2. Loading the tab-delimited sample metadata (Donor, Tissue)
3. Structural validation of both tables
4. Checking that count columns and metadata rows describe the same samples
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import logging

import numpy as np
import pandas as pd

from ..exceptions import MalformedInput, SchemaMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpressionDataset:
    """Aligned count matrix and sample metadata."""

    counts: pd.DataFrame
    metadata: pd.DataFrame

    @property
    def n_genes(self) -> int:
        return self.counts.shape[0]

    @property
    def n_samples(self) -> int:
        return self.counts.shape[1]


def _read_table(path: Path, what: str) -> pd.DataFrame:
    # header=None keeps duplicated column names visible instead of mangled
    try:
        raw = pd.read_csv(path, sep='\t', header=None, dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise MalformedInput(f"Could not parse {what} file {path}: {e}") from e

    if raw.shape[1] < 2:
        raise MalformedInput(
            f"{what.capitalize()} file {path} has fewer than two tab-delimited columns"
        )

    df = raw.iloc[1:].reset_index(drop=True)
    df.columns = [str(c).strip() for c in raw.iloc[0]]
    return df


def parse_counts(raw: pd.DataFrame) -> pd.DataFrame:
    """
    Convert a raw string table into a validated integer count matrix.

    Parameters
    ----------
    raw : pd.DataFrame
        Table whose first column holds gene identifiers and whose remaining
        columns hold counts, one per sample

    Returns
    -------
    pd.DataFrame
        Count matrix (genes x samples), int64
    """
    gene_col = raw.columns[0]
    sample_ids = [str(c).strip() for c in raw.columns[1:]]

    if any(s == '' for s in sample_ids):
        raise MalformedInput("Counts header contains blank sample identifiers")
    duplicated_samples = pd.Index(sample_ids)[pd.Index(sample_ids).duplicated()]
    if len(duplicated_samples) > 0:
        raise MalformedInput(f"Duplicate sample identifiers: {duplicated_samples.tolist()}")

    genes = raw.iloc[:, 0].astype(str).str.strip()
    if (genes == '').any():
        raise MalformedInput("Counts file contains blank gene identifiers")
    duplicated_genes = genes[genes.duplicated()]
    if len(duplicated_genes) > 0:
        raise MalformedInput(
            f"Duplicate gene identifiers: {duplicated_genes.unique()[:10].tolist()}"
        )

    values = raw.iloc[:, 1:].apply(lambda col: col.str.strip())
    numeric = values.apply(pd.to_numeric, errors='coerce')

    bad = numeric.isna()
    if bad.any().any():
        row, col = np.argwhere(bad.values)[0]
        raise MalformedInput(
            f"Non-numeric count '{values.iat[row, col]}' for gene "
            f"'{genes.iat[row]}', sample '{sample_ids[col]}'"
        )

    matrix = numeric.to_numpy(dtype=float)
    if not np.all(np.isfinite(matrix)):
        raise MalformedInput("Counts contain non-finite values")
    if np.any(matrix != np.round(matrix)):
        row, col = np.argwhere(matrix != np.round(matrix))[0]
        raise MalformedInput(
            f"Non-integer count {matrix[row, col]} for gene "
            f"'{genes.iat[row]}', sample '{sample_ids[col]}'"
        )
    if np.any(matrix < 0):
        raise MalformedInput("Counts must be non-negative")

    counts = pd.DataFrame(
        matrix.astype(np.int64),
        index=pd.Index(genes.values, name=str(gene_col).strip() or 'gene'),
        columns=pd.Index(sample_ids, name='sample'),
    )
    return counts


def parse_metadata(
    raw: pd.DataFrame,
    sample_col: str = 'Sample',
    donor_col: str = 'Donor',
    tissue_col: str = 'Tissue'
) -> pd.DataFrame:
    """
    Validate sample metadata and index it by sample identifier.

    Returns
    -------
    pd.DataFrame
        One row per sample with at least ``donor_col`` and ``tissue_col``
    """
    raw = raw.rename(columns=lambda c: str(c).strip())
    missing = [c for c in (sample_col, donor_col, tissue_col) if c not in raw.columns]
    if missing:
        raise MalformedInput(f"Metadata is missing required columns: {missing}")

    metadata = raw.apply(lambda col: col.str.strip())
    for col in (sample_col, donor_col, tissue_col):
        if (metadata[col].isna() | (metadata[col] == '')).any():
            raise MalformedInput(f"Metadata column '{col}' has blank values")

    duplicated = metadata[sample_col][metadata[sample_col].duplicated()]
    if len(duplicated) > 0:
        raise MalformedInput(f"Duplicate sample identifiers in metadata: {duplicated.tolist()}")

    return metadata.set_index(sample_col)


def validate_alignment(counts: pd.DataFrame, metadata: pd.DataFrame) -> pd.DataFrame:
    """
    Check that every count column has metadata and vice versa.

    Returns
    -------
    pd.DataFrame
        Metadata reordered to the count matrix column order
    """
    count_samples = set(counts.columns)
    meta_samples = set(metadata.index)

    without_metadata = sorted(count_samples - meta_samples)
    without_counts = sorted(meta_samples - count_samples)
    if without_metadata or without_counts:
        raise SchemaMismatch(
            f"Samples without metadata: {without_metadata}; "
            f"metadata rows without counts: {without_counts}"
        )

    return metadata.loc[counts.columns]


class RNAseqDataLoader:
    """Load and validate a counts matrix together with its sample metadata."""

    def __init__(
        self,
        counts_file: str,
        metadata_file: str,
        sample_col: str = 'Sample',
        donor_col: str = 'Donor',
        tissue_col: str = 'Tissue'
    ):
        self.counts_file = Path(counts_file)
        self.metadata_file = Path(metadata_file)
        self.sample_col = sample_col
        self.donor_col = donor_col
        self.tissue_col = tissue_col

    def load_counts(self) -> pd.DataFrame:
        """Load counts matrix from file."""
        logger.info(f"Loading counts from {self.counts_file}")

        counts = parse_counts(_read_table(self.counts_file, 'counts'))

        logger.info(f"Loaded {counts.shape[0]} genes x {counts.shape[1]} samples")
        return counts

    def load_metadata(self) -> pd.DataFrame:
        """Load sample metadata from file."""
        logger.info(f"Loading sample metadata from {self.metadata_file}")

        metadata = parse_metadata(
            _read_table(self.metadata_file, 'metadata'),
            sample_col=self.sample_col,
            donor_col=self.donor_col,
            tissue_col=self.tissue_col,
        )

        logger.info(
            f"Parsed metadata for {len(metadata)} samples: "
            f"donors={sorted(metadata[self.donor_col].unique())}, "
            f"tissues={sorted(metadata[self.tissue_col].unique())}"
        )
        return metadata

    def load(self) -> ExpressionDataset:
        """Load both tables and verify they describe the same samples."""
        counts = self.load_counts()
        metadata = validate_alignment(counts, self.load_metadata())
        return ExpressionDataset(counts=counts, metadata=metadata)


def compare_library_sizes(counts_df: pd.DataFrame) -> pd.DataFrame:
    """
    Compare library sizes across samples.

    Parameters
    ----------
    counts_df : pd.DataFrame
        Raw counts matrix

    Returns
    -------
    pd.DataFrame
        Library size statistics
    """
    lib_sizes = counts_df.sum(axis=0)

    stats_df = pd.DataFrame({
        'sample_id': lib_sizes.index,
        'total_counts': lib_sizes.values,
        'detected_genes': (counts_df > 0).sum(axis=0).values,
        'mean_count': counts_df.mean(axis=0).values,
        'median_count': counts_df.median(axis=0).values
    })

    return stats_df
