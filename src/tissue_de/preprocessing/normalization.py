"""
RNA-seq Filtering and Normalization
===================================

This module implements:
1. Low-expression gene filtering
2. TMM (Trimmed Mean of M-values) scale factors
3. CPM (Counts Per Million) and log-CPM
4. Per-donor average expression

Every function returns new objects; inputs are never modified.
"""

from dataclasses import dataclass
from typing import Optional
import logging

import numpy as np
import pandas as pd
from scipy import stats

from ..exceptions import MalformedInput

logger = logging.getLogger(__name__)


def filter_low_counts(
    counts_df: pd.DataFrame,
    min_count: int = 10,
    min_samples: int = 1
) -> pd.DataFrame:
    """
    Filter genes with low counts.

    Keep genes that have more than `min_count` reads in at least
    `min_samples` samples. Surviving genes keep their input order.
    """
    n_genes_before = counts_df.shape[0]

    keep = (counts_df > min_count).sum(axis=1) >= min_samples
    filtered_df = counts_df.loc[keep]

    n_genes_after = filtered_df.shape[0]
    logger.info(f"Filtered genes: {n_genes_before} -> {n_genes_after} "
                f"(removed {n_genes_before - n_genes_after})")

    return filtered_df


def library_sizes(counts_df: pd.DataFrame) -> pd.Series:
    """Column sums of the count matrix."""
    return counts_df.sum(axis=0).astype(float)


def _upper_quartile_reference(counts_df: pd.DataFrame, lib_sizes: pd.Series) -> str:
    # Sample whose upper quartile is closest to the mean upper quartile
    f75 = (counts_df / lib_sizes).quantile(0.75, axis=0)
    return (f75 - f75.mean()).abs().idxmin()


def _tmm_factor(
    obs: np.ndarray,
    ref: np.ndarray,
    lib_obs: float,
    lib_ref: float,
    logratio_trim: float,
    sum_trim: float
) -> float:
    with np.errstate(divide='ignore', invalid='ignore'):
        log_obs = np.log2(obs / lib_obs)
        log_ref = np.log2(ref / lib_ref)
        M = log_obs - log_ref
        A = 0.5 * (log_obs + log_ref)
        v = (lib_obs - obs) / lib_obs / obs + (lib_ref - ref) / lib_ref / ref

    finite = np.isfinite(M) & np.isfinite(A)
    M, A, v = M[finite], A[finite], v[finite]

    if len(M) == 0 or np.max(np.abs(M)) < 1e-6:
        return 1.0

    n = len(M)
    lo_l = np.floor(n * logratio_trim) + 1
    hi_l = n + 1 - lo_l
    lo_s = np.floor(n * sum_trim) + 1
    hi_s = n + 1 - lo_s

    rank_m = stats.rankdata(M)
    rank_a = stats.rankdata(A)
    keep = (
        (rank_m >= lo_l) & (rank_m <= hi_l) &
        (rank_a >= lo_s) & (rank_a <= hi_s)
    )

    if not keep.any():
        return 1.0

    # Precision-weighted mean of the trimmed log ratios
    f = np.sum(M[keep] / v[keep]) / np.sum(1 / v[keep])
    if not np.isfinite(f):
        return 1.0
    return float(2 ** f)


def calc_tmm_factors(
    counts_df: pd.DataFrame,
    logratio_trim: float = 0.3,
    sum_trim: float = 0.05
) -> pd.Series:
    """
    Calculate TMM (Trimmed Mean of M-values) normalization factors.

    Based on Robinson & Oshlack (2010) - edgeR method. The reference sample
    is the one whose upper quartile is closest to the mean upper quartile.
    Factors are rescaled so that their geometric mean is one.

    Parameters
    ----------
    counts_df : pd.DataFrame
        Count matrix (genes x samples)
    logratio_trim : float
        Fraction trimmed from each end of the M values
    sum_trim : float
        Fraction trimmed from each end of the A values

    Returns
    -------
    pd.Series
        TMM normalization factors for each sample
    """
    lib_sizes = library_sizes(counts_df)
    empty = lib_sizes.index[lib_sizes <= 0].tolist()
    if empty:
        raise MalformedInput(f"Samples with zero library size: {empty}")

    ref_idx = _upper_quartile_reference(counts_df, lib_sizes)
    ref_counts = counts_df[ref_idx].to_numpy(dtype=float)

    factors = {}
    for sample in counts_df.columns:
        factors[sample] = _tmm_factor(
            counts_df[sample].to_numpy(dtype=float),
            ref_counts,
            lib_sizes[sample],
            lib_sizes[ref_idx],
            logratio_trim,
            sum_trim
        )

    factors = pd.Series(factors, name='norm_factor')
    factors = factors / np.exp(np.mean(np.log(factors)))

    logger.info(f"TMM factors computed against reference sample {ref_idx}")
    return factors


def cpm(
    counts_df: pd.DataFrame,
    norm_factors: Optional[pd.Series] = None
) -> pd.DataFrame:
    """
    Calculate Counts Per Million.

    Parameters
    ----------
    counts_df : pd.DataFrame
        Count matrix (genes x samples)
    norm_factors : pd.Series, optional
        Per-sample scale factors; effective library size is
        library size times factor

    Returns
    -------
    pd.DataFrame
        CPM normalized counts
    """
    lib_sizes = library_sizes(counts_df)
    if norm_factors is not None:
        lib_sizes = lib_sizes * norm_factors.loc[counts_df.columns]

    return counts_df * 1e6 / lib_sizes


def log_cpm(
    counts_df: pd.DataFrame,
    norm_factors: Optional[pd.Series] = None,
    prior_count: float = 2
) -> pd.DataFrame:
    """Return log2(CPM + prior_count)."""
    return np.log2(cpm(counts_df, norm_factors) + prior_count)


def donor_averages(
    cpm_df: pd.DataFrame,
    metadata: pd.DataFrame,
    donor_col: str = 'Donor'
) -> pd.DataFrame:
    """
    Average CPM across each donor's samples.

    Parameters
    ----------
    cpm_df : pd.DataFrame
        CPM matrix (genes x samples)
    metadata : pd.DataFrame
        Sample metadata indexed by sample id

    Returns
    -------
    pd.DataFrame
        Genes x donors, one column per donor present
    """
    donors = metadata.loc[cpm_df.columns, donor_col]
    averages = cpm_df.T.groupby(donors.values).mean().T
    averages.columns.name = donor_col
    return averages


@dataclass(frozen=True)
class NormalizationResult:
    """Filtered counts with their library sizes and TMM factors."""

    counts: pd.DataFrame
    library_sizes: pd.Series
    norm_factors: pd.Series

    @property
    def effective_library_sizes(self) -> pd.Series:
        return self.library_sizes * self.norm_factors

    def cpm(self) -> pd.DataFrame:
        return cpm(self.counts, self.norm_factors)

    def log_cpm(self, prior_count: float = 2) -> pd.DataFrame:
        return log_cpm(self.counts, self.norm_factors, prior_count)


class RNAseqNormalizer:
    """Filter and TMM-normalize RNA-seq count data."""

    def __init__(
        self,
        counts_df: pd.DataFrame,
        min_count: int = 10,
        min_samples: int = 1
    ):
        """
        Initialize normalizer with counts DataFrame.

        Parameters
        ----------
        counts_df : pd.DataFrame
            Raw counts matrix (genes x samples)
        min_count : int
            Count a sample must exceed for the gene to be considered expressed
        min_samples : int
            Number of samples in which a gene must be expressed
        """
        self.counts_df = counts_df
        self.min_count = min_count
        self.min_samples = min_samples

    def run(self) -> NormalizationResult:
        """Filter low-count genes and compute TMM factors on the survivors."""
        filtered = filter_low_counts(self.counts_df, self.min_count, self.min_samples)
        if filtered.empty:
            raise MalformedInput(
                f"No genes pass the filter (count > {self.min_count} "
                f"in >= {self.min_samples} samples)"
            )

        factors = calc_tmm_factors(filtered)

        logger.info("TMM normalization complete")
        return NormalizationResult(
            counts=filtered,
            library_sizes=library_sizes(filtered),
            norm_factors=factors,
        )
