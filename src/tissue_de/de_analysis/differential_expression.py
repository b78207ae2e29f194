"""
Differential Expression Analysis
================================

Tissue-versus-tissue differential expression with a negative binomial
model, following the classic edgeR workflow:

1. Common dispersion by conditional maximum likelihood
2. Tagwise dispersion shrunk toward the common estimate
3. Exact test on library-size-equalized pseudo-counts
4. Benjamini-Hochberg FDR

log2 fold changes are first tissue over second tissue of the pair, so a
positive value means higher expression in the first listed tissue.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

from ..exceptions import InsufficientReplicates, MalformedInput, SchemaMismatch
from ..preprocessing.normalization import calc_tmm_factors
from .dispersion import (
    equalize_lib_sizes,
    estimate_common_dispersion,
    estimate_tagwise_dispersion,
    one_group_abundance
)
from .exact_test import exact_test_double_tail

logger = logging.getLogger(__name__)

MIN_REPLICATES = 2
AVE_LOG_CPM_PRIOR = 2


@dataclass(frozen=True)
class DEResult:
    """Per-gene test results for one tissue pair."""

    table: pd.DataFrame
    tissue_pair: Tuple[str, str]
    common_dispersion: float
    n_samples: Tuple[int, int]

    @property
    def name(self) -> str:
        return f"{self.tissue_pair[0]}_vs_{self.tissue_pair[1]}"

    def significant_genes(self, alpha: float = 0.05) -> pd.Index:
        return significant_genes(self, alpha)


class DEAnalysis:
    """Differential Expression Analysis between two tissues."""

    def __init__(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        tissue_col: str = 'Tissue',
        norm_factors: Optional[pd.Series] = None,
        prior_df: float = 10,
        big_count: int = 900,
        prior_count: float = 0.125
    ):
        """
        Initialize DE analysis.

        Parameters
        ----------
        counts : pd.DataFrame
            Filtered count matrix (genes x samples)
        metadata : pd.DataFrame
            Sample metadata indexed by sample id, with a tissue column
        tissue_col : str
            Column name for tissue
        norm_factors : pd.Series, optional
            TMM factors per sample; computed on the compared samples if omitted
        prior_df : float
            Prior degrees of freedom for tagwise dispersion shrinkage
        big_count : int
            Threshold above which the exact test uses a beta approximation
        prior_count : float
            Average count added to each sample when computing fold changes
        """
        if tissue_col not in metadata.columns:
            raise MalformedInput(f"Metadata has no '{tissue_col}' column")
        missing = sorted(set(counts.columns) - set(metadata.index))
        if missing:
            raise SchemaMismatch(f"Samples without metadata: {missing}")
        if norm_factors is not None:
            missing = sorted(set(counts.columns) - set(norm_factors.index))
            if missing:
                raise SchemaMismatch(f"Samples without normalization factors: {missing}")

        self.counts = counts
        self.metadata = metadata
        self.tissue_col = tissue_col
        self.norm_factors = norm_factors
        self.prior_df = prior_df
        self.big_count = big_count
        self.prior_count = prior_count

    def _group_samples(self, tissue: str) -> list:
        tissues = self.metadata.loc[self.counts.columns, self.tissue_col]
        samples = tissues.index[tissues == tissue].tolist()
        if len(samples) < MIN_REPLICATES:
            raise InsufficientReplicates(
                f"Tissue '{tissue}' has {len(samples)} samples; "
                f"at least {MIN_REPLICATES} are needed to estimate dispersion"
            )
        return samples

    def _log_fold_change(
        self,
        y: np.ndarray,
        lib: np.ndarray,
        in_a: np.ndarray,
        dispersion: np.ndarray
    ) -> np.ndarray:
        # Prior count proportional to library size
        prior = self.prior_count * lib / lib.mean()
        abundance_a = one_group_abundance(
            y[:, in_a] + prior[in_a], lib[in_a] + 2 * prior[in_a], dispersion
        )
        abundance_b = one_group_abundance(
            y[:, ~in_a] + prior[~in_a], lib[~in_a] + 2 * prior[~in_a], dispersion
        )
        return (abundance_a - abundance_b) / np.log(2)

    def run_exact_test(
        self,
        tissue_pair: Sequence[str],
        alpha: float = 0.05
    ) -> DEResult:
        """
        Run the negative binomial exact test between two tissues.

        Parameters
        ----------
        tissue_pair : Sequence[str]
            (first, second) tissue; fold changes are first over second
        alpha : float
            FDR threshold used for the logged summary

        Returns
        -------
        DEResult
            Table with log2FoldChange, logCPM, dispersion, pvalue, padj
        """
        tissue_a, tissue_b = tissue_pair
        if tissue_a == tissue_b:
            raise MalformedInput(f"Cannot compare tissue '{tissue_a}' with itself")

        logger.info(f"Running exact test: {tissue_a} vs {tissue_b}")

        samples_a = self._group_samples(tissue_a)
        samples_b = self._group_samples(tissue_b)
        samples = samples_a + samples_b
        counts = self.counts[samples]

        if self.norm_factors is not None:
            factors = self.norm_factors.loc[samples]
        else:
            factors = calc_tmm_factors(counts)

        lib = (counts.sum(axis=0) * factors).to_numpy(dtype=float)
        groups = np.array([tissue_a] * len(samples_a) + [tissue_b] * len(samples_b))
        in_a = groups == tissue_a

        y_all = counts.to_numpy(dtype=float)
        tested = y_all.sum(axis=1) > 0
        y = y_all[tested]

        common = estimate_common_dispersion(y, groups, lib)

        # Average log2 CPM, also the abundance ordering for the dispersion trend
        ave_prior = AVE_LOG_CPM_PRIOR * lib / lib.mean()
        ave = one_group_abundance(y + ave_prior, lib + 2 * ave_prior, common)
        log_cpm = (ave + np.log(1e6)) / np.log(2)

        tagwise = estimate_tagwise_dispersion(
            y, groups, lib, common, abundance=log_cpm, prior_df=self.prior_df
        )

        pseudo = equalize_lib_sizes(y, groups, lib, tagwise)
        pvalues = exact_test_double_tail(
            pseudo[:, in_a].sum(axis=1),
            pseudo[:, ~in_a].sum(axis=1),
            int(in_a.sum()),
            int((~in_a).sum()),
            tagwise,
            big_count=self.big_count
        )
        log2fc = self._log_fold_change(y, lib, in_a, tagwise)

        n_genes = len(counts)
        table = pd.DataFrame({
            'log2FoldChange': np.zeros(n_genes),
            'logCPM': np.full(n_genes, np.nan),
            'dispersion': np.full(n_genes, np.nan),
            'pvalue': np.ones(n_genes),
        }, index=counts.index)
        table.loc[tested, 'log2FoldChange'] = log2fc
        table.loc[tested, 'logCPM'] = log_cpm
        table.loc[tested, 'dispersion'] = tagwise
        table.loc[tested, 'pvalue'] = pvalues

        # Multiple testing correction (Benjamini-Hochberg)
        _, padj, _, _ = multipletests(table['pvalue'], method='fdr_bh')
        table['padj'] = padj

        logger.info(
            f"Found {(table['padj'] < alpha).sum()} significant genes "
            f"(padj < {alpha}) out of {n_genes}"
        )

        return DEResult(
            table=table,
            tissue_pair=(tissue_a, tissue_b),
            common_dispersion=common,
            n_samples=(len(samples_a), len(samples_b)),
        )


def significant_genes(de_result: DEResult, alpha: float = 0.05) -> pd.Index:
    """Genes with FDR below ``alpha``, in table order."""
    table = de_result.table
    return table.index[table['padj'] < alpha]


def get_top_genes(
    de_result: DEResult,
    n_top: int = 50,
    by: str = 'padj'
) -> pd.DataFrame:
    """Get top differentially expressed genes."""
    return de_result.table.nsmallest(n_top, by)


def summarize_de(de_result: DEResult, alpha: float = 0.05) -> pd.DataFrame:
    """Counts of significant, up and down genes for one comparison."""
    table = de_result.table
    sig = table['padj'] < alpha
    return pd.DataFrame([{
        'comparison': de_result.name,
        'n_tested': len(table),
        'n_significant': int(sig.sum()),
        'n_up': int((sig & (table['log2FoldChange'] > 0)).sum()),
        'n_down': int((sig & (table['log2FoldChange'] < 0)).sum()),
        'common_dispersion': de_result.common_dispersion
    }])
