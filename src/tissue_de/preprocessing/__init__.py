"""
Preprocessing module for RNA-seq analysis.
"""

from .data_loader import (
    ExpressionDataset,
    RNAseqDataLoader,
    compare_library_sizes,
    validate_alignment
)
from .normalization import (
    NormalizationResult,
    RNAseqNormalizer,
    calc_tmm_factors,
    cpm,
    donor_averages,
    filter_low_counts,
    log_cpm
)

__all__ = [
    'ExpressionDataset',
    'RNAseqDataLoader',
    'compare_library_sizes',
    'validate_alignment',
    'NormalizationResult',
    'RNAseqNormalizer',
    'calc_tmm_factors',
    'cpm',
    'donor_averages',
    'filter_low_counts',
    'log_cpm'
]
