"""
Sample projection (PCA / MDS) module.
"""

from .projection import (
    MDSResult,
    PCAResult,
    classical_mds,
    leading_logfc_distances,
    run_mds,
    run_pca
)

__all__ = [
    'MDSResult',
    'PCAResult',
    'classical_mds',
    'leading_logfc_distances',
    'run_mds',
    'run_pca'
]
