"""
DE class assignment.

Each tested gene falls in one of four classes by FDR and direction:

    FDR <= cutoff, log2FC > 0  -> DE_UP
    FDR <= cutoff, log2FC < 0  -> DE_DOWN
    FDR >  cutoff, log2FC > 0  -> notDE_UP
    FDR >  cutoff, log2FC < 0  -> notDE_DOWN

Genes with a log2 fold change of exactly zero have no direction and are
left unclassified: ``classify_de_gene`` returns ``None`` and result tables
carry the ``unclassified`` label.
"""

from enum import Enum
from typing import Optional
import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

UNCLASSIFIED = "unclassified"


class DEClass(str, Enum):
    DE_UP = "DE_UP"
    DE_DOWN = "DE_DOWN"
    NOT_DE_UP = "notDE_UP"
    NOT_DE_DOWN = "notDE_DOWN"


def classify_de_gene(
    padj: float,
    log2fc: float,
    cutoff: float = 0.01
) -> Optional[DEClass]:
    """Class of a single gene, or None when the fold change is zero or missing."""
    if np.isnan(log2fc) or np.isnan(padj) or log2fc == 0:
        return None

    significant = padj <= cutoff
    if log2fc > 0:
        return DEClass.DE_UP if significant else DEClass.NOT_DE_UP
    return DEClass.DE_DOWN if significant else DEClass.NOT_DE_DOWN


def classify_de_results(table: pd.DataFrame, cutoff: float = 0.01) -> pd.DataFrame:
    """
    Add a ``de_class`` column to a DE result table.

    Parameters
    ----------
    table : pd.DataFrame
        DE results with ``padj`` and ``log2FoldChange`` columns
    cutoff : float
        FDR at or below which a gene counts as DE

    Returns
    -------
    pd.DataFrame
        Copy of ``table`` with ``de_class``: a DEClass value, or
        ``unclassified`` for genes without a direction
    """
    classified = table.copy()
    labels = [
        classify_de_gene(p, fc, cutoff)
        for p, fc in zip(table['padj'], table['log2FoldChange'])
    ]
    classified['de_class'] = [
        UNCLASSIFIED if label is None else label.value for label in labels
    ]

    unclassified = int((classified['de_class'] == UNCLASSIFIED).sum())
    if unclassified:
        logger.warning(f"{unclassified} genes with zero log2 fold change left unclassified")

    return classified


def summarize_de_classes(classified: pd.DataFrame) -> pd.DataFrame:
    """Number of genes in each DE class, plus unclassified."""
    rows = [
        {'de_class': de_class.value, 'n_genes': int((classified['de_class'] == de_class.value).sum())}
        for de_class in DEClass
    ]
    rows.append({
        'de_class': UNCLASSIFIED,
        'n_genes': int((classified['de_class'] == UNCLASSIFIED).sum())
    })
    return pd.DataFrame(rows)
