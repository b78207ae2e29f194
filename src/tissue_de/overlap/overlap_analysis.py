"""
Overlap between differentially expressed genes and donor-pattern genes.
"""

from typing import Iterable, Sequence
import logging

import pandas as pd

from ..exceptions import EmptyDenominator
from ..expression_patterns import ExpressionClass, genes_in_class

logger = logging.getLogger(__name__)

OVERLAP_CATEGORIES = (
    ExpressionClass.INDIVIDUAL_SPECIFIC,
    ExpressionClass.INDIVIDUAL_ELEVATED,
)


def percentage(part: int, whole: int) -> float:
    """``part`` as a percentage of ``whole``; raises EmptyDenominator when whole is 0."""
    if whole == 0:
        raise EmptyDenominator(f"Cannot express {part} as a percentage of an empty set")
    return part / whole * 100


def analyze_overlap(
    de_genes: Iterable[str],
    classes: pd.DataFrame,
    categories: Sequence[ExpressionClass] = OVERLAP_CATEGORIES
) -> pd.DataFrame:
    """
    Intersect the significant DE genes with each individual-pattern category.

    Parameters
    ----------
    de_genes : Iterable[str]
        Significant DE genes
    classes : pd.DataFrame
        Individual-pattern classes with an ``expression_class`` column
    categories : Sequence[ExpressionClass]
        Pattern categories to report

    Returns
    -------
    pd.DataFrame
        One row per category with n_de_genes, n_category, n_overlap and
        percent_of_de (0 when there are no DE genes)
    """
    de_set = set(de_genes)

    rows = []
    for category in categories:
        category_genes = set(genes_in_class(classes, category))
        n_overlap = len(de_set & category_genes)
        try:
            pct = percentage(n_overlap, len(de_set))
        except EmptyDenominator:
            logger.warning(f"No DE genes; reporting 0% overlap with {category.value}")
            pct = 0.0

        rows.append({
            'category': category.value,
            'n_de_genes': len(de_set),
            'n_category': len(category_genes),
            'n_overlap': n_overlap,
            'percent_of_de': pct
        })

    summary = pd.DataFrame(rows)
    logger.info(
        "Overlap with DE genes: "
        + ", ".join(f"{r['category']}={r['n_overlap']} ({r['percent_of_de']:.1f}%)" for r in rows)
    )
    return summary
