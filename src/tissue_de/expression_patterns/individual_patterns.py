"""
Individual-Pattern Classification
=================================

Labels each gene by how concentrated its expression is in a single donor,
using the per-donor average CPM table:

1. max >= specific_ratio * max(others)  -> individual_specific
2. max >= elevated_ratio * mean(others) -> individual_elevated
3. otherwise                            -> not_elevated

``others`` are the donor averages left after removing one occurrence of the
maximum, so the labels do not depend on donor column order.
"""

from enum import Enum
import logging

import numpy as np
import pandas as pd

from ..exceptions import InsufficientDonors

logger = logging.getLogger(__name__)


class ExpressionClass(str, Enum):
    INDIVIDUAL_SPECIFIC = "individual_specific"
    INDIVIDUAL_ELEVATED = "individual_elevated"
    NOT_ELEVATED = "not_elevated"


def classify_donor_profile(
    max_value: float,
    max_others: float,
    avg_others: float,
    specific_ratio: float = 4.0,
    elevated_ratio: float = 2.0
) -> ExpressionClass:
    """Classify one gene from its top donor average and the remaining donors."""
    if max_value <= 0:
        return ExpressionClass.NOT_ELEVATED
    if max_value >= specific_ratio * max_others:
        return ExpressionClass.INDIVIDUAL_SPECIFIC
    if max_value >= elevated_ratio * avg_others:
        return ExpressionClass.INDIVIDUAL_ELEVATED
    return ExpressionClass.NOT_ELEVATED


def classify_individual_patterns(
    donor_avg: pd.DataFrame,
    specific_ratio: float = 4.0,
    elevated_ratio: float = 2.0
) -> pd.DataFrame:
    """
    Classify every gene of a donor-average table.

    Parameters
    ----------
    donor_avg : pd.DataFrame
        Genes x donors table of mean CPM
    specific_ratio : float
        Fold over the second-highest donor required for individual_specific
    elevated_ratio : float
        Fold over the mean of the other donors required for individual_elevated

    Returns
    -------
    pd.DataFrame
        Per gene: max_donor, max_avg, max_others, avg_others and
        expression_class (the ExpressionClass value as a plain string)
    """
    n_donors = donor_avg.shape[1]
    if n_donors < 2:
        raise InsufficientDonors(
            f"Individual-pattern classification needs at least 2 donors, got {n_donors}"
        )

    values = donor_avg.to_numpy(dtype=float)
    # NaN sorts last, so descending order puts missing donors at the end
    ordered = -np.sort(-values, axis=1)

    max_avg = ordered[:, 0]
    max_others = ordered[:, 1]
    avg_others = np.nanmean(ordered[:, 1:], axis=1)

    # Rows with no finite donor average have no max donor
    missing = np.isnan(values).all(axis=1)
    top = np.where(np.isnan(values), -np.inf, values).argmax(axis=1)
    max_donor = pd.Series(donor_avg.columns[top], index=donor_avg.index).where(~missing)

    labels = [
        classify_donor_profile(m, mo, ao, specific_ratio, elevated_ratio)
        for m, mo, ao in zip(max_avg, max_others, avg_others)
    ]

    classes = pd.DataFrame({
        'max_donor': max_donor,
        'max_avg': max_avg,
        'max_others': max_others,
        'avg_others': avg_others,
        'expression_class': [label.value for label in labels],
    }, index=donor_avg.index)

    counts = classes['expression_class'].value_counts().to_dict()
    logger.info(f"Individual-pattern classes over {len(classes)} genes: {counts}")

    return classes


def genes_in_class(classes: pd.DataFrame, expression_class: ExpressionClass) -> pd.Index:
    """Genes labelled with the given expression class."""
    return classes.index[classes['expression_class'] == ExpressionClass(expression_class).value]


def summarize_expression_classes(classes: pd.DataFrame) -> pd.DataFrame:
    """Number and percentage of genes in each expression class."""
    total = len(classes)
    rows = []
    for expression_class in ExpressionClass:
        n = int((classes['expression_class'] == expression_class.value).sum())
        rows.append({
            'expression_class': expression_class.value,
            'n_genes': n,
            'percent': n / total * 100 if total else 0.0
        })
    return pd.DataFrame(rows)
