"""Tests for DE / individual-pattern overlap."""

import pandas as pd
import pytest

from tissue_de.exceptions import EmptyDenominator
from tissue_de.expression_patterns import ExpressionClass, classify_individual_patterns
from tissue_de.overlap import analyze_overlap, percentage


@pytest.fixture
def classes():
    return pd.DataFrame(
        {
            'expression_class': [
                ExpressionClass.INDIVIDUAL_SPECIFIC.value,
                ExpressionClass.INDIVIDUAL_SPECIFIC.value,
                ExpressionClass.INDIVIDUAL_ELEVATED.value,
                ExpressionClass.NOT_ELEVATED.value,
                ExpressionClass.NOT_ELEVATED.value,
            ]
        },
        index=['A', 'B', 'C', 'D', 'E'],
    )


def test_percentage():
    assert percentage(1, 4) == 25.0
    assert percentage(0, 3) == 0.0
    with pytest.raises(EmptyDenominator):
        percentage(0, 0)


def test_overlap_counts(classes):
    summary = analyze_overlap(['A', 'C', 'D', 'Z'], classes).set_index('category')

    specific = summary.loc['individual_specific']
    assert specific['n_de_genes'] == 4
    assert specific['n_category'] == 2
    assert specific['n_overlap'] == 1
    assert specific['percent_of_de'] == pytest.approx(25.0)

    elevated = summary.loc['individual_elevated']
    assert elevated['n_category'] == 1
    assert elevated['n_overlap'] == 1


def test_percent_never_exceeds_100(classes):
    summary = analyze_overlap(['A', 'B'], classes)
    assert (summary['percent_of_de'] <= 100).all()
    assert summary.set_index('category').loc['individual_specific', 'percent_of_de'] == 100.0


def test_duplicate_de_genes_counted_once(classes):
    summary = analyze_overlap(['A', 'A', 'B'], classes).set_index('category')
    assert summary.loc['individual_specific', 'n_de_genes'] == 2


def test_empty_de_set_reports_zero(classes):
    summary = analyze_overlap([], classes)
    assert (summary['n_overlap'] == 0).all()
    assert (summary['percent_of_de'] == 0.0).all()


def test_overlap_with_classified_donor_table():
    donor_avg = pd.DataFrame(
        {'S7': [100.0, 10.0], 'S12': [5.0, 8.0], 'S13': [4.0, 9.0]},
        index=['GA', 'GB'],
    )
    classes = classify_individual_patterns(donor_avg)

    summary = analyze_overlap(['GA'], classes).set_index('category')
    specific = summary.loc['individual_specific']
    assert specific['n_category'] == 1
    assert specific['n_overlap'] == 1
    assert specific['percent_of_de'] == 100.0
