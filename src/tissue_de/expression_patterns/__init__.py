"""
Individual-pattern (donor specificity) classification module.
"""

from .individual_patterns import (
    ExpressionClass,
    classify_donor_profile,
    classify_individual_patterns,
    genes_in_class,
    summarize_expression_classes
)

__all__ = [
    'ExpressionClass',
    'classify_donor_profile',
    'classify_individual_patterns',
    'genes_in_class',
    'summarize_expression_classes'
]
