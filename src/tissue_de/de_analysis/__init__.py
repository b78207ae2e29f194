"""
Differential Expression Analysis module.
"""

from .de_classes import (
    UNCLASSIFIED,
    DEClass,
    classify_de_gene,
    classify_de_results,
    summarize_de_classes
)
from .differential_expression import (
    DEAnalysis,
    DEResult,
    get_top_genes,
    significant_genes,
    summarize_de
)

__all__ = [
    'DEClass',
    'UNCLASSIFIED',
    'classify_de_gene',
    'classify_de_results',
    'summarize_de_classes',
    'DEAnalysis',
    'DEResult',
    'get_top_genes',
    'significant_genes',
    'summarize_de'
]
