"""
DE / individual-pattern overlap module.
"""

from .overlap_analysis import OVERLAP_CATEGORIES, analyze_overlap, percentage

__all__ = ['OVERLAP_CATEGORIES', 'analyze_overlap', 'percentage']
