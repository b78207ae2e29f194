"""
Tissue RNA-seq Expression Analysis
==================================

Exploratory analysis of a gene x sample count matrix with donor and tissue
annotations:
- preprocessing: loading, filtering, TMM normalization, CPM
- expression_patterns: donor (individual) specificity classes
- dimensionality: PCA and MDS of samples
- de_analysis: negative binomial exact test and DE classes
- overlap: DE genes versus individual-pattern genes
- pipeline: end-to-end run and command line entry point
"""

__version__ = "1.0.0"
