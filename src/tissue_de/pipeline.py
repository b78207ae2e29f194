"""
Tissue RNA-seq Analysis Pipeline
================================

Main pipeline script that orchestrates:
1. Data loading and validation
2. Filtering and TMM normalization
3. CPM and per-donor averages
4. Individual-pattern classification
5. PCA and MDS of samples
6. Differential expression between two tissues
7. DE classes and overlap with individual-pattern genes

Usage:
    tissue-de --counts counts.tsv --metadata samples.tsv --config configs/config.yaml
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional
import argparse
import json
import logging

import pandas as pd

from .config import AnalysisConfig
from .de_analysis import (
    DEAnalysis,
    DEResult,
    classify_de_results,
    summarize_de,
    summarize_de_classes
)
from .dimensionality import MDSResult, PCAResult, run_mds, run_pca
from .exceptions import AnalysisError
from .expression_patterns import classify_individual_patterns, summarize_expression_classes
from .overlap import analyze_overlap
from .preprocessing import (
    ExpressionDataset,
    NormalizationResult,
    RNAseqDataLoader,
    RNAseqNormalizer,
    compare_library_sizes,
    donor_averages
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResults:
    """Every table derived in one run."""

    dataset: ExpressionDataset
    normalization: NormalizationResult
    cpm: pd.DataFrame
    log_cpm: pd.DataFrame
    donor_averages: pd.DataFrame
    expression_classes: pd.DataFrame
    pca: PCAResult
    mds: MDSResult
    de_result: DEResult
    de_table: pd.DataFrame
    de_genes: pd.Index
    overlap: pd.DataFrame


class TissueDEPipeline:
    """Exploratory tissue differential expression pipeline."""

    def __init__(
        self,
        counts_file: str,
        metadata_file: str,
        config: Optional[AnalysisConfig] = None,
        donor_col: str = 'Donor',
        tissue_col: str = 'Tissue',
        sample_col: str = 'Sample'
    ):
        """
        Initialize pipeline.

        Parameters
        ----------
        counts_file : str
            Tab-delimited counts (first column gene id, one column per sample)
        metadata_file : str
            Tab-delimited sample metadata with sample id, Donor and Tissue
        config : AnalysisConfig, optional
            Thresholds; defaults used when omitted
        """
        self.counts_file = counts_file
        self.metadata_file = metadata_file
        self.config = config or AnalysisConfig()
        self.donor_col = donor_col
        self.tissue_col = tissue_col
        self.sample_col = sample_col

    def step1_load_data(self) -> ExpressionDataset:
        """Load and validate raw data."""
        logger.info("=== Step 1: Loading Data ===")

        loader = RNAseqDataLoader(
            self.counts_file,
            self.metadata_file,
            sample_col=self.sample_col,
            donor_col=self.donor_col,
            tissue_col=self.tissue_col
        )
        return loader.load()

    def step2_filter_and_normalize(self, dataset: ExpressionDataset) -> NormalizationResult:
        """Filter low counts and compute TMM factors."""
        logger.info("=== Step 2: Filtering and Normalization ===")

        filtering = self.config.filtering
        normalizer = RNAseqNormalizer(
            dataset.counts,
            min_count=filtering.min_count,
            min_samples=filtering.min_samples
        )
        return normalizer.run()

    def step3_individual_patterns(
        self,
        dataset: ExpressionDataset,
        normalization: NormalizationResult
    ):
        """CPM, donor averages and individual-pattern classes."""
        logger.info("=== Step 3: Individual Expression Patterns ===")

        cpm_df = normalization.cpm()
        donor_avg = donor_averages(cpm_df, dataset.metadata, donor_col=self.donor_col)

        classification = self.config.classification
        classes = classify_individual_patterns(
            donor_avg,
            specific_ratio=classification.specific_ratio,
            elevated_ratio=classification.elevated_ratio
        )
        return cpm_df, donor_avg, classes

    def step4_projections(self, normalization: NormalizationResult):
        """PCA and MDS on log-CPM."""
        logger.info("=== Step 4: Sample Projections ===")

        projection = self.config.projection
        log_cpm_df = normalization.log_cpm(prior_count=projection.prior_count)
        pca = run_pca(log_cpm_df)
        mds = run_mds(log_cpm_df, top=projection.top_genes)
        return log_cpm_df, pca, mds

    def step5_differential_expression(
        self,
        dataset: ExpressionDataset,
        normalization: NormalizationResult
    ):
        """Exact test between the configured tissues and DE classes."""
        logger.info("=== Step 5: Differential Expression Analysis ===")

        de_config = self.config.differential_expression
        de = DEAnalysis(
            normalization.counts,
            dataset.metadata,
            tissue_col=self.tissue_col,
            norm_factors=normalization.norm_factors,
            prior_df=de_config.prior_df,
            big_count=de_config.big_count,
            prior_count=de_config.prior_count
        )
        de_result = de.run_exact_test(
            de_config.tissue_pair,
            alpha=de_config.significance_cutoff_degs
        )
        de_table = classify_de_results(
            de_result.table,
            cutoff=de_config.significance_cutoff_classes
        )
        de_genes = de_result.significant_genes(de_config.significance_cutoff_degs)

        logger.info(f"\nDE class counts:\n{summarize_de_classes(de_table)}")
        return de_result, de_table, de_genes

    def step6_overlap(self, de_genes: pd.Index, classes: pd.DataFrame) -> pd.DataFrame:
        """Overlap of DE genes with individual-pattern genes."""
        logger.info("=== Step 6: Overlap Analysis ===")
        return analyze_overlap(de_genes, classes)

    def run(self) -> PipelineResults:
        """Run the complete analysis pipeline."""
        logger.info("=" * 60)
        logger.info("Starting Tissue RNA-seq Analysis Pipeline")
        logger.info("=" * 60)

        start_time = datetime.now()

        dataset = self.step1_load_data()
        normalization = self.step2_filter_and_normalize(dataset)
        cpm_df, donor_avg, classes = self.step3_individual_patterns(dataset, normalization)
        log_cpm_df, pca, mds = self.step4_projections(normalization)
        de_result, de_table, de_genes = self.step5_differential_expression(dataset, normalization)
        overlap = self.step6_overlap(de_genes, classes)

        logger.info(f"Pipeline completed in {datetime.now() - start_time}")

        return PipelineResults(
            dataset=dataset,
            normalization=normalization,
            cpm=cpm_df,
            log_cpm=log_cpm_df,
            donor_averages=donor_avg,
            expression_classes=classes,
            pca=pca,
            mds=mds,
            de_result=de_result,
            de_table=de_table,
            de_genes=de_genes,
            overlap=overlap
        )


def write_results(
    results: PipelineResults,
    output_dir: str,
    config: Optional[AnalysisConfig] = None
) -> Path:
    """
    Write every result table as TSV plus a JSON run summary.

    Returns
    -------
    Path
        The output directory
    """
    config = config or AnalysisConfig()
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    def save(df: pd.DataFrame, name: str, index: bool = True):
        df.to_csv(out / name, sep='\t', index=index)

    save(compare_library_sizes(results.dataset.counts), 'library_sizes.tsv', index=False)
    save(results.normalization.norm_factors.to_frame(), 'norm_factors.tsv')
    save(results.normalization.counts, 'filtered_counts.tsv')
    save(results.cpm, 'cpm.tsv')
    save(results.donor_averages, 'donor_averages.tsv')

    save(results.expression_classes, 'expression_classes.tsv')

    save(results.pca.scores, 'pca_scores.tsv')
    save(results.mds.coordinates, 'mds_coordinates.tsv')

    save(results.de_table, f'de_results_{results.de_result.name}.tsv')

    save(results.overlap, 'overlap_summary.tsv', index=False)

    de_config = config.differential_expression
    summary = {
        'date': datetime.now().isoformat(),
        'data': {
            'raw_genes': results.dataset.n_genes,
            'filtered_genes': results.normalization.counts.shape[0],
            'samples': results.dataset.n_samples
        },
        'pca_percent_variance': results.pca.percent_variance.to_dict(),
        'mds_percent_variance': results.mds.percent_variance.to_dict(),
        'expression_classes': summarize_expression_classes(
            results.expression_classes
        ).to_dict('records'),
        'de_analysis': summarize_de(
            results.de_result, de_config.significance_cutoff_degs
        ).to_dict('records')[0],
        'de_classes': summarize_de_classes(results.de_table).to_dict('records'),
        'overlap': results.overlap.to_dict('records')
    }
    with open(out / 'pipeline_summary.json', 'w') as f:
        json.dump(summary, f, indent=2, default=str)

    logger.info(f"Results saved to: {out}")
    return out


def build_config(args: argparse.Namespace) -> AnalysisConfig:
    """Configuration file (if any) with command line overrides applied."""
    config = AnalysisConfig.from_yaml(args.config) if args.config else AnalysisConfig()

    overrides = {}
    filtering = {}
    if args.min_count is not None:
        filtering['min_count'] = args.min_count
    if args.min_samples is not None:
        filtering['min_samples'] = args.min_samples
    if filtering:
        overrides['filtering'] = filtering
    if args.tissue_pair is not None:
        overrides['differential_expression'] = {'tissue_pair': tuple(args.tissue_pair)}

    return config.with_overrides(overrides)


def main(argv=None):
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Tissue RNA-seq Analysis Pipeline')
    parser.add_argument('--counts', required=True, help='Tab-delimited counts matrix')
    parser.add_argument('--metadata', required=True, help='Tab-delimited sample metadata')
    parser.add_argument('--config', type=str, default=None, help='Path to YAML configuration file')
    parser.add_argument('--output', type=str, default='results', help='Output directory')
    parser.add_argument('--tissue-pair', nargs=2, metavar=('FIRST', 'SECOND'),
                        default=None, help='Tissues to compare (fold change is FIRST/SECOND)')
    parser.add_argument('--min-count', type=int, default=None)
    parser.add_argument('--min-samples', type=int, default=None)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = build_config(args)
        pipeline = TissueDEPipeline(args.counts, args.metadata, config)
        results = pipeline.run()
        write_results(results, args.output, config)
    except AnalysisError as e:
        logger.error(f"{type(e).__name__}: {e}")
        raise


if __name__ == "__main__":
    main()
