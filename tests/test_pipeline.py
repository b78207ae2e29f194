"""End-to-end tests for the analysis pipeline and command line."""

import json

import pandas as pd
import pytest

from tissue_de.config import AnalysisConfig
from tissue_de.exceptions import InsufficientReplicates, SchemaMismatch
from tissue_de.expression_patterns import ExpressionClass
from tissue_de.pipeline import TissueDEPipeline, main, write_results

EXPECTED_FILES = [
    'library_sizes.tsv',
    'norm_factors.tsv',
    'filtered_counts.tsv',
    'cpm.tsv',
    'donor_averages.tsv',
    'expression_classes.tsv',
    'pca_scores.tsv',
    'mds_coordinates.tsv',
    'de_results_liver_vs_brain.tsv',
    'overlap_summary.tsv',
    'pipeline_summary.json',
]


@pytest.fixture
def results(tissue_files):
    counts_file, metadata_file = tissue_files
    return TissueDEPipeline(str(counts_file), str(metadata_file)).run()


def test_run_produces_consistent_tables(results):
    n_samples = results.dataset.n_samples
    n_genes = len(results.normalization.counts)

    assert results.cpm.shape == (n_genes, n_samples)
    assert list(results.donor_averages.columns) == ['S12', 'S13', 'S7']
    assert len(results.expression_classes) == n_genes
    assert list(results.pca.scores.index) == list(results.dataset.counts.columns)
    assert results.mds.coordinates.shape == (n_samples, 2)
    assert set(results.de_genes) <= set(results.de_table.index)
    assert list(results.overlap['category']) == ['individual_specific', 'individual_elevated']


def test_metadata_aligned_to_count_columns(results):
    assert list(results.dataset.metadata.index) == list(results.dataset.counts.columns)


def test_donor_specific_genes_found(results):
    classes = results.expression_classes
    s7_genes = [f'GENE{i:04d}' for i in range(40, 55)]
    s7 = classes.loc[s7_genes]
    assert (s7['expression_class'] == ExpressionClass.INDIVIDUAL_SPECIFIC.value).all()
    assert (s7['max_donor'] == 'S7').all()


def test_tissue_genes_are_de(results):
    liver_up = [f'GENE{i:04d}' for i in range(20)]
    assert set(liver_up) <= set(results.de_genes)


def test_write_results(results, tmp_path):
    out = write_results(results, tmp_path / 'out')
    for name in EXPECTED_FILES:
        assert (out / name).exists(), name

    de = pd.read_csv(out / 'de_results_liver_vs_brain.tsv', sep='\t', index_col=0)
    assert set(de['de_class']) <= {'DE_UP', 'DE_DOWN', 'notDE_UP', 'notDE_DOWN', 'unclassified'}

    with open(out / 'pipeline_summary.json') as f:
        summary = json.load(f)
    assert summary['data']['samples'] == 12
    assert summary['de_analysis']['comparison'] == 'liver_vs_brain'


def test_configured_tissue_pair(tissue_files):
    counts_file, metadata_file = tissue_files
    config = AnalysisConfig.from_dict(
        {'differential_expression': {'tissue_pair': ['brain', 'liver']}}
    )
    results = TissueDEPipeline(str(counts_file), str(metadata_file), config).run()
    assert results.de_result.name == 'brain_vs_liver'
    assert (results.de_table.iloc[:20]['log2FoldChange'] < 0).all()


def test_unknown_tissue_fails(tissue_files):
    counts_file, metadata_file = tissue_files
    config = AnalysisConfig.from_dict(
        {'differential_expression': {'tissue_pair': ['liver', 'kidney']}}
    )
    with pytest.raises(InsufficientReplicates):
        TissueDEPipeline(str(counts_file), str(metadata_file), config).run()


def test_main(tissue_files, tmp_path):
    counts_file, metadata_file = tissue_files
    out = tmp_path / 'cli'
    main([
        '--counts', str(counts_file),
        '--metadata', str(metadata_file),
        '--output', str(out),
        '--min-count', '5',
    ])
    assert (out / 'pipeline_summary.json').exists()


def test_main_reraises_analysis_errors(tissue_files, tmp_path):
    counts_file, metadata_file = tissue_files
    metadata = pd.read_csv(metadata_file, sep='\t')
    truncated = tmp_path / 'truncated.tsv'
    metadata.iloc[1:].to_csv(truncated, sep='\t', index=False)

    with pytest.raises(SchemaMismatch):
        main(['--counts', str(counts_file), '--metadata', str(truncated),
              '--output', str(tmp_path / 'never')])
