"""Tests for loading and validating counts and sample metadata."""

import pandas as pd
import pytest

from tissue_de.exceptions import MalformedInput, SchemaMismatch
from tissue_de.preprocessing import (
    RNAseqDataLoader,
    compare_library_sizes,
    validate_alignment
)


def _write(path, text):
    path.write_text(text)
    return path


@pytest.fixture
def metadata_file(tmp_path):
    return _write(
        tmp_path / 'samples.tsv',
        "Sample\tDonor\tTissue\n"
        "B1\tS7\tbrain\n"
        "L1\tS7\tliver\n"
        "L2\tS12\tliver\n",
    )


class TestLoadCounts:

    def test_load_valid_files(self, tmp_path, metadata_file):
        counts_file = _write(
            tmp_path / 'counts.tsv',
            "gene\tL1\tL2\tB1\n"
            "G1\t50\t55\t5\n"
            "G2\t100\t110\t105\n",
        )
        dataset = RNAseqDataLoader(str(counts_file), str(metadata_file)).load()

        assert dataset.n_genes == 2
        assert dataset.n_samples == 3
        assert dataset.counts.loc['G1', 'L2'] == 55
        assert dataset.counts.dtypes.eq('int64').all()
        # Metadata follows the count column order
        assert dataset.metadata.index.tolist() == ['L1', 'L2', 'B1']
        assert dataset.metadata.loc['L2', 'Donor'] == 'S12'

    def test_integral_decimal_counts_accepted(self, tmp_path):
        counts_file = _write(tmp_path / 'counts.tsv', "gene\tA\tB\nG1\t5.0\t7\n")
        counts = RNAseqDataLoader(str(counts_file), 'unused').load_counts()
        assert counts.loc['G1', 'A'] == 5

    @pytest.mark.parametrize('bad_value', ['2.5', 'abc', '', '-3', 'inf'])
    def test_invalid_count_values(self, tmp_path, bad_value):
        counts_file = _write(
            tmp_path / 'counts.tsv',
            f"gene\tA\tB\nG1\t{bad_value}\t7\nG2\t1\t2\n",
        )
        with pytest.raises(MalformedInput):
            RNAseqDataLoader(str(counts_file), 'unused').load_counts()

    def test_duplicate_gene_ids(self, tmp_path):
        counts_file = _write(tmp_path / 'counts.tsv', "gene\tA\tB\nG1\t1\t2\nG1\t3\t4\n")
        with pytest.raises(MalformedInput, match='Duplicate gene'):
            RNAseqDataLoader(str(counts_file), 'unused').load_counts()

    def test_duplicate_sample_ids(self, tmp_path):
        counts_file = _write(tmp_path / 'counts.tsv', "gene\tA\tA\nG1\t1\t2\n")
        with pytest.raises(MalformedInput):
            RNAseqDataLoader(str(counts_file), 'unused').load_counts()

    def test_wrong_delimiter(self, tmp_path):
        counts_file = _write(tmp_path / 'counts.tsv', "gene,A,B\nG1,1,2\n")
        with pytest.raises(MalformedInput):
            RNAseqDataLoader(str(counts_file), 'unused').load_counts()

    def test_ragged_rows(self, tmp_path):
        counts_file = _write(tmp_path / 'counts.tsv', "gene\tA\tB\nG1\t1\t2\nG2\t1\t2\t3\t4\n")
        with pytest.raises(MalformedInput):
            RNAseqDataLoader(str(counts_file), 'unused').load_counts()


class TestLoadMetadata:

    def test_missing_required_column(self, tmp_path):
        metadata_file = _write(tmp_path / 'samples.tsv', "Sample\tTissue\nA\tliver\n")
        with pytest.raises(MalformedInput, match='Donor'):
            RNAseqDataLoader('unused', str(metadata_file)).load_metadata()

    def test_duplicate_samples(self, tmp_path):
        metadata_file = _write(
            tmp_path / 'samples.tsv',
            "Sample\tDonor\tTissue\nA\tS7\tliver\nA\tS12\tbrain\n",
        )
        with pytest.raises(MalformedInput):
            RNAseqDataLoader('unused', str(metadata_file)).load_metadata()

    def test_custom_column_names(self, tmp_path):
        metadata_file = _write(
            tmp_path / 'samples.tsv',
            "run\tindividual\ttissue_type\nA\tS7\tliver\n",
        )
        loader = RNAseqDataLoader(
            'unused', str(metadata_file),
            sample_col='run', donor_col='individual', tissue_col='tissue_type'
        )
        metadata = loader.load_metadata()
        assert metadata.loc['A', 'individual'] == 'S7'


class TestAlignment:

    def test_sample_without_metadata(self, tmp_path, metadata_file):
        counts_file = _write(
            tmp_path / 'counts.tsv',
            "gene\tL1\tL2\tB1\tB2\nG1\t1\t2\t3\t4\n",
        )
        with pytest.raises(SchemaMismatch, match='B2'):
            RNAseqDataLoader(str(counts_file), str(metadata_file)).load()

    def test_metadata_without_counts(self, tmp_path, metadata_file):
        counts_file = _write(tmp_path / 'counts.tsv', "gene\tL1\tL2\nG1\t1\t2\n")
        with pytest.raises(SchemaMismatch, match='B1'):
            RNAseqDataLoader(str(counts_file), str(metadata_file)).load()

    def test_validate_alignment_reorders(self, small_counts, small_metadata):
        shuffled = small_metadata.iloc[[3, 1, 0, 2]]
        aligned = validate_alignment(small_counts, shuffled)
        assert aligned.index.tolist() == small_counts.columns.tolist()


def test_compare_library_sizes(small_counts):
    stats = compare_library_sizes(small_counts)

    assert stats['sample_id'].tolist() == ['L1', 'L2', 'B1', 'B2']
    assert stats['total_counts'].tolist() == [460, 468, 435, 419]
    assert (stats['detected_genes'] == 5).all()
