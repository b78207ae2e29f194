"""Shared fixtures for the tissue expression analysis tests."""

import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def small_counts():
    """5 genes x 4 samples: two liver, two brain; G1 is liver-enriched."""
    return pd.DataFrame(
        {
            'L1': [50, 100, 200, 80, 30],
            'L2': [55, 110, 190, 85, 28],
            'B1': [5, 105, 210, 82, 33],
            'B2': [6, 98, 205, 79, 31],
        },
        index=pd.Index(['G1', 'G2', 'G3', 'G4', 'G5'], name='gene'),
    )


@pytest.fixture
def small_metadata():
    return pd.DataFrame(
        {
            'Donor': ['S7', 'S12', 'S7', 'S12'],
            'Tissue': ['liver', 'liver', 'brain', 'brain'],
        },
        index=pd.Index(['L1', 'L2', 'B1', 'B2'], name='Sample'),
    )


def make_tissue_dataset(n_genes=300, n_liver_up=20, n_brain_up=20, n_s7_specific=15, seed=7):
    """
    Simulated NB counts for three donors (S7, S12, S13) x two tissues,
    two replicates each.
    """
    rng = np.random.RandomState(seed)
    donors = ['S7', 'S12', 'S13']
    tissues = ['liver', 'brain']

    samples, donor_col, tissue_col = [], [], []
    for tissue in tissues:
        for donor in donors:
            for rep in (1, 2):
                samples.append(f'{donor}_{tissue}_{rep}')
                donor_col.append(donor)
                tissue_col.append(tissue)

    base = rng.gamma(shape=2.0, scale=100.0, size=n_genes) + 20
    means = np.tile(base[:, None], (1, len(samples)))
    tissue_arr = np.array(tissue_col)
    donor_arr = np.array(donor_col)

    liver_up = slice(0, n_liver_up)
    brain_up = slice(n_liver_up, n_liver_up + n_brain_up)
    s7 = slice(n_liver_up + n_brain_up, n_liver_up + n_brain_up + n_s7_specific)
    means[liver_up, tissue_arr == 'liver'] *= 8
    means[brain_up, tissue_arr == 'brain'] *= 8
    means[s7, :] = np.where(donor_arr == 'S7', means[s7, :] * 8, means[s7, :])

    size = 20.0
    counts = rng.negative_binomial(size, size / (size + means))

    genes = [f'GENE{i:04d}' for i in range(n_genes)]
    counts_df = pd.DataFrame(counts, index=pd.Index(genes, name='gene'), columns=samples)
    metadata = pd.DataFrame(
        {'Donor': donor_col, 'Tissue': tissue_col},
        index=pd.Index(samples, name='Sample'),
    )
    return counts_df, metadata


@pytest.fixture
def tissue_dataset():
    return make_tissue_dataset()


@pytest.fixture
def tissue_files(tmp_path, tissue_dataset):
    """The simulated dataset written as tab-delimited files."""
    counts, metadata = tissue_dataset
    counts_file = tmp_path / 'counts.tsv'
    metadata_file = tmp_path / 'samples.tsv'
    counts.to_csv(counts_file, sep='\t')
    # Metadata rows deliberately in a different order from the count columns
    metadata.iloc[::-1].reset_index().to_csv(metadata_file, sep='\t', index=False)
    return counts_file, metadata_file
