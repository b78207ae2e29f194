"""
Sample Projections
==================

Read-only low-dimensional views of the samples:
1. PCA on centred log-CPM (samples as observations, genes as variables)
2. Classical MDS on leading log-fold-change distances (limma plotMDS style)
"""

from dataclasses import dataclass
import logging

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from ..exceptions import MalformedInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PCAResult:
    """Per-sample PC scores and percent variance explained per component."""

    scores: pd.DataFrame
    percent_variance: pd.Series


@dataclass(frozen=True)
class MDSResult:
    """Per-sample MDS coordinates and the distance matrix they embed."""

    coordinates: pd.DataFrame
    distances: pd.DataFrame
    percent_variance: pd.Series
    top: int


def _check_samples(log_cpm: pd.DataFrame, what: str):
    if log_cpm.shape[1] < 2:
        raise MalformedInput(f"{what} needs at least 2 samples, got {log_cpm.shape[1]}")
    if log_cpm.shape[0] < 1:
        raise MalformedInput(f"{what} needs at least 1 gene")


def run_pca(log_cpm: pd.DataFrame, n_components: int = 2) -> PCAResult:
    """
    Perform PCA on log-CPM values.

    Parameters
    ----------
    log_cpm : pd.DataFrame
        log2 CPM matrix (genes x samples)
    n_components : int
        Number of components to keep

    Returns
    -------
    PCAResult
        PCA scores and percent variance explained
    """
    _check_samples(log_cpm, "PCA")

    # Transpose: samples as rows, genes as columns
    X = log_cpm.T.to_numpy(dtype=float)
    n_components = min(n_components, X.shape[0], X.shape[1])

    pca = PCA(n_components=n_components, svd_solver='full')
    scores = pca.fit_transform(X)

    labels = [f'PC{i+1}' for i in range(n_components)]
    scores_df = pd.DataFrame(scores, index=log_cpm.columns, columns=labels)
    percent_variance = pd.Series(
        np.nan_to_num(pca.explained_variance_ratio_) * 100, index=labels, name='percent_variance'
    )

    logger.info(
        "PCA variance explained: "
        + ", ".join(f"{k}={v:.1f}%" for k, v in percent_variance.items())
    )
    return PCAResult(scores=scores_df, percent_variance=percent_variance)


def leading_logfc_distances(log_cpm: pd.DataFrame, top: int = 500) -> pd.DataFrame:
    """
    Pairwise leading log-fold-change distances between samples.

    For each pair of samples the distance is the root mean square of the
    ``top`` largest squared log-fold-changes between them.
    """
    x = log_cpm.to_numpy(dtype=float)
    n_genes, n_samples = x.shape
    top = min(top, n_genes)

    dist = np.zeros((n_samples, n_samples))
    for i in range(n_samples - 1):
        sq = (x[:, [i]] - x[:, i + 1:]) ** 2
        # Largest `top` squared differences per column
        leading = -np.sort(-sq, axis=0)[:top]
        dist[i, i + 1:] = np.sqrt(leading.mean(axis=0))
    dist = dist + dist.T

    return pd.DataFrame(dist, index=log_cpm.columns, columns=log_cpm.columns)


def classical_mds(distances: pd.DataFrame, n_dims: int = 2):
    """
    Classical (Torgerson) multidimensional scaling.

    Returns
    -------
    Tuple[pd.DataFrame, pd.Series]
        Coordinates (samples x dimensions) and percent variance per dimension
    """
    d2 = distances.to_numpy(dtype=float) ** 2
    n = d2.shape[0]

    # Double centering
    centre = np.eye(n) - np.ones((n, n)) / n
    b = -0.5 * centre @ d2 @ centre

    eigvals, eigvecs = np.linalg.eigh(b)
    order = np.argsort(eigvals)[::-1]
    eigvals = eigvals[order]
    eigvecs = eigvecs[:, order]

    positive = np.clip(eigvals, 0, None)
    k = min(n_dims, n)
    coords = eigvecs[:, :k] * np.sqrt(positive[:k])

    labels = [f'Dim{i+1}' for i in range(k)]
    total = positive.sum()
    percent = positive[:k] / total * 100 if total > 0 else np.zeros(k)

    return (
        pd.DataFrame(coords, index=distances.index, columns=labels),
        pd.Series(percent, index=labels, name='percent_variance'),
    )


def run_mds(log_cpm: pd.DataFrame, top: int = 500, n_dims: int = 2) -> MDSResult:
    """
    MDS of samples from leading log-fold-change distances.

    Parameters
    ----------
    log_cpm : pd.DataFrame
        log2 CPM matrix (genes x samples)
    top : int
        Number of largest log-fold-changes used for each pairwise distance
    n_dims : int
        Number of dimensions to return
    """
    _check_samples(log_cpm, "MDS")

    top = min(top, log_cpm.shape[0])
    distances = leading_logfc_distances(log_cpm, top=top)
    coordinates, percent = classical_mds(distances, n_dims=n_dims)

    logger.info(f"MDS computed on leading {top} log-fold-changes")
    return MDSResult(
        coordinates=coordinates,
        distances=distances,
        percent_variance=percent,
        top=top,
    )
