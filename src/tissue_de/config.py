"""
Analysis Configuration
======================

Thresholds for filtering, individual-pattern classification, projections
and differential expression. Values can be read from a YAML file with the
same section names as the dataclasses below:

    filtering:
      min_count: 10
      min_samples: 1
    classification:
      specific_ratio: 4
      elevated_ratio: 2
    projection:
      top_genes: 500
    differential_expression:
      tissue_pair: [liver, brain]
      significance_cutoff_degs: 0.05
      significance_cutoff_classes: 0.01
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import logging

import yaml

from .exceptions import MalformedInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FilterConfig:
    """Low-expression gene filter.

    A gene is kept when more than ``min_count`` reads are seen in at least
    ``min_samples`` samples.
    """

    min_count: int = 10
    min_samples: int = 1

    def __post_init__(self):
        if self.min_count < 0:
            raise MalformedInput(f"min_count must be >= 0, got {self.min_count}")
        if self.min_samples < 1:
            raise MalformedInput(f"min_samples must be >= 1, got {self.min_samples}")


@dataclass(frozen=True)
class ClassificationConfig:
    """Ratios used to call individual-specific and individual-elevated genes."""

    specific_ratio: float = 4.0
    elevated_ratio: float = 2.0

    def __post_init__(self):
        if self.specific_ratio <= 0 or self.elevated_ratio <= 0:
            raise MalformedInput("classification ratios must be positive")


@dataclass(frozen=True)
class ProjectionConfig:
    """PCA / MDS settings."""

    # Genes used for each pairwise MDS distance
    top_genes: int = 500
    # Added to CPM before log2
    prior_count: float = 2.0

    def __post_init__(self):
        if self.top_genes < 1:
            raise MalformedInput(f"top_genes must be >= 1, got {self.top_genes}")
        if self.prior_count <= 0:
            raise MalformedInput("prior_count must be positive")


@dataclass(frozen=True)
class DEConfig:
    """Differential expression test settings.

    ``significance_cutoff_degs`` defines the significant gene set used for
    overlaps; ``significance_cutoff_classes`` defines DE_UP / DE_DOWN
    membership. The two are intentionally independent.
    """

    tissue_pair: Tuple[str, str] = ("liver", "brain")
    significance_cutoff_degs: float = 0.05
    significance_cutoff_classes: float = 0.01

    # Tagwise dispersion shrinkage strength
    prior_df: float = 10.0
    # Both group totals above this use the beta approximation
    big_count: int = 900
    # Added to counts for fold-change estimation
    prior_count: float = 0.125

    def __post_init__(self):
        pair = tuple(self.tissue_pair)
        if len(pair) != 2:
            raise MalformedInput(f"tissue_pair must name two tissues, got {pair}")
        if pair[0] == pair[1]:
            raise MalformedInput(f"tissue_pair must name two different tissues, got {pair}")
        object.__setattr__(self, 'tissue_pair', (str(pair[0]), str(pair[1])))

        for name in ('significance_cutoff_degs', 'significance_cutoff_classes'):
            value = getattr(self, name)
            if not 0 < value <= 1:
                raise MalformedInput(f"{name} must be in (0, 1], got {value}")
        if self.prior_df < 0:
            raise MalformedInput("prior_df must be >= 0")
        if self.prior_count < 0:
            raise MalformedInput("prior_count must be >= 0")


_SECTIONS = {
    'filtering': FilterConfig,
    'classification': ClassificationConfig,
    'projection': ProjectionConfig,
    'differential_expression': DEConfig,
}


@dataclass(frozen=True)
class AnalysisConfig:
    """All tunable settings of one analysis run."""

    filtering: FilterConfig = field(default_factory=FilterConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    projection: ProjectionConfig = field(default_factory=ProjectionConfig)
    differential_expression: DEConfig = field(default_factory=DEConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AnalysisConfig':
        """Build a configuration from a nested mapping; omitted keys keep defaults."""
        return cls().with_overrides(data or {})

    @classmethod
    def from_yaml(cls, config_path: str) -> 'AnalysisConfig':
        """
        Load configuration from a YAML file.

        Parameters
        ----------
        config_path : str
            Path to YAML configuration file

        Returns
        -------
        AnalysisConfig
        """
        path = Path(config_path)
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MalformedInput(f"Invalid YAML in {path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise MalformedInput(f"Configuration root in {path} must be a mapping")

        logger.info(f"Loaded configuration from {path}")
        return cls.from_dict(data)

    def with_overrides(self, overrides: Dict[str, Any]) -> 'AnalysisConfig':
        """Return a new configuration with section values replaced."""
        unknown = set(overrides) - set(_SECTIONS)
        if unknown:
            raise MalformedInput(f"Unknown configuration sections: {sorted(unknown)}")

        updated = {}
        for section, section_cls in _SECTIONS.items():
            values = overrides.get(section)
            current = getattr(self, section)
            if not values:
                updated[section] = current
                continue
            if not isinstance(values, dict):
                raise MalformedInput(f"Configuration section '{section}' must be a mapping")

            allowed = {f.name for f in fields(section_cls)}
            bad_keys = set(values) - allowed
            if bad_keys:
                raise MalformedInput(
                    f"Unknown keys in '{section}': {sorted(bad_keys)}"
                )
            try:
                updated[section] = replace(current, **values)
            except TypeError as e:
                raise MalformedInput(f"Invalid value in '{section}': {e}") from e

        return AnalysisConfig(**updated)
