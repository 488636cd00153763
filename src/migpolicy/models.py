"""Data classes for policy records, contingency tables, and fitted mixtures."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Optional

import numpy as np
import polars as pl
from scipy import stats

from migpolicy.codes import ChangeLevel, PolicyArea, Restrictiveness, TargetGroup
from migpolicy.config import FLOORED_VARIANCE


@dataclass(frozen=True)
class PolicyRecord:
    """One enacted migration policy change."""
    country: str
    year: int
    policy_area: PolicyArea
    target_group: TargetGroup
    change_restrictiveness: Restrictiveness
    change_level: ChangeLevel
    policy_id: Optional[str] = None
    title: Optional[str] = None


@dataclass(frozen=True)
class ContingencyTable:
    """Counts over two categorical dimensions with explicit zero fill.

    ``rows`` and ``columns`` list every category of each dimension (not just
    the observed ones); ``cells`` holds only the non-zero counts and is read-only.
    """

    dim_a: str
    dim_b: str
    rows: tuple[str, ...]
    columns: tuple[str, ...]
    cells: Mapping[tuple[str, str], int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "cells", MappingProxyType(dict(self.cells)))

    def count(self, a: str, b: str) -> int:
        if a not in self.rows or b not in self.columns:
            raise KeyError(f"({a!r}, {b!r}) is outside {self.dim_a} x {self.dim_b}")
        return self.cells.get((a, b), 0)

    def row(self, a: str) -> dict[str, int]:
        return {b: self.count(a, b) for b in self.columns}

    def as_mapping(self) -> dict[str, dict[str, int]]:
        """Nested row -> column -> count mapping, every cell present."""
        return {a: self.row(a) for a in self.rows}

    def row_totals(self) -> dict[str, int]:
        return {a: sum(self.row(a).values()) for a in self.rows}

    def column_totals(self) -> dict[str, int]:
        return {b: sum(self.count(a, b) for a in self.rows) for b in self.columns}

    @property
    def total(self) -> int:
        return sum(self.cells.values())

    def to_frame(self) -> pl.DataFrame:
        """Wide table: one row per ``dim_a`` category, one column per ``dim_b`` category."""
        data: dict[str, list] = {self.dim_a: list(self.rows)}
        for b in self.columns:
            data[b] = [self.count(a, b) for a in self.rows]
        return pl.DataFrame(data)


class VarianceStructure(Enum):
    """Variance parameterisation of a univariate Gaussian mixture.

    Values follow the usual one-letter model names: "E" (equal variance
    shared by every component) and "V" (variable, one variance per component).
    """

    SHARED = "E"
    COMPONENT = "V"

    @property
    def description(self) -> str:
        if self is VarianceStructure.SHARED:
            return "shared-equal-variance"
        return "component-specific-variance"

    @classmethod
    def parse(cls, text: str) -> VarianceStructure:
        """Accept "E"/"V", the enum name, or the long description."""
        key = text.strip()
        for member in cls:
            if key.upper() in (member.value, member.name) or key.lower() == member.description:
                return member
        raise ValueError(f"Unknown variance structure: {text!r}")


@dataclass(frozen=True)
class MixtureComponent:
    mean: float
    variance: float
    weight: float

    @property
    def sd(self) -> float:
        return float(np.sqrt(self.variance))


@dataclass(frozen=True)
class MixtureModel:
    """One fitted univariate Gaussian mixture. Components are in ascending mean order."""

    components: tuple[MixtureComponent, ...]
    variance_structure: VarianceStructure
    log_likelihood: float
    bic: float
    n_parameters: int
    n_samples: int
    n_iter: int

    @property
    def k(self) -> int:
        return len(self.components)

    @property
    def means(self) -> np.ndarray:
        return np.array([c.mean for c in self.components])

    @property
    def variances(self) -> np.ndarray:
        return np.array([c.variance for c in self.components])

    @property
    def weights(self) -> np.ndarray:
        return np.array([c.weight for c in self.components])

    @property
    def label(self) -> str:
        """Short model name, e.g. "V,2"."""
        return f"{self.variance_structure.value},{self.k}"

    @property
    def n_floored(self) -> int:
        """Components collapsed onto a single value, their variance clamped to the floor.

        Such components inflate the likelihood, so BIC favours them on
        integer-valued scores; read the selection curve with this count in mind.
        """
        return int(np.sum(self.variances <= FLOORED_VARIANCE))

    def _weighted_densities(self, x: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=float).reshape(-1, 1)
        return self.weights * stats.norm.pdf(x, loc=self.means, scale=np.sqrt(self.variances))

    def density(self, x: np.ndarray) -> np.ndarray:
        """Mixture density evaluated at each point of ``x``."""
        return self._weighted_densities(x).sum(axis=1)

    def predict_proba(self, x: np.ndarray) -> np.ndarray:
        """Posterior component responsibilities, shape (len(x), k)."""
        dens = self._weighted_densities(x)
        total = dens.sum(axis=1, keepdims=True)
        # Points far from every component underflow to zero density
        total = np.where(total > 0, total, 1.0)
        return dens / total

    def predict(self, x: np.ndarray) -> np.ndarray:
        return self.predict_proba(x).argmax(axis=1)

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                "component": list(range(1, self.k + 1)),
                "mean": self.means.tolist(),
                "variance": self.variances.tolist(),
                "weight": self.weights.tolist(),
            }
        )
