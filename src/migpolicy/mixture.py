"""Univariate Gaussian mixture fitting and BIC model selection.

Each fit runs expectation-maximisation (scikit-learn's GaussianMixture) from a
deterministic starting point: the samples are split into k groups by Ward
hierarchical clustering, and each group's share, mean, and variance seed one
component. With no random restarts the same samples always give the same
model, so a sweep over (k, variance structure) candidates returns the same
winner regardless of the order the candidates are listed in.

Variance structures:
  E (SHARED)     one variance common to all components   -> sklearn "tied"
  V (COMPONENT)  one variance per component              -> sklearn "full"

Free parameters (for BIC): k means + (k - 1) weights + 1 (E) or k (V) variances.
BIC = -2 log L + p ln n; lower is better.

Variances never go below VARIANCE_FLOOR: a component sitting on identical
values is clamped to the floor rather than collapsing to zero.
"""

from __future__ import annotations

import warnings
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

import numpy as np
import polars as pl
from scipy.cluster.hierarchy import cut_tree, linkage
from sklearn.exceptions import ConvergenceWarning
from sklearn.mixture import GaussianMixture

from migpolicy.config import EM_MAX_ITER, EM_TOL, RANDOM_SEED, VARIANCE_FLOOR
from migpolicy.errors import FitError
from migpolicy.models import MixtureComponent, MixtureModel, VarianceStructure

SKLEARN_COVARIANCE = {
    VarianceStructure.SHARED: "tied",
    VarianceStructure.COMPONENT: "full",
}

# Values closer than this count as the same value when checking k is identifiable
DISTINCT_DECIMALS = 8


def n_parameters(k: int, structure: VarianceStructure) -> int:
    """Number of free parameters of a k-component univariate mixture."""
    n_variances = 1 if structure is VarianceStructure.SHARED else k
    return k + (k - 1) + n_variances


def _as_samples(samples: Iterable[float]) -> np.ndarray:
    x = np.asarray(list(samples), dtype=float).ravel()
    if x.size == 0:
        raise FitError("Cannot fit a mixture model to zero samples")
    if not np.all(np.isfinite(x)):
        raise FitError("Samples contain NaN or infinite values")
    return x


def _initial_partition(x: np.ndarray, k: int) -> np.ndarray:
    """Group labels 0..k-1 from Ward clustering of the 1-D samples."""
    if k == 1:
        return np.zeros(x.size, dtype=int)
    Z = linkage(x.reshape(-1, 1), method="ward")
    return cut_tree(Z, n_clusters=k).flatten()


def _initial_parameters(
    x: np.ndarray, labels: np.ndarray, k: int, structure: VarianceStructure
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Weights, means (k, 1), and precisions in sklearn's layout for the structure."""
    weights = np.array([np.mean(labels == j) for j in range(k)])
    weights = weights / weights.sum()
    means = np.array([x[labels == j].mean() for j in range(k)])

    if structure is VarianceStructure.SHARED:
        pooled = float(np.mean((x - means[labels]) ** 2))
        precisions = np.array([[1.0 / max(pooled, VARIANCE_FLOOR)]])
    else:
        variances = np.array([max(float(x[labels == j].var()), VARIANCE_FLOOR) for j in range(k)])
        precisions = (1.0 / variances).reshape(k, 1, 1)
    return weights, means.reshape(-1, 1), precisions


def fit(
    samples: Iterable[float],
    k: int,
    variance_structure: VarianceStructure,
    *,
    max_iter: int = EM_MAX_ITER,
    tol: float = EM_TOL,
) -> MixtureModel:
    """Fit a k-component univariate Gaussian mixture by EM.

    Raises FitError for empty or non-finite samples, k < 1, fewer than k
    distinct values, or EM that has not converged after ``max_iter`` steps.
    """
    x = _as_samples(samples)
    if k < 1:
        raise FitError(f"Number of components must be positive, got {k}")
    n_distinct = np.unique(np.round(x, DISTINCT_DECIMALS)).size
    if n_distinct < k:
        raise FitError(
            f"{variance_structure.value},{k}: only {n_distinct} distinct value(s) "
            f"for {k} components"
        )

    labels = _initial_partition(x, k)
    weights_init, means_init, precisions_init = _initial_parameters(
        x, labels, k, variance_structure
    )
    gmm = GaussianMixture(
        n_components=k,
        covariance_type=SKLEARN_COVARIANCE[variance_structure],
        tol=tol,
        reg_covar=VARIANCE_FLOOR,
        max_iter=max_iter,
        n_init=1,
        weights_init=weights_init,
        means_init=means_init,
        precisions_init=precisions_init,
        random_state=RANDOM_SEED,
    )
    X = x.reshape(-1, 1)
    with warnings.catch_warnings():
        # Non-convergence is reported through converged_ below
        warnings.simplefilter("ignore", ConvergenceWarning)
        try:
            gmm.fit(X)
        except ValueError as e:
            raise FitError(f"{variance_structure.value},{k}: {e}") from e

    if not gmm.converged_:
        raise FitError(
            f"{variance_structure.value},{k}: EM did not converge in {max_iter} iterations"
        )

    means = gmm.means_.ravel()
    if variance_structure is VarianceStructure.SHARED:
        variances = np.full(k, float(np.ravel(gmm.covariances_)[0]))
    else:
        variances = gmm.covariances_.ravel()
    variances = np.maximum(variances, VARIANCE_FLOOR)
    weights = gmm.weights_ / gmm.weights_.sum()

    order = np.argsort(means, kind="stable")
    components = tuple(
        MixtureComponent(
            mean=float(means[j]),
            variance=float(variances[j]),
            weight=float(weights[j]),
        )
        for j in order
    )

    log_likelihood = float(gmm.score(X)) * x.size
    p = n_parameters(k, variance_structure)
    return MixtureModel(
        components=components,
        variance_structure=variance_structure,
        log_likelihood=log_likelihood,
        bic=float(-2.0 * log_likelihood + p * np.log(x.size)),
        n_parameters=p,
        n_samples=int(x.size),
        n_iter=int(gmm.n_iter_),
    )


# ── Model selection ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CandidateResult:
    """Outcome of one (k, structure) fit in a sweep: a model or the reason it failed."""

    k: int
    variance_structure: VarianceStructure
    model: MixtureModel | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.model is not None


def _selection_key(model: MixtureModel) -> tuple:
    # Lowest BIC; exact ties go to fewer components, then fewer parameters
    return (model.bic, model.k, model.n_parameters, model.variance_structure.value)


@dataclass(frozen=True)
class ModelSweep:
    """All candidate fits of a sweep, ordered by (k, structure)."""

    results: tuple[CandidateResult, ...]
    n_samples: int

    @property
    def models(self) -> list[MixtureModel]:
        return [r.model for r in self.results if r.model is not None]

    @property
    def failures(self) -> list[CandidateResult]:
        return [r for r in self.results if not r.ok]

    def best(self) -> MixtureModel:
        """The lowest-BIC model. Raises FitError if every candidate failed."""
        models = self.models
        if not models:
            detail = "; ".join(r.error or "unknown error" for r in self.failures)
            raise FitError(f"All {len(self.results)} candidate fits failed: {detail}")
        return min(models, key=_selection_key)


def _candidates(
    candidate_ks: Iterable[int], candidate_structures: Iterable[VarianceStructure]
) -> list[tuple[int, VarianceStructure]]:
    ks = sorted(set(candidate_ks))
    structures = sorted(set(candidate_structures), key=lambda s: s.value)
    if not ks or not structures:
        raise FitError("Model selection needs at least one k and one variance structure")
    return [(k, s) for k in ks for s in structures]


def _fit_candidate(
    x: np.ndarray, k: int, structure: VarianceStructure, **fit_kwargs
) -> CandidateResult:
    try:
        model = fit(x, k, structure, **fit_kwargs)
        return CandidateResult(k=k, variance_structure=structure, model=model)
    except FitError as e:
        return CandidateResult(k=k, variance_structure=structure, error=str(e))


def sweep_models(
    samples: Sequence[float],
    candidate_ks: Iterable[int],
    candidate_structures: Iterable[VarianceStructure],
    *,
    n_jobs: int = 1,
    max_iter: int = EM_MAX_ITER,
    tol: float = EM_TOL,
) -> ModelSweep:
    """Fit every (k, structure) combination; failed fits are kept with their error.

    With ``n_jobs > 1`` candidates are fitted in a thread pool. The samples
    array is read-only for the duration of the sweep.
    """
    x = _as_samples(samples)
    x.setflags(write=False)
    candidates = _candidates(candidate_ks, candidate_structures)
    fit_kwargs = {"max_iter": max_iter, "tol": tol}

    results: dict[tuple[int, str], CandidateResult] = {}
    if n_jobs <= 1:
        for k, structure in candidates:
            results[(k, structure.value)] = _fit_candidate(x, k, structure, **fit_kwargs)
    else:
        with ThreadPoolExecutor(max_workers=n_jobs) as pool:
            futures = {
                pool.submit(_fit_candidate, x, k, structure, **fit_kwargs): (k, structure.value)
                for k, structure in candidates
            }
            for future in as_completed(futures):
                results[futures[future]] = future.result()

    ordered = tuple(results[key] for key in sorted(results))
    return ModelSweep(results=ordered, n_samples=int(x.size))


def select_model(
    samples: Sequence[float],
    candidate_ks: Iterable[int],
    candidate_structures: Iterable[VarianceStructure],
    *,
    n_jobs: int = 1,
    max_iter: int = EM_MAX_ITER,
    tol: float = EM_TOL,
) -> MixtureModel:
    """Fit all candidates and return the one with the lowest BIC.

    Exact BIC ties prefer fewer components. Raises FitError when the samples
    are empty or when no candidate could be fitted.
    """
    sweep = sweep_models(
        samples,
        candidate_ks,
        candidate_structures,
        n_jobs=n_jobs,
        max_iter=max_iter,
        tol=tol,
    )
    return sweep.best()


def selection_table(sweep: ModelSweep) -> pl.DataFrame:
    """One row per candidate: the BIC curve across k for each structure, failures included.

    ``n_floored`` counts components whose variance hit the floor; a low BIC
    driven by such components reflects ties in the data, not real spread.
    """
    rows = []
    for r in sweep.results:
        m = r.model
        rows.append(
            {
                "k": r.k,
                "structure": r.variance_structure.value,
                "model": f"{r.variance_structure.value},{r.k}",
                "bic": m.bic if m else None,
                "log_likelihood": m.log_likelihood if m else None,
                "n_parameters": n_parameters(r.k, r.variance_structure),
                "n_iter": m.n_iter if m else None,
                "n_floored": m.n_floored if m else None,
                "error": r.error,
            }
        )
    return pl.DataFrame(
        rows,
        schema={
            "k": pl.Int64,
            "structure": pl.Utf8,
            "model": pl.Utf8,
            "bic": pl.Float64,
            "log_likelihood": pl.Float64,
            "n_parameters": pl.Int64,
            "n_iter": pl.Int64,
            "n_floored": pl.Int64,
            "error": pl.Utf8,
        },
    )
