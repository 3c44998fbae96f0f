from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.api as sm
from joblib import dump, load
from statsmodels.gam.api import BSplines, GLMGam
from statsmodels.gam.smooth_basis import UnivariateBSplines

from pamviz.core.config import PamConfig
from pamviz.core.data import require_columns
from pamviz.model.terms import TIME, TermGrid, ViewGrid

logger = logging.getLogger(__name__)


class TensorInteraction:
    """Centered tensor-product interaction ``ti(a, b)`` built from two marginal B-spline bases.

    The marginal bases are centered, so the row-wise products carry no main effect of
    either variable. The product columns are then centered by their training means.
    """

    def __init__(
        self,
        a: np.ndarray,
        b: np.ndarray,
        *,
        names: Tuple[str, str],
        df: int = 5,
        degree: int = 3,
    ):
        self.names = names
        self.margin_a = UnivariateBSplines(
            np.asarray(a, dtype=float), df=df, degree=degree, constraints="center", variable_name=names[0]
        )
        self.margin_b = UnivariateBSplines(
            np.asarray(b, dtype=float), df=df, degree=degree, constraints="center", variable_name=names[1]
        )
        raw = self._row_tensor(self.margin_a.basis, self.margin_b.basis)
        self.col_means = raw.mean(axis=0)
        self.basis = raw - self.col_means

    @staticmethod
    def _row_tensor(ba: np.ndarray, bb: np.ndarray) -> np.ndarray:
        return (ba[:, :, None] * bb[:, None, :]).reshape(ba.shape[0], -1)

    @property
    def dim_basis(self) -> int:
        return self.basis.shape[1]

    def transform(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        ba = self.margin_a.transform(np.asarray(a, dtype=float))
        bb = self.margin_b.transform(np.asarray(b, dtype=float))
        return self._row_tensor(ba, bb) - self.col_means


def _exclude_too_far(
    gx: np.ndarray,
    gy: np.ndarray,
    points: np.ndarray,
    dist: float,
    *,
    chunk: int = 512,
) -> np.ndarray:
    """Boolean (len(gx), len(gy)) mask of grid cells farther than ``dist`` from every data point.

    Distances are measured after scaling both axes to the unit interval.
    """

    def _scale(v: np.ndarray, lo: float, hi: float) -> np.ndarray:
        span = hi - lo
        return (v - lo) / span if span > 0 else np.zeros_like(v)

    xlo, xhi = float(gx.min()), float(gx.max())
    ylo, yhi = float(gy.min()), float(gy.max())
    px = _scale(points[:, 0], xlo, xhi)
    py = _scale(points[:, 1], ylo, yhi)

    cx = np.repeat(_scale(gx, xlo, xhi), len(gy))
    cy = np.tile(_scale(gy, ylo, yhi), len(gx))

    too_far = np.empty(cx.size, dtype=bool)
    for start in range(0, cx.size, chunk):
        stop = start + chunk
        d2 = (cx[start:stop, None] - px[None, :]) ** 2 + (cy[start:stop, None] - py[None, :]) ** 2
        too_far[start:stop] = d2.min(axis=1) > dist**2
    return too_far.reshape(len(gx), len(gy))


def _grid(lo: float, hi: float, n: int) -> np.ndarray:
    return np.linspace(lo, hi, n)


@dataclass
class _TermSlice:
    labels: Tuple[str, ...]
    idx: np.ndarray


class PamModel:
    """A fitted piece-wise exponential additive model.

    Linear predictor::

        log(hazard) = b0 + s(tend) + sum_p [ s(p) + ti(tend, p) ]

    ``s()`` terms are penalized B-splines (``statsmodels`` :class:`GLMGam` smoother);
    ``ti()`` terms enter the unpenalized linear part.
    """

    def __init__(
        self,
        *,
        predictors: Sequence[str],
        smoother: BSplines,
        interactions: Sequence[TensorInteraction],
        results,
        ranges: Dict[str, Tuple[float, float]],
        medians: Dict[str, float],
        train_points: Dict[str, np.ndarray],
    ):
        self.predictors = list(predictors)
        self.smoother = smoother
        self.interactions = list(interactions)
        self.results = results
        self.ranges = ranges
        self.medians = medians
        self.train_points = train_points

        self.params = np.asarray(results.params, dtype=float)
        self.cov = np.asarray(results.cov_params(), dtype=float)

        self._slices: List[_TermSlice] = []
        pos = 1  # intercept
        for ti in self.interactions:
            self._slices.append(_TermSlice(labels=ti.names, idx=np.arange(pos, pos + ti.dim_basis)))
            pos += ti.dim_basis
        self.k_exog_linear = pos
        for name, mask in zip(self.smooth_names, smoother.mask):
            self._slices.append(_TermSlice(labels=(name,), idx=pos + np.nonzero(mask)[0]))

    @property
    def smooth_names(self) -> List[str]:
        return [TIME, *self.predictors]

    def term_labels(self) -> List[Tuple[str, ...]]:
        smooth = [(n,) for n in self.smooth_names]
        return smooth + [ti.names for ti in self.interactions]

    def _slice(self, labels: Tuple[str, ...]) -> np.ndarray:
        for s in self._slices:
            if s.labels == labels:
                return s.idx
        raise KeyError(labels)

    def _linpred(self, basis: np.ndarray, idx: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        beta = self.params[idx]
        cov = self.cov[np.ix_(idx, idx)]
        fit = basis @ beta
        var = np.einsum("ij,ij->i", basis @ cov, basis)
        return fit, np.sqrt(np.clip(var, 0.0, None))

    def _smooth_basis(self, name: str, x: np.ndarray) -> np.ndarray:
        k = self.smooth_names.index(name)
        return self.smoother.smoothers[k].transform(np.asarray(x, dtype=float))

    def evaluate_terms(self, n_grid: int = 100, *, too_far: Optional[float] = 0.1) -> List[TermGrid]:
        """Evaluate every smooth term on an ``n_grid`` (x ``n_grid``) grid over the data range.

        2-D cells farther than ``too_far`` (unit-scaled distance) from the data are NaN.
        """

        out: List[TermGrid] = []
        for name in self.smooth_names:
            x = _grid(*self.ranges[name], n_grid)
            fit, se = self._linpred(self._smooth_basis(name, x), self._slice((name,)))
            out.append(TermGrid(labels=(name,), x=x, fit=fit, se=se))

        for ti in self.interactions:
            a_name, b_name = ti.names
            gx = _grid(*self.ranges[a_name], n_grid)
            gy = _grid(*self.ranges[b_name], n_grid)
            basis = ti.transform(np.repeat(gx, n_grid), np.tile(gy, n_grid))
            fit, se = self._linpred(basis, self._slice(ti.names))
            fit = fit.reshape(n_grid, n_grid)
            se = se.reshape(n_grid, n_grid)
            if too_far is not None and too_far > 0:
                mask = _exclude_too_far(gx, gy, self.train_points[b_name], too_far)
                fit[mask] = np.nan
                se[mask] = np.nan
            out.append(TermGrid(labels=ti.names, x=gx, y=gy, fit=fit, se=se))
        return out

    def _full_exog(self, values: Dict[str, np.ndarray]) -> np.ndarray:
        n = len(next(iter(values.values())))
        cols = [np.ones((n, 1))]
        for ti in self.interactions:
            cols.append(ti.transform(values[ti.names[0]], values[ti.names[1]]))
        for name in self.smooth_names:
            cols.append(self._smooth_basis(name, values[name]))
        return np.column_stack(cols)

    def evaluate_view(self, view: Sequence[str], n_grid: int = 100) -> ViewGrid:
        """Linear predictor (without offset) over two variables, others at their median."""

        view = tuple(view)
        if len(view) != 2 or view[0] == view[1]:
            raise ValueError(f"view must name two distinct variables, got {view}")
        unknown = [v for v in view if v not in self.smooth_names]
        if unknown:
            raise KeyError(f"Variables not in model: {unknown}. Model variables: {self.smooth_names}")

        gx = _grid(*self.ranges[view[0]], n_grid)
        gy = _grid(*self.ranges[view[1]], n_grid)
        values: Dict[str, np.ndarray] = {
            view[0]: np.repeat(gx, n_grid),
            view[1]: np.tile(gy, n_grid),
        }
        fixed = {}
        for name in self.smooth_names:
            if name not in values:
                fixed[name] = self.medians[name]
                values[name] = np.full(n_grid * n_grid, self.medians[name])

        exog = self._full_exog(values)
        fit, se = self._linpred(exog, np.arange(self.params.size))
        return ViewGrid(
            view=view,  # type: ignore[arg-type]
            x=gx,
            y=gy,
            fit=fit.reshape(n_grid, n_grid),
            se_fit=se.reshape(n_grid, n_grid),
            fixed=fixed,
        )

    def term_table(self) -> pd.DataFrame:
        rows = []
        for s in self._slices:
            kind = "s" if len(s.labels) == 1 else "ti"
            rows.append(
                {
                    "term": f"{kind}({', '.join(s.labels)})",
                    "labels": " x ".join(s.labels),
                    "n_coef": int(s.idx.size),
                    "penalized": kind == "s",
                }
            )
        # Smooth terms first, in model order.
        return pd.DataFrame(rows).sort_values("penalized", ascending=False, kind="stable").reset_index(drop=True)

    def save(self, path: str) -> None:
        dump(self, path)

    @staticmethod
    def load(path: str) -> "PamModel":
        obj = load(path)
        if not isinstance(obj, PamModel):
            raise TypeError("Loaded object is not a PamModel")
        return obj


def fit_pam(
    ped: pd.DataFrame,
    *,
    predictors: Sequence[str],
    df_smooth: int = 8,
    df_interaction: int = 5,
    degree: int = 3,
    alpha: float = 1.0,
    select_alpha: bool = False,
) -> PamModel:
    """Fit ``ped_status ~ s(tend) + sum_p [s(p) + ti(tend, p)]`` as a Poisson GAM with offset.

    Parameters
    ----------
    ped:
        Piece-wise exponential data from :func:`pamviz.core.data.split_data`.
    predictors:
        Covariates that each get a smooth main effect and a time interaction.
    df_smooth, df_interaction, degree:
        B-spline basis sizes for the main smooths and for each interaction margin.
    alpha:
        Penalty weight for every smooth term.
    select_alpha:
        Choose the penalty weights by AIC (``GLMGam.select_penweight``) instead.
    """

    predictors = list(predictors)
    if TIME in predictors:
        raise ValueError(f"'{TIME}' is the time axis and cannot be used as a predictor.")
    require_columns(ped, [TIME, "ped_status", "offset", *predictors])

    smooth_names = [TIME, *predictors]
    data = ped[[*smooth_names, "ped_status", "offset"]].apply(pd.to_numeric, errors="coerce")
    n_before = len(data)
    data = data.dropna().reset_index(drop=True)
    if len(data) < n_before:
        logger.warning("Dropping %d PED rows with missing values", n_before - len(data))
    if data.empty:
        raise ValueError("No complete PED rows to fit.")

    x_smooth = data[smooth_names].to_numpy(dtype=float)
    k = len(smooth_names)
    smoother = BSplines(
        x_smooth,
        df=[df_smooth] * k,
        degree=[degree] * k,
        constraints="center",
        variable_names=smooth_names,
    )

    interactions = [
        TensorInteraction(
            data[TIME].to_numpy(dtype=float),
            data[p].to_numpy(dtype=float),
            names=(TIME, p),
            df=df_interaction,
            degree=degree,
        )
        for p in predictors
    ]
    exog = np.column_stack([np.ones(len(data))] + [ti.basis for ti in interactions])
    endog = data["ped_status"].to_numpy(dtype=float)
    offset = data["offset"].to_numpy(dtype=float)

    def _model(alphas):
        return GLMGam(
            endog,
            exog=exog,
            smoother=smoother,
            alpha=alphas,
            family=sm.families.Poisson(),
            offset=offset,
        )

    alphas = [float(alpha)] * k
    if select_alpha:
        alphas, _, _ = _model(alphas).select_penweight(method="minimize")
        logger.info("Selected penalty weights: %s", np.round(alphas, 4).tolist())

    results = _model(alphas).fit()
    logger.info(
        "Fitted PAM on %d PED rows (%d events): deviance=%.3f",
        len(data),
        int(endog.sum()),
        float(results.deviance),
    )

    ranges = {name: (float(data[name].min()), float(data[name].max())) for name in smooth_names}
    medians = {name: float(data[name].median()) for name in smooth_names}
    train_points = {
        p: np.unique(data[[TIME, p]].to_numpy(dtype=float), axis=0) for p in predictors
    }

    return PamModel(
        predictors=predictors,
        smoother=smoother,
        interactions=interactions,
        results=results,
        ranges=ranges,
        medians=medians,
        train_points=train_points,
    )


def fit_pam_from_config(ped: pd.DataFrame, cfg: PamConfig) -> PamModel:
    return fit_pam(
        ped,
        predictors=cfg.predictors,
        df_smooth=cfg.df_smooth,
        df_interaction=cfg.df_interaction,
        degree=cfg.degree,
        alpha=cfg.alpha,
        select_alpha=cfg.select_alpha,
    )
