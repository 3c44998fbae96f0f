from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from pamviz.core.config import PlotOptions
from pamviz.core.data import require_columns
from pamviz.model.terms import TIME, EffectModel, require_term
from pamviz.viz.canvas import Canvas, MatplotlibCanvas, offscreen_canvas

logger = logging.getLogger(__name__)

# 7-class ColorBrewer RdYlBu, blue -> red.
_RDYLBU_7_REVERSED = ["#4575B4", "#91BFDB", "#E0F3F8", "#FFFFBF", "#FEE090", "#FC8D59", "#D73027"]

BACKGROUND_ALPHA = "66"
RUG_QUANTILES = np.linspace(0.0, 1.0, 201)


def default_pallet(n: int = 500) -> List[str]:
    """``n`` colors interpolated along the reversed 7-class RdYlBu ramp."""

    from matplotlib.colors import LinearSegmentedColormap, to_hex

    cmap = LinearSegmentedColormap.from_list("rdylbu_r", _RDYLBU_7_REVERSED, N=n)
    return [to_hex(cmap(i)) for i in range(n)]


def with_alpha(colors: Sequence[str], alpha: str = BACKGROUND_ALPHA) -> List[str]:
    from matplotlib.colors import to_hex

    return [to_hex(c, keep_alpha=False) + alpha for c in colors]


def rug_positions(values: Any) -> np.ndarray:
    """The 201 quantiles (0, 0.005, ..., 1) of the non-missing values."""

    v = pd.to_numeric(pd.Series(np.asarray(values).ravel()), errors="coerce").to_numpy(dtype=float)
    v = v[np.isfinite(v)]
    if v.size == 0:
        return np.array([], dtype=float)
    return np.quantile(v, RUG_QUANTILES)


@dataclass
class PamSurface:
    """Everything the effect-surface plot draws, before drawing.

    Matrices are ``(len(x), len(y))``: rows are time (``x``), columns the predictor (``y``).
    """

    predictor: str
    x: np.ndarray
    y: np.ndarray
    main: np.ndarray
    interaction: np.ndarray
    surface: np.ndarray
    zlimit: Tuple[float, float]
    mat: np.ndarray
    matmin: np.ndarray
    matmax: np.ndarray
    z3: np.ndarray
    z2: np.ndarray
    foreground: np.ndarray


def effect_surface(main: np.ndarray, interaction: np.ndarray) -> np.ndarray:
    main = np.asarray(main, dtype=float)
    interaction = np.asarray(interaction, dtype=float)
    if interaction.ndim != 2 or main.shape != (interaction.shape[1],):
        raise ValueError(
            f"Main effect of shape {main.shape} does not match interaction columns {interaction.shape}"
        )
    return interaction + main[None, :]


def symmetric_zlimit(z: np.ndarray) -> Tuple[float, float]:
    finite = np.abs(z[np.isfinite(z)])
    m = float(finite.max()) if finite.size else 0.0
    return (-m, m)


def center_rows(fit: np.ndarray, se_fit: np.ndarray, se: float) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Subtract each row's nan-mean of ``fit`` from fit and from its +/- ``se`` band."""

    fit = np.asarray(fit, dtype=float)
    se_fit = np.asarray(se_fit, dtype=float)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        row_mean = np.nanmean(fit, axis=1, keepdims=True)
    lo = fit - se * se_fit
    hi = fit + se * se_fit
    return fit - row_mean, lo - row_mean, hi - row_mean


def significance_masks(
    surface: np.ndarray, matmin: np.ndarray, matmax: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Return ``(z3, z2)``.

    ``z3``: the surface with cells whose band spans zero set to NaN.
    ``z2``: the surface with whole rows set to NaN where ``z3`` nan-sums to exactly 0.
    """

    spans_zero = (matmin < 0) & (matmax > 0)
    z3 = surface.copy()
    z3[spans_zero] = np.nan

    z2 = surface.copy()
    empty_rows = np.nansum(z3, axis=1) == 0
    z2[empty_rows, :] = np.nan
    return z3, z2


def compute_pam_surface(
    model: EffectModel,
    predictor: str,
    *,
    se: float = 2,
    area: bool = False,
    num_grid: int = 100,
) -> PamSurface:
    terms = model.evaluate_terms(num_grid)

    main_term = require_term(terms, (predictor,), ordered=True)
    inter_term = require_term(terms, (TIME, predictor))
    if inter_term.labels != (TIME, predictor):
        inter_term = inter_term.transposed()

    assert inter_term.y is not None
    if not np.allclose(main_term.x, inter_term.y):
        raise ValueError(
            f"Grid of s({predictor}) does not line up with the {predictor} axis of the interaction term."
        )

    surface = effect_surface(main_term.fit, inter_term.fit)
    zlimit = symmetric_zlimit(surface)

    view = model.evaluate_view((TIME, predictor), num_grid)
    fit, se_fit = view.fit, view.se_fit
    if tuple(view.view) == (predictor, TIME):
        fit, se_fit = fit.T, se_fit.T
    if fit.shape != surface.shape:
        raise ValueError(f"View grid {fit.shape} does not match the effect surface {surface.shape}")

    mat, matmin, matmax = center_rows(fit, se_fit, se)
    mat[np.isnan(surface)] = np.nan

    z3, z2 = significance_masks(surface, matmin, matmax)
    foreground = z3 if area else z2

    logger.debug(
        "Effect surface for %s: zlimit=%s, %d/%d significant cells, %d empty rows",
        predictor,
        zlimit,
        int(np.isfinite(z3).sum()),
        z3.size,
        int(np.isnan(z2).all(axis=1).sum()),
    )

    return PamSurface(
        predictor=predictor,
        x=inter_term.x,
        y=inter_term.y,
        main=np.asarray(main_term.fit, dtype=float),
        interaction=np.asarray(inter_term.fit, dtype=float),
        surface=surface,
        zlimit=zlimit,
        mat=mat,
        matmin=matmin,
        matmax=matmax,
        z3=z3,
        z2=z2,
        foreground=foreground,
    )


def plot_pam(
    model: EffectModel,
    predictor: str,
    data: pd.DataFrame,
    response: str = "RT",
    se: float = 2,
    area: bool = False,
    num_grid: int = 100,
    pallet: Optional[Sequence[str]] = None,
    levs: Optional[Sequence[float]] = None,
    rugx: bool = True,
    rugy: bool = True,
    main: Optional[str] = None,
    xlab: Optional[str] = None,
    ylab: Optional[str] = None,
    *,
    canvas: Optional[Canvas] = None,
    **kwargs: Any,
) -> None:
    """Plot the time x ``predictor`` effect surface of a fitted PAM.

    The full effect ``s(predictor) + ti(tend, predictor)`` is drawn semi-transparent.
    On top, the significant part is drawn opaque: with ``area=False`` every time row
    that has at least one significant cell, with ``area=True`` only the significant
    cells. Contour lines of the full surface and quantile rugs of the response
    (x axis) and the predictor (y axis) follow.

    Parameters
    ----------
    model:
        Fitted model, e.g. :class:`pamviz.model.pam.PamModel`.
    predictor:
        Predictor to plot; must be a term of the model and a column of ``data``.
    data:
        The raw (not PED-transformed) data the model was fit to.
    response:
        Name of the event-time column in ``data``.
    se:
        Number of standard errors of the significance band (2 ~ 95% interval).
    area:
        Overlay significant cells only instead of significant time rows.
    pallet:
        Colors for the heatmap. Defaults to a 500-step reversed RdYlBu ramp.
    levs:
        Contour levels; chosen automatically if omitted.
    rugx, rugy:
        Draw quantile rugs for the response / the predictor.
    canvas:
        Where to draw. Defaults to the current matplotlib axes.
    kwargs:
        Passed to the raster and contour draw calls.
    """

    opts = PlotOptions(
        response=response,
        se=se,
        area=area,
        num_grid=num_grid,
        pallet=list(pallet) if pallet is not None else None,
        levs=list(levs) if levs is not None else None,
        rugx=rugx,
        rugy=rugy,
        main=main,
        xlab=xlab,
        ylab=ylab,
    )
    require_columns(data, [opts.response, predictor])

    res = compute_pam_surface(model, predictor, se=opts.se, area=opts.area, num_grid=opts.num_grid)

    if canvas is None:
        import matplotlib.pyplot as plt

        canvas = MatplotlibCanvas(plt.gca())

    colors = opts.pallet if opts.pallet is not None else default_pallet()

    canvas.image(
        res.x,
        res.y,
        res.surface,
        zlim=res.zlimit,
        colors=with_alpha(colors),
        main=opts.main if opts.main is not None else predictor,
        xlab=opts.xlab if opts.xlab is not None else "time",
        ylab=opts.ylab if opts.ylab is not None else predictor,
        **kwargs,
    )
    canvas.image(res.x, res.y, res.foreground, zlim=res.zlimit, colors=list(colors), **kwargs)
    canvas.contour(res.x, res.y, res.surface, levels=opts.levs, **kwargs)

    if opts.rugx:
        canvas.rug(rug_positions(data[opts.response]), side=1)
    if opts.rugy:
        canvas.rug(rug_positions(data[predictor]), side=2)


def save_pam_plot(
    model: EffectModel,
    predictor: str,
    data: pd.DataFrame,
    *,
    out_path: str | Path,
    options: Optional[PlotOptions] = None,
    figsize: Tuple[float, float] = (7.0, 6.0),
    dpi: int = 200,
    **kwargs: Any,
) -> Path:
    """Render :func:`plot_pam` off-screen and save it.

    Parameters
    ----------
    options:
        Presentation options; defaults to :class:`PlotOptions` defaults.
    out_path:
        Output image path (PNG recommended).
    """

    opts = options or PlotOptions()
    out_path = Path(out_path)

    with offscreen_canvas(figsize=figsize) as canvas:
        plot_pam(
            model,
            predictor,
            data,
            canvas=canvas,
            **opts.model_dump(),
            **kwargs,
        )
        fig = canvas.ax.figure
        out_path.parent.mkdir(parents=True, exist_ok=True)
        fig.tight_layout()
        fig.savefig(out_path, dpi=dpi)

    logger.info("Wrote %s", out_path)
    return out_path
