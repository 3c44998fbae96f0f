from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator, Optional, Protocol, Sequence, Tuple

import numpy as np

# pcolormesh options that ContourSet does not accept.
_RASTER_ONLY = frozenset({"shading"})


class Canvas(Protocol):
    """The three drawing primitives the effect-surface plot needs.

    ``z[i, j]`` is addressed by ``(x[i], y[j])``; NaN cells are left unpainted.
    ``side`` follows the axis numbering used for rugs: 1 = bottom (x), 2 = left (y).
    """

    def image(
        self,
        x: np.ndarray,
        y: np.ndarray,
        z: np.ndarray,
        *,
        zlim: Tuple[float, float],
        colors: Sequence[str],
        **kwargs: Any,
    ) -> None:
        ...

    def contour(
        self,
        x: np.ndarray,
        y: np.ndarray,
        z: np.ndarray,
        *,
        levels: Optional[Sequence[float]] = None,
        **kwargs: Any,
    ) -> None:
        ...

    def rug(self, positions: np.ndarray, *, side: int) -> None:
        ...


class MatplotlibCanvas:
    """:class:`Canvas` backed by a matplotlib ``Axes``."""

    def __init__(self, ax):
        self.ax = ax

    def image(self, x, y, z, *, zlim, colors, main=None, xlab=None, ylab=None, **kwargs) -> None:
        from matplotlib.colors import ListedColormap

        cmap = ListedColormap(list(colors)).with_extremes(bad=(0.0, 0.0, 0.0, 0.0))
        zm = np.ma.masked_invalid(np.asarray(z, dtype=float).T)

        kw = dict(cmap=cmap, vmin=zlim[0], vmax=zlim[1], shading="nearest")
        kw.update(kwargs)
        self.ax.pcolormesh(np.asarray(x, dtype=float), np.asarray(y, dtype=float), zm, **kw)
        if main is not None:
            self.ax.set_title(main)
        if xlab is not None:
            self.ax.set_xlabel(xlab, fontsize="large")
        if ylab is not None:
            self.ax.set_ylabel(ylab, fontsize="large")

    def contour(self, x, y, z, *, levels=None, colors="black", labelsize=8, **kwargs) -> None:
        zt = np.asarray(z, dtype=float).T
        if not np.isfinite(zt).any():
            return
        kw = dict(linewidths=0.8)
        # contour refuses colors and cmap together
        if "cmap" not in kwargs:
            kw["colors"] = colors
        kw.update({k: v for k, v in kwargs.items() if k not in _RASTER_ONLY})
        if levels is not None:
            kw["levels"] = list(levels)
        cs = self.ax.contour(np.asarray(x, dtype=float), np.asarray(y, dtype=float), zt, **kw)
        if labelsize:
            self.ax.clabel(cs, inline=True, fontsize=labelsize)

    def rug(self, positions, *, side: int, length: float = 0.03, color: str = "black") -> None:
        positions = np.asarray(positions, dtype=float)
        if side == 1:
            self.ax.vlines(positions, 0.0, length, transform=self.ax.get_xaxis_transform(), colors=color, linewidth=0.6)
        elif side == 2:
            self.ax.hlines(positions, 0.0, length, transform=self.ax.get_yaxis_transform(), colors=color, linewidth=0.6)
        else:
            raise ValueError(f"Unsupported rug side: {side}")


@contextmanager
def offscreen_canvas(figsize: Tuple[float, float] = (7.0, 6.0)) -> Iterator[MatplotlibCanvas]:
    """Yield a canvas on a standalone Agg figure; the figure is released on exit.

    The figure is not registered with pyplot, so nothing is shown and the current
    pyplot figure is left untouched.
    """

    from matplotlib.backends.backend_agg import FigureCanvasAgg
    from matplotlib.figure import Figure

    fig = Figure(figsize=figsize)
    FigureCanvasAgg(fig)
    ax = fig.add_subplot(1, 1, 1)
    try:
        yield MatplotlibCanvas(ax)
    finally:
        fig.clear()
