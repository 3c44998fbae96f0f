from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


class PlotOptions(BaseModel):
    """Presentation options for :func:`pamviz.viz.pam_plots.plot_pam`."""

    response: str = "RT"
    se: float = Field(default=2.0, description="Number of standard errors for the significance band")
    area: bool = False
    num_grid: int = 100

    # None -> 500-step reversed RdYlBu ramp
    pallet: Optional[List[str]] = None
    levs: Optional[List[float]] = None

    rugx: bool = True
    rugy: bool = True

    main: Optional[str] = None
    xlab: Optional[str] = None
    ylab: Optional[str] = None

    @model_validator(mode="after")
    def _validate(self) -> "PlotOptions":
        if not self.se > 0:
            raise ValueError(f"se must be positive, got {self.se}.")
        if self.num_grid < 2:
            raise ValueError(f"num_grid must be >= 2, got {self.num_grid}.")
        if self.pallet is not None and len(self.pallet) == 0:
            raise ValueError("pallet must contain at least one color.")
        if self.levs is not None:
            self.levs = sorted(float(v) for v in self.levs)
        return self


class PamConfig(BaseModel):
    """Project config: which columns describe the survival data and how to fit the PAM."""

    project_name: str = "pam"

    time: str = "RT"
    status: str = "status"
    id_col: str = "id"

    predictors: List[str]

    # Cut points are quantiles of the event times at this step (0, step, 2*step, ..., 1).
    cut_quantiles_step: float = 0.02

    df_smooth: int = 8
    df_interaction: int = 5
    degree: int = 3
    alpha: float = 1.0
    select_alpha: bool = False

    plot: PlotOptions = Field(default_factory=PlotOptions)

    @model_validator(mode="after")
    def _validate(self) -> "PamConfig":
        if not self.predictors:
            raise ValueError("At least one predictor is required.")
        if "tend" in self.predictors:
            raise ValueError("'tend' is reserved for elapsed time and cannot be a predictor.")
        if not 0 < self.cut_quantiles_step <= 0.5:
            raise ValueError("cut_quantiles_step must be in (0, 0.5].")
        for name, df in (("df_smooth", self.df_smooth), ("df_interaction", self.df_interaction)):
            if df <= self.degree:
                raise ValueError(f"{name} ({df}) must exceed the spline degree ({self.degree}).")
        # The response on the plot is the raw event time unless explicitly overridden.
        if "response" not in self.plot.model_fields_set:
            self.plot = self.plot.model_copy(update={"response": self.time})
        return self

    @classmethod
    def from_yaml(cls, path: str | Path) -> "PamConfig":
        path = Path(path)
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data)

    def cut_quantiles(self) -> List[float]:
        n = int(1.0 / self.cut_quantiles_step + 1e-9)
        qs = [i * self.cut_quantiles_step for i in range(n + 1)]
        qs = [q for q in qs if q < 1.0 - 1e-9]
        return qs + [1.0]

    def required_columns(self) -> List[str]:
        return [self.time, self.status, *self.predictors]
