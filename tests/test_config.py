from pathlib import Path

import pytest
from pydantic import ValidationError

from pamviz.core.config import PamConfig, PlotOptions

ROOT = Path(__file__).resolve().parents[1]


def test_example_config_loads():
    cfg = PamConfig.from_yaml(ROOT / "examples" / "configs" / "lexical_decision.yaml")
    assert cfg.predictors == ["logFrequency", "Length"]
    assert cfg.plot.response == "RT"
    assert cfg.required_columns() == ["RT", "status", "logFrequency", "Length"]


def test_cut_quantiles_cover_unit_interval():
    qs = PamConfig(predictors=["x"]).cut_quantiles()
    assert len(qs) == 51
    assert qs[0] == 0.0 and qs[-1] == 1.0

    qs = PamConfig(predictors=["x"], cut_quantiles_step=0.3).cut_quantiles()
    assert qs == pytest.approx([0.0, 0.3, 0.6, 0.9, 1.0])


def test_plot_response_follows_time_column_unless_set():
    assert PamConfig(predictors=["x"], time="latency").plot.response == "latency"
    cfg = PamConfig(predictors=["x"], time="latency", plot={"response": "RT"})
    assert cfg.plot.response == "RT"


def test_plot_option_defaults():
    opts = PlotOptions()
    assert (opts.response, opts.se, opts.area, opts.num_grid) == ("RT", 2.0, False, 100)
    assert opts.rugx and opts.rugy
    assert opts.pallet is None and opts.levs is None


@pytest.mark.parametrize(
    "kwargs",
    [{"se": 0}, {"se": -1.0}, {"num_grid": 1}, {"pallet": []}],
)
def test_plot_option_validation(kwargs):
    with pytest.raises(ValidationError):
        PlotOptions(**kwargs)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"predictors": []},
        {"predictors": ["tend"]},
        {"predictors": ["x"], "df_smooth": 3},
        {"predictors": ["x"], "cut_quantiles_step": 0.0},
    ],
)
def test_pam_config_validation(kwargs):
    with pytest.raises(ValidationError):
        PamConfig(**kwargs)
