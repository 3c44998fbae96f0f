"""Visualization utilities.

- Effect surfaces of piece-wise exponential additive models (time x predictor heatmaps
  with a significance overlay, contours and quantile rugs)

Drawing goes through a small :class:`pamviz.viz.canvas.Canvas` interface; the save
helpers render off-screen so they work in headless CI/CD environments.
"""
