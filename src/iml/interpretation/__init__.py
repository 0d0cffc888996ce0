"""
One-stop interpretation of a model.

The :class:`.Interpretation` facade binds a model to its reference data once, and
runs any of the interpretability experiments of :mod:`iml.experiment` on them,
sharing a single prediction cache. The module-level functions of the same names
run a single experiment in one call.
"""

from ._interpretation import *
