"""
Model-agnostic interpretability.

This is the class and function reference of :mod:`iml` for explaining the
predictions of any fitted model by perturbing its inputs: permutation feature
importance, partial dependence, individual conditional expectation, tree
surrogates, LIME, and Shapley values.
"""


__version__ = "0.2.0"
