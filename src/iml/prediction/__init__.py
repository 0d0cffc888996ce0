"""
Uniform access to model predictions.

A :class:`.Prediction` wraps a fitted learner or a prediction function, and returns
predictions as a data frame with one column per output, regardless of the type of
model.
"""

from ._prediction import *
