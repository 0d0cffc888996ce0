"""
Reference data for experiments.

The :class:`.DataSampler` class holds the observations used to explain a model and
draws the rows that experiments intervene on.
"""

from ._sampler import *
