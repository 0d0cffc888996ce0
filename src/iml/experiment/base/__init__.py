"""
Base classes for interpretability experiments.
"""

from ._base import *
