"""
Drawers and styles for the results of interpretability experiments.
"""

from ._draw import *
from ._style import *
