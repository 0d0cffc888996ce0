"""
Loss functions for feature importance, looked up by name.
"""

from ._metrics import *
