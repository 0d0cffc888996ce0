"""
Type aliases for common use in the ``iml`` package
"""

from typing import Callable, Union

import numpy as np
import numpy.typing as npt
import pandas as pd
from typing_extensions import TypeAlias

# a function representing a model to be explained
ModelFunction: TypeAlias = Callable[
    [pd.DataFrame],
    Union[pd.Series, pd.DataFrame, npt.NDArray[np.float64]],
]

# a loss function comparing actual values with predictions
LossFunction: TypeAlias = Callable[[pd.Series, Union[pd.Series, pd.DataFrame]], float]

# a seed or random state
RandomState: TypeAlias = Union[None, int, np.random.RandomState]
