"""
Core implementation of :mod:`iml.data`
"""

import logging
from copy import copy
from typing import Any, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from sklearn.utils import check_random_state

from pytools.api import AllTracker

from .._types import RandomState

log = logging.getLogger(__name__)

__all__ = ["DataSampler"]

#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


class DataSampler:
    """
    The reference data used to explain a model: a table of observations,
    comprising features and an optional target variable.

    Experiments obtain the rows they intervene on from a sampler, either the
    complete data or a random draw of rows.

    The underlying data structure is a pandas :class:`.DataFrame`.

    Supports :func:`.len`, returning the number of observations.
    """

    __slots__ = ["_observations", "_target", "_features"]

    _observations: pd.DataFrame
    _target: Optional[str]
    _features: List[str]

    #: default name for the observations index (= row index)
    IDX_OBSERVATION = "observation"

    #: default name for the feature index (= column index)
    IDX_FEATURE = "feature"

    #: feature type of numeric features
    TYPE_NUMERICAL = "numerical"

    #: feature type of all other features
    TYPE_CATEGORICAL = "categorical"

    def __init__(
        self,
        observations: pd.DataFrame,
        *,
        target: Optional[str] = None,
        features: Optional[Sequence[str]] = None,
    ) -> None:
        """
        :param observations: a table of observational data; \
            each row represents one observation
        :param target: optional name of the column representing the target variable
        :param features: optional sequence of strings naming the columns that \
            represent features; if omitted, all non-target columns are considered \
            features
        """

        if observations is None or not isinstance(observations, pd.DataFrame):
            raise ValueError("arg observations is not a DataFrame")

        observations_index = observations.index

        if observations_index.nlevels != 1:
            raise ValueError(
                f"index of arg observations has {observations_index.nlevels} levels, "
                "but is required to have 1 level"
            )

        if len(observations) == 0:
            raise ValueError("arg observations must contain at least one row")

        if target is not None and target not in observations.columns:
            raise KeyError(
                f'arg target="{target}" is not a column in the observations table'
            )

        self._target = target

        feature_list: List[str]

        if features is None:
            if target is None:
                feature_list = observations.columns.to_list()
            else:
                feature_list = observations.columns.drop(labels=[target]).to_list()
        else:
            missing_columns = [
                name for name in features if name not in observations.columns
            ]
            if missing_columns:
                raise KeyError(
                    "observations table is missing feature columns "
                    f"{', '.join(map(str, missing_columns))}"
                )
            feature_list = list(features)

            if target is not None and target in feature_list:
                raise KeyError(f"target {target} is also included in the features")

        if not feature_list:
            raise ValueError("no features left in the observations table")

        self._features = feature_list

        if observations_index.name is None:
            observations = observations.rename_axis(index=DataSampler.IDX_OBSERVATION)

        columns = feature_list if target is None else [*feature_list, target]
        self._observations = observations.loc[:, columns]

    @property
    def index(self) -> pd.Index:
        """
        Row index of all observations
        """
        return self._observations.index

    @property
    def feature_names(self) -> List[str]:
        """
        The column names of all features
        """
        return self._features

    @property
    def n_features(self) -> int:
        """
        The number of features
        """
        return len(self._features)

    @property
    def target_name(self) -> Optional[str]:
        """
        The column name of the target; ``None`` if no target is defined.
        """
        return self._target

    @property
    def features(self) -> pd.DataFrame:
        """
        The features for all observations
        """
        features: pd.DataFrame = self._observations.loc[:, self._features]

        if features.columns.name is None:
            features = features.rename_axis(columns=DataSampler.IDX_FEATURE)

        return features

    @property
    def target(self) -> Optional[pd.Series]:
        """
        The target variable for all observations; ``None`` if no target is defined.
        """
        if self._target is None:
            return None
        return self._observations.loc[:, self._target]

    @property
    def feature_types(self) -> pd.Series:
        """
        The type of each feature, either :attr:`.TYPE_NUMERICAL` or
        :attr:`.TYPE_CATEGORICAL`, indexed by feature name.

        Boolean features are considered categorical.
        """
        dtypes = self._observations.dtypes.loc[self._features]
        return pd.Series(
            [
                DataSampler.TYPE_NUMERICAL
                if pd.api.types.is_numeric_dtype(dtype)
                and not pd.api.types.is_bool_dtype(dtype)
                else DataSampler.TYPE_CATEGORICAL
                for dtype in dtypes
            ],
            index=pd.Index(self._features, name=DataSampler.IDX_FEATURE),
            name="type",
        )

    def sample(
        self,
        n: Optional[int] = None,
        *,
        replace: bool = True,
        random_state: RandomState = None,
        with_target: bool = False,
    ) -> pd.DataFrame:
        """
        Get rows of the observations.

        If ``n`` is ``None``, return all observations in their original order.
        Otherwise draw ``n`` observations at random.

        The resulting data frame has a fresh range index, as draws with replacement
        may include the same observation more than once.

        :param n: the number of rows to draw; ``None`` to get all rows
        :param replace: if ``True``, draw with replacement (default: ``True``)
        :param random_state: seed or random state for drawing rows
        :param with_target: if ``True``, include the target column
        :return: the drawn rows
        """

        if with_target:
            if self._target is None:
                raise ValueError("arg with_target=True requires a target")
            data = self._observations
        else:
            data = self.features

        if n is None:
            rows = data
        else:
            if n < 1:
                raise ValueError(f"arg n={n} must be a positive integer")
            if not replace and n > len(data):
                raise ValueError(
                    f"arg n={n} exceeds the number of observations ({len(data)}) "
                    "for a draw without replacement"
                )
            positions = check_random_state(random_state).choice(
                len(data), size=n, replace=replace
            )
            log.debug(f"drew {n} of {len(data)} observations")
            rows = data.iloc[positions]

        return rows.reset_index(drop=True).rename_axis(
            index=DataSampler.IDX_OBSERVATION
        )

    def subsample(
        self,
        *,
        loc: Optional[Union[slice, Sequence[Any]]] = None,
        iloc: Optional[Union[slice, Sequence[int], np.ndarray]] = None,
    ) -> "DataSampler":
        """
        Return a new sampler with a subset of this sampler's observations.

        Select observations either by indices (``loc``), or integer indices
        (``iloc``). Exactly one of both arguments must be provided when
        calling this method, not both or none.

        :param loc: indices of observations to select
        :param iloc: integer indices of observations to select
        :return: copy of this sampler, comprising only the observations in the \
            given rows
        """
        subsample = copy(self)
        if iloc is None:
            if loc is None:
                raise ValueError("either arg loc or arg iloc must be specified")
            subsample._observations = self._observations.loc[loc, :]
        elif loc is None:
            subsample._observations = self._observations.iloc[iloc, :]
        else:
            raise ValueError(
                "arg loc and arg iloc must not both be specified at the same time"
            )
        return subsample

    def __len__(self) -> int:
        return len(self._observations)


__tracker.validate()
