"""
Local interpretable model-agnostic explanations (LIME).
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union, cast

import numpy as np
import pandas as pd
from sklearn.linear_model import LinearRegression, lars_path

from pytools.api import AllTracker, inheritdoc
from pytools.fit import fitted_only

from .._types import RandomState
from ..data import DataSampler
from ..prediction import Prediction
from .base import Experiment, LocalExperiment

log = logging.getLogger(__name__)

__all__ = ["Lime"]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


@inheritdoc(match="[see superclass]")
class Lime(LocalExperiment):
    """
    Explain a single prediction with a local, sparse linear model.

    Rows are drawn from the reference data and predicted by the model. Each row is
    weighted by its proximity to the observation of interest, based on the Gower
    distance; by default the weight is `1 - d`, or `exp(-d² / w²)` if a kernel
    width `w` is given.

    Numerical features enter the linear model unchanged; categorical features are
    recoded as indicators of having the same value as the observation of interest,
    named ``feature=value``.

    For each output, the `k` features entering the weighted lasso path first are
    selected, and a weighted linear regression is fitted on them.

    The results are a table with one row per selected feature and output, with
    columns

    - :attr:`.COL_FEATURE`: the name of the (recoded) feature
    - :attr:`.COL_OUTPUT`: the output of the model
    - :attr:`.COL_BETA`: the coefficient of the local linear model
    - :attr:`.COL_X_RECODED`: the recoded value of the observation of interest
    - :attr:`.COL_EFFECT`: the product of coefficient and recoded value
    - :attr:`.COL_FEATURE_VALUE`: the feature with its value, as ``feature=value``

    See Ribeiro, M.T., Singh, S., and Guestrin, C. (2016). "Why Should I Trust
    You?": Explaining the Predictions of Any Classifier.
    """

    #: Name of the results column with feature names.
    COL_FEATURE = "feature"

    #: Name of the results column with coefficients.
    COL_BETA = "beta"

    #: Name of the results column with recoded values of the observation of interest.
    COL_X_RECODED = "x_recoded"

    #: Name of the results column with feature effects.
    COL_EFFECT = "effect"

    #: Name of the results column with feature values.
    COL_FEATURE_VALUE = "feature_value"

    #: The maximum number of features in the local model.
    k: int

    #: The kernel width; ``None`` to weight by `1 - d`.
    kernel_width: Optional[float]

    #: Seed or random state for drawing the sample.
    random_state: RandomState

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        x_interest: Union[pd.Series, pd.DataFrame],
        *,
        sample_size: int = 100,
        k: int = 3,
        kernel_width: Optional[float] = None,
        random_state: RandomState = None,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param k: the maximum number of features in the local model (default: 3)
        :param kernel_width: optional width of an exponential kernel applied to the
            Gower distance
        :param random_state: seed or random state for drawing the sample
        """
        super().__init__(
            predictor,
            sampler,
            x_interest,
            sample_size=sample_size,
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )

        if k < 1:
            raise ValueError(f"arg k={k} must be positive")
        if kernel_width is not None and kernel_width <= 0:
            raise ValueError(f"arg kernel_width={kernel_width} must be positive")

        self.k = k
        self.kernel_width = kernel_width
        self.random_state = random_state

        self._models: Optional[Dict[Any, Tuple[List[str], LinearRegression]]] = None

    __init__.__doc__ = cast(str, LocalExperiment.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    @property
    @fitted_only
    def intercept_(self) -> pd.Series:
        """
        The intercepts of the local linear models, per output.
        """
        return pd.Series(
            {
                output: model.intercept_
                for output, (_, model) in cast(dict, self._models).items()
            },
            name="intercept",
        ).rename_axis(index=Experiment.COL_OUTPUT)

    @fitted_only
    def predict(self, X: pd.DataFrame) -> pd.DataFrame:
        """
        Predict with the local linear models.

        :param X: the features to predict for
        :return: a data frame with one column per output
        """
        x_recoded = self._recode(X.loc[:, self.sampler.feature_names])
        return pd.DataFrame(
            {
                output: model.predict(x_recoded.loc[:, features].values)
                if features
                else np.full(len(X), model.intercept_)
                for output, (features, model) in cast(dict, self._models).items()
            },
            index=X.index,
        ).rename_axis(columns=Experiment.COL_OUTPUT)

    def _sample(self) -> pd.DataFrame:
        return self.sampler.sample(self.sample_size, random_state=self.random_state)

    def _aggregate(self, quantity: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
        y_hat = cast(pd.DataFrame, quantity)
        x_sample = cast(pd.DataFrame, self._x_sample)

        x_recoded = self._recode(x_sample)
        x_interest_recoded = self._recode(self.x_interest).iloc[0]
        weights = self._weights(self._gower_distance(x_sample))
        if weights.sum() <= 0:
            log.warning(
                "all sampled observations are at maximum distance from "
                "x_interest; fitting the local models with uniform weights"
            )
            weights = np.ones(len(weights))

        k = self.k
        if k > x_recoded.shape[1]:
            log.warning(
                f"arg k={k} exceeds the number of features; "
                f"using all {x_recoded.shape[1]} features"
            )
            k = x_recoded.shape[1]

        feature_values = {
            recoded: f"{feature}={self.x_interest.loc[:, feature].iloc[0]}"
            for feature, recoded in zip(self.sampler.feature_names, x_recoded.columns)
        }

        models: Dict[Any, Tuple[List[str], LinearRegression]] = {}
        rows: List[Dict[str, Any]] = []

        for output in y_hat.columns:
            y = y_hat.loc[:, output].values
            features = self._select_features(x_recoded, y, weights, k)
            if len(features) < k:
                log.warning(
                    f"only {len(features)} features selected for output {output!r}"
                )

            model = LinearRegression()
            if features:
                model.fit(x_recoded.loc[:, features].values, y, sample_weight=weights)
            else:
                model.fit(np.zeros((len(y), 1)), y, sample_weight=weights)
                model.coef_ = np.zeros(0)
            models[output] = (features, model)

            for feature, beta in zip(features, model.coef_):
                x_value = float(x_interest_recoded.loc[feature])
                rows.append(
                    {
                        Lime.COL_FEATURE: feature,
                        Experiment.COL_OUTPUT: output,
                        Lime.COL_BETA: beta,
                        Lime.COL_X_RECODED: x_value,
                        Lime.COL_EFFECT: beta * x_value,
                        Lime.COL_FEATURE_VALUE: feature_values[feature],
                    }
                )

        self._models = models

        return pd.DataFrame(
            rows,
            columns=[
                Lime.COL_FEATURE,
                Experiment.COL_OUTPUT,
                Lime.COL_BETA,
                Lime.COL_X_RECODED,
                Lime.COL_EFFECT,
                Lime.COL_FEATURE_VALUE,
            ],
        )

    def _recode(self, X: pd.DataFrame) -> pd.DataFrame:
        # keep numerical features, replace categorical features with indicators of
        # equality with the observation of interest
        x_interest = self.x_interest.iloc[0]
        feature_types = self.sampler.feature_types

        columns: Dict[str, pd.Series] = {}
        for feature in self.sampler.feature_names:
            values = X.loc[:, feature]
            if feature_types.loc[feature] == DataSampler.TYPE_NUMERICAL:
                columns[feature] = values.astype(float)
            else:
                value = x_interest.loc[feature]
                columns[f"{feature}={value}"] = (values == value).astype(float)

        return pd.DataFrame(columns, index=X.index)

    def _gower_distance(self, X: pd.DataFrame) -> np.ndarray:
        # mean over features of the range-normalised absolute difference for
        # numerical features, and of the mismatch for categorical features
        features = self.sampler.features
        x_interest = self.x_interest.iloc[0]
        feature_types = self.sampler.feature_types

        distances = np.zeros(len(X))
        for feature in self.sampler.feature_names:
            values = X.loc[:, feature]
            if feature_types.loc[feature] == DataSampler.TYPE_NUMERICAL:
                observed = features.loc[:, feature]
                value_range = float(observed.max() - observed.min())
                if value_range > 0:
                    distances += (
                        np.abs(values.astype(float).values - float(x_interest[feature]))
                        / value_range
                    )
            else:
                distances += (values != x_interest[feature]).values.astype(float)

        return np.clip(distances / len(self.sampler.feature_names), 0.0, 1.0)

    def _weights(self, distances: np.ndarray) -> np.ndarray:
        kernel_width = self.kernel_width
        if kernel_width is None:
            return 1.0 - distances
        else:
            return np.exp(-(distances**2) / kernel_width**2)

    @staticmethod
    def _select_features(
        x: pd.DataFrame, y: np.ndarray, weights: np.ndarray, k: int
    ) -> List[str]:
        # the first k features to enter the weighted lasso path
        if weights.sum() <= 0:
            return []

        x_values = x.values
        x_centered = x_values - np.average(x_values, axis=0, weights=weights)
        y_centered = y - np.average(y, weights=weights)
        sqrt_weights = np.sqrt(weights)[:, np.newaxis]

        _, _, coefs = lars_path(
            x_centered * sqrt_weights,
            y_centered * sqrt_weights[:, 0],
            method="lasso",
        )

        nonzero = np.zeros(0, dtype=int)
        for step in range(coefs.shape[1] - 1, -1, -1):
            nonzero = np.flatnonzero(coefs[:, step])
            if len(nonzero) <= k:
                break

        return [x.columns[i] for i in nonzero]


__tracker.validate()
