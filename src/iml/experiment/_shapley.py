"""
Shapley values, approximated by sampling.
"""

import logging
from typing import Optional, Union, cast

import numpy as np
import pandas as pd
from scipy import stats
from sklearn.utils import check_random_state

from pytools.api import AllTracker, inheritdoc
from pytools.fit import fitted_only

from .._types import RandomState
from ..data import DataSampler
from ..prediction import Prediction
from .base import Experiment, LocalExperiment

log = logging.getLogger(__name__)

__all__ = ["Shapley"]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


@inheritdoc(match="[see superclass]")
class Shapley(LocalExperiment):
    """
    Attribute a single prediction to the features, using Shapley values from
    cooperative game theory.

    The Shapley value of a feature is its average marginal contribution to the
    prediction across all orders in which features can be added to a coalition.
    It is approximated by sampling: for each draw, a random order of the features
    and a random reference observation `z` are drawn; for each feature, the
    prediction of a row taking the values of the observation of interest for all
    features up to and including the feature (and the values of `z` for all other
    features) is compared with the prediction of the same row without the feature.

    The contributions of all features in a single draw add up to the difference
    between the predictions for the observation of interest and for `z`.

    The results are a table with one row per feature and output, with columns

    - :attr:`.COL_FEATURE`: the name of the feature
    - :attr:`.COL_OUTPUT`: the output of the model
    - :attr:`.COL_PHI`: the estimated Shapley value
    - :attr:`.COL_PHI_VAR`: the variance of the marginal contributions across draws
    - :attr:`.COL_LOWER_BOUND` and :attr:`.COL_UPPER_BOUND`: the confidence
      interval of the estimate, based on its standard error and
      :attr:`confidence_level`
    - :attr:`.COL_FEATURE_VALUE`: the feature with its value, as ``feature=value``

    See Strumbelj, E., and Kononenko, I. (2014). Explaining prediction models and
    individual predictions with feature contributions. Knowledge and Information
    Systems 41: 647-665.
    """

    #: Name of the results column with feature names.
    COL_FEATURE = "feature"

    #: Name of the results column with Shapley values.
    COL_PHI = "phi"

    #: Name of the results column with the variance of marginal contributions.
    COL_PHI_VAR = "phi_var"

    #: Name of the results column with the lower confidence bounds.
    COL_LOWER_BOUND = "lower_bound"

    #: Name of the results column with the upper confidence bounds.
    COL_UPPER_BOUND = "upper_bound"

    #: Name of the results column with feature values.
    COL_FEATURE_VALUE = "feature_value"

    #: Name of the design index level identifying draws.
    IDX_DRAW = "draw"

    #: Name of the design index level identifying features.
    IDX_FEATURE = "feature"

    #: Name of the design index level distinguishing rows with and without the
    #: feature.
    IDX_WITH_FEATURE = "with_feature"

    #: The width of the confidence interval, between 0 and 1 (exclusive).
    confidence_level: float

    #: Seed or random state for drawing feature orders and reference observations.
    random_state: RandomState

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        x_interest: Union[pd.Series, pd.DataFrame],
        *,
        sample_size: int = 100,
        confidence_level: float = 0.95,
        random_state: RandomState = None,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param confidence_level: the width :math:`\\alpha` of the confidence interval
            to be estimated for Shapley values (default: 0.95)
        :param random_state: seed or random state for drawing feature orders and
            reference observations
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

        if not 0.0 < confidence_level < 1.0:
            raise ValueError(
                f"arg confidence_level={confidence_level} "
                "must range between 0.0 and 1.0 (exclusive)"
            )

        self.confidence_level = confidence_level
        self.random_state = random_state

        self._rng: Optional[np.random.RandomState] = None
        self._y_hat_interest: Optional[pd.Series] = None
        self._y_hat_average: Optional[pd.Series] = None

    __init__.__doc__ = cast(str, LocalExperiment.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    @property
    @fitted_only
    def y_hat_interest_(self) -> pd.Series:
        """
        The prediction for the observation of interest, per output.
        """
        return cast(pd.Series, self._y_hat_interest)

    @property
    @fitted_only
    def y_hat_average_(self) -> pd.Series:
        """
        The average prediction across the reference data, per output.
        """
        return cast(pd.Series, self._y_hat_average)

    def _sample(self) -> pd.DataFrame:
        self._rng = check_random_state(self.random_state)
        # the reference observations, one per draw
        return self.sampler.sample(self.sample_size, random_state=self._rng)

    def _intervene(self, x_sample: pd.DataFrame) -> pd.DataFrame:
        rng = cast(np.random.RandomState, self._rng)
        n_draws = len(x_sample)
        feature_names = self.sampler.feature_names
        n_features = len(feature_names)

        # position of each feature in the random order of each draw,
        # shape (n_draws, n_features)
        positions = np.argsort(
            np.array([rng.permutation(n_features) for _ in range(n_draws)]),
            axis=1,
        )

        # for each draw and feature j, the features coming before j in the order,
        # shape (n_draws * n_features, n_features)
        before = (positions[:, np.newaxis, :] < positions[:, :, np.newaxis]).reshape(
            n_draws * n_features, n_features
        )
        including = before | np.tile(np.eye(n_features, dtype=bool), (n_draws, 1))

        index = pd.MultiIndex.from_product(
            [range(n_draws), feature_names],
            names=[Shapley.IDX_DRAW, Shapley.IDX_FEATURE],
        )
        z = x_sample.iloc[np.repeat(np.arange(n_draws), n_features)].set_axis(
            index, axis=0
        )
        x = self.x_interest.iloc[np.zeros(len(z), dtype=int)].set_axis(index, axis=0)

        def _combine(from_x: np.ndarray) -> pd.DataFrame:
            return z.where(
                pd.DataFrame(~from_x, index=index, columns=z.columns), x
            )

        return pd.concat(
            [_combine(including), _combine(before)],
            keys=[True, False],
            names=[Shapley.IDX_WITH_FEATURE],
        )

    def _quantity(self, predictions: pd.DataFrame) -> pd.DataFrame:
        # marginal contribution of each feature in each draw
        return predictions.xs(True, level=Shapley.IDX_WITH_FEATURE) - predictions.xs(
            False, level=Shapley.IDX_WITH_FEATURE
        )

    def _aggregate(self, quantity: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
        contributions = cast(pd.DataFrame, quantity).rename_axis(
            columns=Experiment.COL_OUTPUT
        )
        by_feature = contributions.groupby(level=Shapley.IDX_FEATURE, sort=False)
        phi = by_feature.mean().stack().rename(Shapley.COL_PHI)
        phi_var = by_feature.var().stack().rename(Shapley.COL_PHI_VAR)

        # the width of the confidence interval (this is a negative number)
        sem = np.sqrt(phi_var / len(cast(pd.DataFrame, self._x_sample)))
        ci_width = stats.norm.ppf((1.0 - self.confidence_level) / 2.0) * sem

        x_interest = self.x_interest.iloc[0]
        results = (
            pd.concat(
                [
                    phi,
                    phi_var,
                    (phi + ci_width).rename(Shapley.COL_LOWER_BOUND),
                    (phi - ci_width).rename(Shapley.COL_UPPER_BOUND),
                ],
                axis=1,
            )
            .reset_index()
            .assign(
                **{
                    Shapley.COL_FEATURE_VALUE: lambda df: [
                        f"{feature}={x_interest.loc[feature]}"
                        for feature in df.loc[:, Shapley.COL_FEATURE]
                    ]
                }
            )
        )

        self._y_hat_interest = (
            self.predictor.predict(self.x_interest).iloc[0].rename("y_hat_interest")
        )
        self._y_hat_average = (
            self.predictor.predict(self.sampler.features).mean().rename("y_hat_average")
        )

        return results


__tracker.validate()
