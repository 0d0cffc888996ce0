"""
Permutation feature importance.
"""

import logging
from typing import List, Optional, Sequence, Union, cast

import numpy as np
import pandas as pd
from sklearn.utils import check_random_state

from pytools.api import AllTracker, inheritdoc, to_list

from .._types import LossFunction, RandomState
from ..data import DataSampler
from ..metrics import get_loss
from ..prediction import Prediction
from .base import Experiment

log = logging.getLogger(__name__)

__all__ = ["FeatureImportance"]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


@inheritdoc(match="[see superclass]")
class FeatureImportance(Experiment):
    """
    Permutation feature importance.

    The importance of a feature is the increase of the model's loss after the
    association between the feature and the target has been broken by permuting the
    values of the feature, while leaving all other features unchanged.

    Two permutation methods are supported:

    - ``shuffle``: the values of the feature are shuffled at random; the shuffling
      is repeated :attr:`n_repetitions` times and the losses are averaged
    - ``cartesian``: every observation is combined with the feature value of every
      other observation; this is exhaustive and deterministic, but predicts
      `n * (n - 1)` rows per feature

    The importance is reported as the ratio of the permutation loss and the original
    loss (``ratio``), or as their difference (``difference``).

    See Fisher, A., Rudin, C., and Dominici, F. (2018). Model Class Reliance:
    Variable Importance Measures for any Machine Learning Model Class, from the
    "Rashomon" Perspective.
    """

    #: Shuffle the feature values at random.
    METHOD_SHUFFLE = "shuffle"

    #: Combine every observation with every other observation's feature value.
    METHOD_CARTESIAN = "cartesian"

    #: Importance as the ratio of permutation loss and original loss.
    COMPARE_RATIO = "ratio"

    #: Importance as the difference of permutation loss and original loss.
    COMPARE_DIFFERENCE = "difference"

    #: Name of the results index.
    IDX_FEATURE = "feature"

    #: Name of the design index level identifying permutation repetitions.
    IDX_REPETITION = "repetition"

    #: Name of the results column with the loss on the unchanged data.
    COL_ORIGINAL_ERROR = "original_error"

    #: Name of the results column with the mean loss on the permuted data.
    COL_PERMUTATION_ERROR = "permutation_error"

    #: Name of the results column with the feature importance.
    COL_IMPORTANCE = "importance"

    #: Name of the results column with the 5% quantile of importance across
    #: repetitions.
    COL_IMPORTANCE_05 = "importance_05"

    #: Name of the results column with the 95% quantile of importance across
    #: repetitions.
    COL_IMPORTANCE_95 = "importance_95"

    #: The loss function.
    loss: LossFunction

    #: The permutation method.
    method: str

    #: The comparison of permutation loss and original loss.
    compare: str

    #: The number of times each feature is shuffled.
    n_repetitions: int

    #: The features to calculate the importance for.
    features: List[str]

    #: Seed or random state for shuffling.
    random_state: RandomState

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        *,
        loss: Union[str, LossFunction],
        method: str = METHOD_SHUFFLE,
        compare: str = COMPARE_RATIO,
        n_repetitions: int = 1,
        features: Optional[Sequence[str]] = None,
        random_state: RandomState = None,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param loss: the name of a loss (see :func:`.get_loss`), or a loss function
            taking the target and the predictions
        :param method: the permutation method, ``"shuffle"`` (default) or
            ``"cartesian"``
        :param compare: how to compare permutation loss and original loss,
            ``"ratio"`` (default) or ``"difference"``
        :param n_repetitions: the number of times to shuffle each feature
            (default: 1; ignored for the cartesian method)
        :param features: the features to calculate the importance for
            (default: all features)
        :param random_state: seed or random state for shuffling
        """
        super().__init__(
            predictor,
            sampler,
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )

        if sampler.target is None:
            raise ValueError("feature importance requires a sampler with a target")

        methods = {FeatureImportance.METHOD_SHUFFLE, FeatureImportance.METHOD_CARTESIAN}
        if method not in methods:
            raise ValueError(f'arg method="{method}" must be one of {methods}')

        comparisons = {
            FeatureImportance.COMPARE_RATIO,
            FeatureImportance.COMPARE_DIFFERENCE,
        }
        if compare not in comparisons:
            raise ValueError(f'arg compare="{compare}" must be one of {comparisons}')

        if n_repetitions < 1:
            raise ValueError(f"arg n_repetitions={n_repetitions} must be positive")

        if method == FeatureImportance.METHOD_CARTESIAN and n_repetitions > 1:
            log.warning(
                f"ignoring arg n_repetitions={n_repetitions} for the cartesian method"
            )
            n_repetitions = 1

        if features is None:
            features = sampler.feature_names
        else:
            features = to_list(features, element_type=str, arg_name="features")
            unknown = set(features).difference(sampler.feature_names)
            if unknown:
                raise KeyError(f"unknown features in arg features: {unknown}")

        self.loss = get_loss(loss)
        self.method = method
        self.compare = compare
        self.n_repetitions = n_repetitions
        self.features = list(features)
        self.random_state = random_state
        self._y_design: Optional[pd.Series] = None

    __init__.__doc__ = cast(str, Experiment.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    def _sample(self) -> pd.DataFrame:
        return self.sampler.sample()

    def _intervene(self, x_sample: pd.DataFrame) -> pd.DataFrame:
        y = cast(pd.Series, self.sampler.target).reset_index(drop=True)
        y.index = x_sample.index

        blocks: List[pd.DataFrame] = []
        targets: List[pd.Series] = []
        keys = []

        if self.method == FeatureImportance.METHOD_SHUFFLE:
            rng = check_random_state(self.random_state)
            for feature in self.features:
                for repetition in range(self.n_repetitions):
                    permutation = rng.permutation(len(x_sample))
                    blocks.append(
                        x_sample.assign(
                            **{
                                feature: x_sample.loc[:, feature]
                                .iloc[permutation]
                                .values
                            }
                        )
                    )
                    targets.append(y)
                    keys.append((feature, repetition))
        else:
            n = len(x_sample)
            if n < 2:
                raise ValueError("the cartesian method requires at least 2 observations")
            # all pairs (i, k) with i != k: observation i gets the feature value of
            # observation k
            i, k = np.nonzero(~np.eye(n, dtype=bool))
            for feature in self.features:
                block = x_sample.iloc[i]
                blocks.append(
                    block.assign(**{feature: x_sample.loc[:, feature].iloc[k].values})
                )
                targets.append(y.iloc[i])
                keys.append((feature, 0))

        names = [
            FeatureImportance.IDX_FEATURE,
            FeatureImportance.IDX_REPETITION,
            x_sample.index.name,
        ]
        self._y_design = pd.concat(targets, keys=keys, names=names)

        return pd.concat(blocks, keys=keys, names=names)

    def _quantity(self, predictions: pd.DataFrame) -> pd.Series:
        # the loss for each permuted block
        y_design = cast(pd.Series, self._y_design)

        positions = predictions.groupby(
            level=[FeatureImportance.IDX_FEATURE, FeatureImportance.IDX_REPETITION],
            sort=False,
        ).indices

        return pd.Series(
            {
                key: self._loss(y_design.iloc[rows], predictions.iloc[rows])
                for key, rows in positions.items()
            }
        ).rename_axis(
            [FeatureImportance.IDX_FEATURE, FeatureImportance.IDX_REPETITION]
        )

    def _aggregate(self, quantity: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
        permutation_errors = cast(pd.Series, quantity)

        x_sample = cast(pd.DataFrame, self._x_sample)
        y = cast(pd.Series, self.sampler.target).reset_index(drop=True)
        y.index = x_sample.index
        original_error = self._loss(y, self.predictor.predict(x_sample))

        if original_error == 0 and self.compare == FeatureImportance.COMPARE_RATIO:
            log.warning(
                "the loss of the model on the unchanged data is 0; "
                "importance ratios will be infinite or undefined"
            )

        importance = self._compare(permutation_errors, original_error)

        by_feature = importance.groupby(level=FeatureImportance.IDX_FEATURE, sort=False)

        results = pd.DataFrame(
            {
                FeatureImportance.COL_ORIGINAL_ERROR: original_error,
                FeatureImportance.COL_PERMUTATION_ERROR: permutation_errors.groupby(
                    level=FeatureImportance.IDX_FEATURE, sort=False
                ).mean(),
            }
        )
        results = results.assign(
            **{
                FeatureImportance.COL_IMPORTANCE: self._compare(
                    results.loc[:, FeatureImportance.COL_PERMUTATION_ERROR],
                    original_error,
                )
            }
        )

        if self.n_repetitions > 1:
            results = results.assign(
                **{
                    FeatureImportance.COL_IMPORTANCE_05: by_feature.quantile(0.05),
                    FeatureImportance.COL_IMPORTANCE_95: by_feature.quantile(0.95),
                }
            )

        return results.rename_axis(
            index=FeatureImportance.IDX_FEATURE
        ).sort_values(by=FeatureImportance.COL_IMPORTANCE, ascending=False)

    def _loss(self, y_true: pd.Series, predictions: pd.DataFrame) -> float:
        if predictions.shape[1] == 1:
            return float(self.loss(y_true, predictions.iloc[:, 0]))
        else:
            return float(self.loss(y_true, predictions))

    def _compare(self, permutation_error: pd.Series, original_error: float) -> pd.Series:
        if self.compare == FeatureImportance.COMPARE_RATIO:
            with np.errstate(divide="ignore", invalid="ignore"):
                return permutation_error / original_error
        else:
            return permutation_error - original_error


__tracker.validate()
