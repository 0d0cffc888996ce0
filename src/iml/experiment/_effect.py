"""
Partial dependence and individual conditional expectation.
"""

import logging
from typing import Any, Optional, Union, cast

import pandas as pd

from pytools.api import AllTracker, inheritdoc
from pytools.fit import fitted_only

from ..data import DataSampler
from ..prediction import Prediction
from .base import Experiment, FeatureEffectExperiment

log = logging.getLogger(__name__)

__all__ = ["PartialDependence", "IndividualConditionalExpectation"]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


@inheritdoc(match="[see superclass]")
class PartialDependence(FeatureEffectExperiment):
    """
    Partial dependence of the model's predictions on one or two features.

    For each point of the grid, the features are set to the grid values for all
    observations, and the predictions are averaged across observations.

    The results are a table with one row per grid point and output, with one column
    per feature, plus columns :attr:`.COL_OUTPUT` and :attr:`.COL_Y_HAT` holding
    the output name and the average prediction.

    See Friedman, J.H. (2001). Greedy Function Approximation: A Gradient Boosting
    Machine. Annals of Statistics 29: 1189-1232.
    """

    def _aggregate(self, quantity: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
        mean_predictions = quantity.groupby(
            level=FeatureEffectExperiment.IDX_GRID, sort=True
        ).mean()

        return self._to_long(
            cast(pd.DataFrame, self._grid)
            .join(mean_predictions)
            .set_index(self.features),
            self.features,
        )


@inheritdoc(match="[see superclass]")
class IndividualConditionalExpectation(FeatureEffectExperiment):
    """
    Individual conditional expectation (ICE) curves for one feature.

    For each observation, the prediction is traced across all grid values of the
    feature while the other features of the observation remain unchanged.

    If a value to center at is given, the value is added to the grid and each curve
    is shifted such that it passes through zero at that value.

    The results are a table with one row per grid value, observation, and output,
    with columns for the feature, :attr:`.IDX_OBSERVATION`, :attr:`.COL_OUTPUT`, and
    :attr:`.COL_Y_HAT`.

    See Goldstein, A., Kapelner, A., Bleich, J., and Pitkin, E. (2015). Peeking
    Inside the Black Box: Visualizing Statistical Learning With Plots of Individual
    Conditional Expectation.
    """

    #: Name of the results column identifying observations.
    IDX_OBSERVATION = DataSampler.IDX_OBSERVATION

    #: The feature value at which all curves are centered; ``None`` if not centered.
    center_at: Optional[Any]

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        feature: str,
        *,
        grid_size: int = 10,
        center_at: Optional[Any] = None,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param feature: the name of the feature to vary
        :param grid_size: the number of grid values for a numerical feature
            (default: 10)
        :param center_at: optional feature value at which to center all curves
        """
        super().__init__(
            predictor,
            sampler,
            feature,
            grid_size=grid_size,
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )
        self.center_at = center_at

    __init__.__doc__ = cast(str, Experiment.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    @property
    def feature(self) -> str:
        """
        The feature to vary.
        """
        return self.features[0]

    @fitted_only
    def partial_dependence(self) -> pd.DataFrame:
        """
        Average the ICE curves to get the partial dependence curve on the same grid.

        :return: a table in the format of :attr:`.PartialDependence.results_`
        """
        return (
            self.results_.groupby(
                [self.feature, Experiment.COL_OUTPUT], sort=False
            )[Experiment.COL_Y_HAT]
            .mean()
            .reset_index()
        )

    @staticmethod
    def _max_features() -> int:
        return 1

    def _make_grid(self, x_sample: pd.DataFrame) -> pd.DataFrame:
        grid = super()._make_grid(x_sample)

        center_at = self.center_at
        if center_at is None:
            return grid

        feature = self.feature
        if (grid.loc[:, feature] == center_at).any():
            return grid

        values = grid.loc[:, feature].to_list() + [center_at]
        try:
            values = sorted(values)
        except TypeError:
            pass
        return pd.DataFrame({feature: values}).rename_axis(
            index=FeatureEffectExperiment.IDX_GRID
        )

    def _aggregate(self, quantity: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
        feature = self.feature
        grid = cast(pd.DataFrame, self._grid)

        curves = (
            quantity.join(grid, on=FeatureEffectExperiment.IDX_GRID)
            .reset_index(level=FeatureEffectExperiment.IDX_GRID, drop=True)
            .set_index(feature, append=True)
        )

        if self.center_at is not None:
            anchor = curves.xs(self.center_at, level=feature)
            curves = curves - anchor.reindex(
                curves.index.get_level_values(
                    IndividualConditionalExpectation.IDX_OBSERVATION
                )
            ).values

        # grid values first, in the order of the grid
        curves = curves.swaplevel()

        return self._to_long(
            curves, [feature, IndividualConditionalExpectation.IDX_OBSERVATION]
        )


__tracker.validate()
