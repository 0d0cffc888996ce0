"""
Core implementation of :mod:`iml.experiment.base`
"""

import logging
from abc import ABCMeta, abstractmethod
from typing import Any, List, Optional, Sequence, TypeVar, Union, cast

import numpy as np
import pandas as pd
from joblib import effective_n_jobs

from pytools.api import AllTracker, to_list
from pytools.fit import fitted_only
from pytools.parallelization import Job, JobRunner, ParallelizableMixin

from ...data import DataSampler
from ...prediction import Prediction

log = logging.getLogger(__name__)

__all__ = [
    "Experiment",
    "FeatureEffectExperiment",
    "LocalExperiment",
]


#
# Type variables
#

T_Experiment = TypeVar("T_Experiment", bound="Experiment")
T_LocalExperiment = TypeVar("T_LocalExperiment", bound="LocalExperiment")


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


class Experiment(ParallelizableMixin, metaclass=ABCMeta):
    """
    Base class of all interpretability experiments.

    An experiment explains a model by observing how its predictions change when
    its inputs are changed. Every experiment runs the same four stages:

    - *design*: draw the data to explain from the :class:`.DataSampler`, then
      intervene on it to obtain the design, i.e., the data to be predicted
    - *execute*: predict the outputs for the design using the :class:`.Prediction`
      object, optionally as parallel jobs on chunks of the design
    - *analyse*: extract the quantity of interest from the predictions, and
      aggregate it into the results table
    - *present*: access the results table through :attr:`.results_`, or render it
      using one of the drawers in :mod:`iml.viz`

    Subclasses implement the stages of the design and analysis.
    """

    # defined in superclass, repeated here for Sphinx
    n_jobs: Optional[int]

    # defined in superclass, repeated here for Sphinx
    shared_memory: Optional[bool]

    # defined in superclass, repeated here for Sphinx
    pre_dispatch: Optional[Union[str, int]]

    # defined in superclass, repeated here for Sphinx
    verbose: Optional[int]

    #: The predictions of the model being explained.
    predictor: Prediction

    #: The reference data.
    sampler: DataSampler

    #: Name of the results column naming the output of the model.
    COL_OUTPUT = "output"

    #: Name of the results column with predicted values.
    COL_Y_HAT = "y_hat"

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        *,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param predictor: the predictions of the model to explain
        :param sampler: the reference data
        """
        super().__init__(
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )

        if not isinstance(predictor, Prediction):
            raise TypeError(
                "arg predictor must be a Prediction but is a "
                f"{type(predictor).__name__}"
            )
        if not isinstance(sampler, DataSampler):
            raise TypeError(
                f"arg sampler must be a DataSampler but is a {type(sampler).__name__}"
            )

        self.predictor = predictor
        self.sampler = sampler

        self._x_sample: Optional[pd.DataFrame] = None
        self._x_design: Optional[pd.DataFrame] = None
        self._output_names: Optional[List[Any]] = None
        self._results: Optional[pd.DataFrame] = None

    # add parallelization parameters to __init__ docstring
    __init__.__doc__ = cast(str, __init__.__doc__) + cast(
        str, ParallelizableMixin.__init__.__doc__
    )

    def run(self: T_Experiment) -> T_Experiment:
        """
        Run all stages of this experiment.

        :return: ``self``
        """

        self._results = None

        x_sample = self._sample()
        self._x_sample = x_sample

        x_design = self._intervene(x_sample)
        self._x_design = x_design

        log.debug(
            f"{type(self).__name__}: predicting design of {len(x_design)} rows "
            f"for a sample of {len(x_sample)} rows"
        )

        predictions = self._predict(x_design)
        # parallel jobs predict on copies of the predictor, so the output names
        # are taken from the predictions
        self._output_names = predictions.columns.to_list()

        self._results = self._aggregate(self._quantity(predictions))

        return self

    @property
    def is_fitted(self) -> bool:
        """
        ``True`` if this experiment has been run, ``False`` otherwise.
        """
        return self._results is not None

    @property
    @fitted_only
    def results_(self) -> pd.DataFrame:
        """
        The aggregated results of this experiment.
        """
        return cast(pd.DataFrame, self._results)

    @property
    @fitted_only
    def x_sample_(self) -> pd.DataFrame:
        """
        The data drawn from the sampler for the last run.
        """
        return cast(pd.DataFrame, self._x_sample)

    @property
    @fitted_only
    def x_design_(self) -> pd.DataFrame:
        """
        The design, i.e., the data after intervention, predicted in the last run.
        """
        return cast(pd.DataFrame, self._x_design)

    @property
    def output_names(self) -> List[Any]:
        """
        The names of the outputs of the model being explained.
        """
        if self._output_names is not None:
            return self._output_names
        return self.predictor.output_names

    @abstractmethod
    def _sample(self) -> pd.DataFrame:
        """
        Draw the data to explain from the sampler.

        :return: the drawn features
        """
        pass

    def _intervene(self, x_sample: pd.DataFrame) -> pd.DataFrame:
        """
        Derive the design from the drawn data.

        The index of the design identifies each intervention. By default, the design
        is the drawn data.

        :param x_sample: the data drawn by :meth:`._sample`
        :return: the design
        """
        return x_sample

    def _quantity(self, predictions: pd.DataFrame) -> Union[pd.Series, pd.DataFrame]:
        """
        Extract the quantity of interest from the predictions for the design.

        By default, the quantity of interest is the predictions.

        :param predictions: the predictions for the design, with the same index
        :return: the quantity of interest
        """
        return predictions

    @abstractmethod
    def _aggregate(self, quantity: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
        """
        Aggregate the quantity of interest into the results table.

        :param quantity: the quantity of interest extracted by :meth:`._quantity`
        :return: the results table
        """
        pass

    def _predict(self, x_design: pd.DataFrame) -> pd.DataFrame:
        # predict the design, in one chunk per parallel job
        n_chunks = min(max(1, effective_n_jobs(self.n_jobs)), len(x_design))

        if n_chunks == 1:
            return self.predictor.predict(x_design)

        chunk_bounds = np.linspace(0, len(x_design), n_chunks + 1).astype(int)

        predictions: List[pd.DataFrame] = list(
            JobRunner.from_parallelizable(self).run_jobs(
                Job.delayed(self.predictor.predict)(x_design.iloc[start:end])
                for start, end in zip(chunk_bounds[:-1], chunk_bounds[1:])
            )
        )
        return pd.concat(predictions)

    def _to_long(
        self, predictions: pd.DataFrame, id_columns: Sequence[str]
    ) -> pd.DataFrame:
        # convert a table with one column per output to a table with one row
        # per output, identified by the given columns
        return (
            predictions.rename_axis(columns=Experiment.COL_OUTPUT)
            .stack()
            .rename(Experiment.COL_Y_HAT)
            .reset_index()
            .loc[:, [*id_columns, Experiment.COL_OUTPUT, Experiment.COL_Y_HAT]]
        )


class FeatureEffectExperiment(Experiment, metaclass=ABCMeta):
    """
    Base class of experiments tracing the predictions of the model across a grid of
    values for one or two features.

    The grid of a numerical feature comprises equidistant values between the minimum
    and maximum observed value; the grid of a categorical feature comprises all
    observed values.
    """

    #: The features to vary.
    features: List[str]

    #: The number of grid values, per feature.
    grid_size: List[int]

    #: Name of the design index level identifying grid points.
    IDX_GRID = "grid"

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        feature: Union[str, Sequence[str]],
        *,
        grid_size: Union[int, Sequence[int]] = 10,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param feature: the name of the feature to vary, or a pair of names
        :param grid_size: the number of grid values for numerical features, either
            as a single number or as one number per feature (default: 10)
        """
        super().__init__(
            predictor,
            sampler,
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )

        features = to_list(feature, element_type=str, arg_name="feature")

        if not 1 <= len(features) <= self._max_features():
            raise ValueError(
                f"arg feature must name between 1 and {self._max_features()} "
                f"features but got {len(features)}"
            )
        unknown = [name for name in features if name not in sampler.feature_names]
        if unknown:
            raise KeyError(f"unknown features in arg feature: {', '.join(unknown)}")
        if len(set(features)) != len(features):
            raise ValueError("arg feature must not name the same feature twice")

        grid_sizes = to_list(grid_size, element_type=int, arg_name="grid_size")
        if len(grid_sizes) == 1:
            grid_sizes = grid_sizes * len(features)
        elif len(grid_sizes) != len(features):
            raise ValueError(
                f"arg grid_size has {len(grid_sizes)} elements "
                f"but {len(features)} features are given"
            )
        if min(grid_sizes) < 2:
            raise ValueError(f"arg grid_size={grid_size} must be at least 2")

        self.features = features
        self.grid_size = grid_sizes
        self._grid: Optional[pd.DataFrame] = None

    __init__.__doc__ = cast(str, Experiment.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    @property
    @fitted_only
    def grid_(self) -> pd.DataFrame:
        """
        The grid points of the last run, one row per point and one column per feature.
        """
        return cast(pd.DataFrame, self._grid)

    @staticmethod
    def _max_features() -> int:
        return 2

    def _sample(self) -> pd.DataFrame:
        return self.sampler.sample()

    def _feature_grid(self, values: pd.Series, grid_size: int) -> np.ndarray:
        # get the grid values for one feature
        is_numerical = (
            self.sampler.feature_types.loc[values.name] == DataSampler.TYPE_NUMERICAL
        )
        if is_numerical:
            return np.linspace(values.min(), values.max(), num=grid_size)
        else:
            observed = values.dropna().unique()
            try:
                return np.sort(observed)
            except TypeError:
                return observed

    def _make_grid(self, x_sample: pd.DataFrame) -> pd.DataFrame:
        # the cartesian product of the grids of all features
        feature_grids = [
            self._feature_grid(x_sample.loc[:, feature], grid_size)
            for feature, grid_size in zip(self.features, self.grid_size)
        ]
        return (
            pd.MultiIndex.from_product(feature_grids, names=self.features)
            .to_frame(index=False)
            .rename_axis(index=FeatureEffectExperiment.IDX_GRID)
        )

    def _intervene(self, x_sample: pd.DataFrame) -> pd.DataFrame:
        grid = self._make_grid(x_sample)
        self._grid = grid

        # one copy of the sample per grid point, with the features set to the
        # grid values
        return pd.concat(
            [
                self._set_constant_feature_values(x_sample, point)
                for _, point in grid.iterrows()
            ],
            keys=grid.index,
            names=[FeatureEffectExperiment.IDX_GRID, x_sample.index.name],
        )

    @staticmethod
    def _set_constant_feature_values(x: pd.DataFrame, point: pd.Series) -> pd.DataFrame:
        def _constant(name: str, value: Any) -> pd.Series:
            dtype = x.loc[:, name].dtype
            # categories must be preserved; numerical grid values may be
            # fractional even if the observed values are integers
            return pd.Series(
                [value] * len(x),
                index=x.index,
                dtype=dtype if isinstance(dtype, pd.CategoricalDtype) else None,
            )

        return x.assign(**{name: _constant(name, value) for name, value in point.items()})


class LocalExperiment(Experiment, metaclass=ABCMeta):
    """
    Base class of experiments explaining the prediction for a single observation,
    the *observation of interest*.
    """

    #: The observation of interest, as a data frame with a single row.
    x_interest: pd.DataFrame

    #: The number of rows to draw from the sampler.
    sample_size: int

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        x_interest: Union[pd.Series, pd.DataFrame],
        *,
        sample_size: int = 100,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param x_interest: the observation to explain, as a series or as a data frame
            with a single row; must include all features of the sampler
        :param sample_size: the number of rows to draw from the sampler
            (default: 100)
        """
        super().__init__(
            predictor,
            sampler,
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )

        if sample_size < 1:
            raise ValueError(f"arg sample_size={sample_size} must be positive")

        self.sample_size = sample_size
        self.x_interest = self._validate_x_interest(x_interest)

    __init__.__doc__ = cast(str, Experiment.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    def explain(
        self: T_LocalExperiment, x_interest: Union[pd.Series, pd.DataFrame]
    ) -> T_LocalExperiment:
        """
        Run this experiment again, for a different observation of interest.

        :param x_interest: the new observation to explain
        :return: ``self``
        """
        self.x_interest = self._validate_x_interest(x_interest)
        return self.run()

    def _validate_x_interest(
        self, x_interest: Union[pd.Series, pd.DataFrame]
    ) -> pd.DataFrame:
        features = self.sampler.features

        if isinstance(x_interest, pd.Series):
            x_interest = pd.DataFrame([x_interest.to_dict()])
        elif isinstance(x_interest, pd.DataFrame):
            if len(x_interest) != 1:
                raise ValueError(
                    f"arg x_interest must have exactly 1 row, "
                    f"but has {len(x_interest)} rows"
                )
        else:
            raise TypeError(
                "arg x_interest must be a Series or a DataFrame but is a "
                f"{type(x_interest).__name__}"
            )

        missing = [name for name in features.columns if name not in x_interest.columns]
        if missing:
            raise KeyError(f"arg x_interest is missing features {', '.join(missing)}")

        x_interest = x_interest.loc[:, features.columns].reset_index(drop=True)
        x_cast = x_interest.astype(features.dtypes.to_dict())

        # values outside the categories of a categorical feature become NaN
        lost = x_cast.isna().iloc[0] & ~x_interest.isna().iloc[0]
        if lost.any():
            raise ValueError(
                "arg x_interest has values not among the categories of features "
                + ", ".join(
                    f"{name}={x_interest.loc[0, name]!r}" for name in lost.index[lost]
                )
            )

        return x_cast.rename_axis(
            index=features.index.name, columns=features.columns.name
        )


__tracker.validate()
