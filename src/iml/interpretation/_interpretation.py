"""
Core implementation of :mod:`iml.interpretation`
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union, cast

import pandas as pd

from pytools.api import AllTracker
from pytools.parallelization import ParallelizableMixin

from .._types import LossFunction, RandomState
from ..data import DataSampler
from ..experiment import (
    FeatureImportance,
    IndividualConditionalExpectation,
    Lime,
    PartialDependence,
    Shapley,
    TreeSurrogate,
)
from ..prediction import (
    CachedPrediction,
    LearnerPrediction,
    Prediction,
    prediction_model,
)

log = logging.getLogger(__name__)

__all__ = [
    "Interpretation",
    "feature_importance",
    "partial_dependence",
    "ice",
    "tree_surrogate",
    "lime",
    "shapley",
]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


_PARALLEL_PARAMS = ("n_jobs", "shared_memory", "pre_dispatch", "verbose")


#
# Class definitions
#


class Interpretation(ParallelizableMixin):
    """
    Interpret a model using its reference data.

    The model is wrapped in a :class:`.Prediction` object, optionally memoising its
    predictions such that rows predicted by one experiment are not predicted again
    by the next; the data is wrapped in a :class:`.DataSampler`.

    Each interpretation method creates, runs, and returns a new experiment. The
    parallelization parameters of the interpretation are passed on to all
    experiments.

    Example:

    .. code-block:: python

        interpretation = Interpretation(model, df, target="price")
        importance = interpretation.feature_importance(loss="mae").results_
        effects = interpretation.partial_dependence("age").results_
    """

    #: The predictions of the model being interpreted.
    predictor: Prediction

    #: The reference data.
    sampler: DataSampler

    def __init__(
        self,
        model: Any,
        data: Union[DataSampler, pd.DataFrame],
        *,
        target: Optional[str] = None,
        class_: Optional[Any] = None,
        prediction_type: str = LearnerPrediction.TYPE_AUTO,
        cache: bool = True,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param model: the model to interpret: a fitted learner, a prediction
            function, or a :class:`.Prediction`
        :param data: the reference data, as a :class:`.DataSampler` or as a data
            frame
        :param target: the name of the target column, if arg data is a data frame
            that includes the target
        :param class_: optional label or position of the single class to interpret
        :param prediction_type: the type of predictions to make for learners
            (see :class:`.LearnerPrediction`)
        :param cache: if ``True``, memoise the predictions of the model
            (default: ``True``)
        """
        super().__init__(
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )

        if isinstance(data, DataSampler):
            if target is not None:
                raise ValueError(
                    f"arg target={target!r} must not be given if arg data is a "
                    "DataSampler"
                )
            sampler = data
        elif isinstance(data, pd.DataFrame):
            sampler = DataSampler(data, target=target)
        else:
            raise TypeError(
                "arg data must be a DataSampler or a DataFrame but is a "
                f"{type(data).__name__}"
            )

        predictor = prediction_model(
            model, class_=class_, prediction_type=prediction_type
        )
        if cache and not isinstance(predictor, CachedPrediction):
            predictor = CachedPrediction(predictor)

        self.predictor = predictor
        self.sampler = sampler

    __init__.__doc__ = cast(str, __init__.__doc__) + cast(
        str, ParallelizableMixin.__init__.__doc__
    )

    def feature_importance(
        self,
        *,
        loss: Union[str, LossFunction],
        method: str = FeatureImportance.METHOD_SHUFFLE,
        compare: str = FeatureImportance.COMPARE_RATIO,
        n_repetitions: int = 1,
        features: Optional[Sequence[str]] = None,
        random_state: RandomState = None,
    ) -> FeatureImportance:
        """
        Calculate the permutation importance of the features.

        See :class:`.FeatureImportance` for the parameters.

        :return: the experiment, after it has been run
        """
        return FeatureImportance(
            self.predictor,
            self.sampler,
            loss=loss,
            method=method,
            compare=compare,
            n_repetitions=n_repetitions,
            features=features,
            random_state=random_state,
            **self._parallel_params(),
        ).run()

    def partial_dependence(
        self,
        feature: Union[str, Sequence[str]],
        *,
        grid_size: Union[int, Sequence[int]] = 10,
    ) -> PartialDependence:
        """
        Calculate the partial dependence of the predictions on one or two features.

        See :class:`.PartialDependence` for the parameters.

        :return: the experiment, after it has been run
        """
        return PartialDependence(
            self.predictor,
            self.sampler,
            feature,
            grid_size=grid_size,
            **self._parallel_params(),
        ).run()

    def ice(
        self,
        feature: str,
        *,
        grid_size: int = 10,
        center_at: Optional[Any] = None,
    ) -> IndividualConditionalExpectation:
        """
        Calculate the individual conditional expectation curves for a feature.

        See :class:`.IndividualConditionalExpectation` for the parameters.

        :return: the experiment, after it has been run
        """
        return IndividualConditionalExpectation(
            self.predictor,
            self.sampler,
            feature,
            grid_size=grid_size,
            center_at=center_at,
            **self._parallel_params(),
        ).run()

    def tree_surrogate(
        self,
        *,
        sample_size: int = 100,
        max_depth: int = 2,
        tree_params: Optional[Mapping[str, Any]] = None,
        random_state: RandomState = None,
    ) -> TreeSurrogate:
        """
        Fit a decision tree approximating the predictions of the model.

        See :class:`.TreeSurrogate` for the parameters.

        :return: the experiment, after it has been run
        """
        return TreeSurrogate(
            self.predictor,
            self.sampler,
            sample_size=sample_size,
            max_depth=max_depth,
            tree_params=tree_params,
            random_state=random_state,
            **self._parallel_params(),
        ).run()

    def lime(
        self,
        x_interest: Union[pd.Series, pd.DataFrame],
        *,
        sample_size: int = 100,
        k: int = 3,
        kernel_width: Optional[float] = None,
        random_state: RandomState = None,
    ) -> Lime:
        """
        Explain a single prediction with a local, sparse linear model.

        See :class:`.Lime` for the parameters.

        :return: the experiment, after it has been run
        """
        return Lime(
            self.predictor,
            self.sampler,
            x_interest,
            sample_size=sample_size,
            k=k,
            kernel_width=kernel_width,
            random_state=random_state,
            **self._parallel_params(),
        ).run()

    def shapley(
        self,
        x_interest: Union[pd.Series, pd.DataFrame],
        *,
        sample_size: int = 100,
        confidence_level: float = 0.95,
        random_state: RandomState = None,
    ) -> Shapley:
        """
        Attribute a single prediction to the features, using Shapley values.

        See :class:`.Shapley` for the parameters.

        :return: the experiment, after it has been run
        """
        return Shapley(
            self.predictor,
            self.sampler,
            x_interest,
            sample_size=sample_size,
            confidence_level=confidence_level,
            random_state=random_state,
            **self._parallel_params(),
        ).run()

    def _parallel_params(self) -> Mapping[str, Any]:
        return dict(
            n_jobs=self.n_jobs,
            shared_memory=self.shared_memory,
            pre_dispatch=self.pre_dispatch,
            verbose=self.verbose,
        )


#
# Functions
#


def feature_importance(
    model: Any,
    data: Union[DataSampler, pd.DataFrame],
    *,
    loss: Union[str, LossFunction],
    target: Optional[str] = None,
    class_: Optional[Any] = None,
    **kwargs: Any,
) -> FeatureImportance:
    """
    Calculate the permutation importance of the features of a model.

    :param model: the model to interpret (see :class:`.Interpretation`)
    :param data: the reference data, including the target
    :param loss: the name of a loss, or a loss function
    :param target: the name of the target column, if arg data is a data frame
    :param class_: optional label or position of the single class to interpret
    :param kwargs: additional arguments for :class:`.FeatureImportance`,
        or the parallelization arguments of :class:`.Interpretation`
    :return: the experiment, after it has been run
    """
    interpretation = _interpretation(model, data, target, class_, kwargs)
    return interpretation.feature_importance(loss=loss, **kwargs)


def partial_dependence(
    model: Any,
    data: Union[DataSampler, pd.DataFrame],
    feature: Union[str, Sequence[str]],
    *,
    target: Optional[str] = None,
    class_: Optional[Any] = None,
    **kwargs: Any,
) -> PartialDependence:
    """
    Calculate the partial dependence of a model on one or two features.

    :param model: the model to interpret (see :class:`.Interpretation`)
    :param data: the reference data
    :param feature: the name of the feature, or a pair of names
    :param target: the name of the target column, if arg data is a data frame
        that includes the target
    :param class_: optional label or position of the single class to interpret
    :param kwargs: additional arguments for :class:`.PartialDependence`,
        or the parallelization arguments of :class:`.Interpretation`
    :return: the experiment, after it has been run
    """
    interpretation = _interpretation(model, data, target, class_, kwargs)
    return interpretation.partial_dependence(feature, **kwargs)


def ice(
    model: Any,
    data: Union[DataSampler, pd.DataFrame],
    feature: str,
    *,
    target: Optional[str] = None,
    class_: Optional[Any] = None,
    **kwargs: Any,
) -> IndividualConditionalExpectation:
    """
    Calculate individual conditional expectation curves of a model for a feature.

    :param model: the model to interpret (see :class:`.Interpretation`)
    :param data: the reference data
    :param feature: the name of the feature
    :param target: the name of the target column, if arg data is a data frame
        that includes the target
    :param class_: optional label or position of the single class to interpret
    :param kwargs: additional arguments for
        :class:`.IndividualConditionalExpectation`,
        or the parallelization arguments of :class:`.Interpretation`
    :return: the experiment, after it has been run
    """
    interpretation = _interpretation(model, data, target, class_, kwargs)
    return interpretation.ice(feature, **kwargs)


def tree_surrogate(
    model: Any,
    data: Union[DataSampler, pd.DataFrame],
    *,
    target: Optional[str] = None,
    class_: Optional[Any] = None,
    **kwargs: Any,
) -> TreeSurrogate:
    """
    Fit a decision tree approximating the predictions of a model.

    :param model: the model to interpret (see :class:`.Interpretation`)
    :param data: the reference data
    :param target: the name of the target column, if arg data is a data frame
        that includes the target
    :param class_: optional label or position of the single class to interpret
    :param kwargs: additional arguments for :class:`.TreeSurrogate`,
        or the parallelization arguments of :class:`.Interpretation`
    :return: the experiment, after it has been run
    """
    interpretation = _interpretation(model, data, target, class_, kwargs)
    return interpretation.tree_surrogate(**kwargs)


def lime(
    model: Any,
    data: Union[DataSampler, pd.DataFrame],
    x_interest: Union[pd.Series, pd.DataFrame],
    *,
    target: Optional[str] = None,
    class_: Optional[Any] = None,
    **kwargs: Any,
) -> Lime:
    """
    Explain a single prediction of a model with a local, sparse linear model.

    :param model: the model to interpret (see :class:`.Interpretation`)
    :param data: the reference data
    :param x_interest: the observation to explain
    :param target: the name of the target column, if arg data is a data frame
        that includes the target
    :param class_: optional label or position of the single class to interpret
    :param kwargs: additional arguments for :class:`.Lime`,
        or the parallelization arguments of :class:`.Interpretation`
    :return: the experiment, after it has been run
    """
    interpretation = _interpretation(model, data, target, class_, kwargs)
    return interpretation.lime(x_interest, **kwargs)


def shapley(
    model: Any,
    data: Union[DataSampler, pd.DataFrame],
    x_interest: Union[pd.Series, pd.DataFrame],
    *,
    target: Optional[str] = None,
    class_: Optional[Any] = None,
    **kwargs: Any,
) -> Shapley:
    """
    Attribute a single prediction of a model to its features, using Shapley values.

    :param model: the model to interpret (see :class:`.Interpretation`)
    :param data: the reference data
    :param x_interest: the observation to explain
    :param target: the name of the target column, if arg data is a data frame
        that includes the target
    :param class_: optional label or position of the single class to interpret
    :param kwargs: additional arguments for :class:`.Shapley`,
        or the parallelization arguments of :class:`.Interpretation`
    :return: the experiment, after it has been run
    """
    interpretation = _interpretation(model, data, target, class_, kwargs)
    return interpretation.shapley(x_interest, **kwargs)


def _interpretation(
    model: Any,
    data: Union[DataSampler, pd.DataFrame],
    target: Optional[str],
    class_: Optional[Any],
    kwargs: Dict[str, Any],
) -> Interpretation:
    # move the parallelization arguments from kwargs to the interpretation
    parallel_params = {
        name: kwargs.pop(name) for name in _PARALLEL_PARAMS if name in kwargs
    }
    return Interpretation(
        model, data, target=target, class_=class_, cache=False, **parallel_params
    )


__tracker.validate()
