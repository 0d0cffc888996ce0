"""
Core implementation of :mod:`iml.prediction`
"""

import logging
from abc import ABCMeta, abstractmethod
from typing import Any, Callable, List, Optional, Sequence, Union, cast

import numpy as np
import pandas as pd

from pytools.api import AllTracker, inheritdoc, to_list

from .._types import ModelFunction

log = logging.getLogger(__name__)

__all__ = [
    "Prediction",
    "LearnerPrediction",
    "FunctionPrediction",
    "CachedPrediction",
    "prediction_model",
]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


class Prediction(metaclass=ABCMeta):
    """
    Uniform access to the predictions of a model.

    Whatever the model returns (a series, a data frame, or a numpy array), a
    prediction object converts it to a data frame with one row per observation and
    one column per output, sharing the index of the features it was given.

    Regressors have a single output; classifiers predicting class probabilities have
    one output per class, unless a single class has been selected through arg
    ``class_``.
    """

    #: Name of the column index of prediction data frames.
    IDX_OUTPUT = "output"

    #: Default output name for models returning a single unnamed output.
    COL_PREDICTION = "prediction"

    #: The class (or output) to restrict predictions to; ``None`` to keep all outputs.
    class_: Optional[Any]

    def __init__(self, *, class_: Optional[Any] = None) -> None:
        """
        :param class_: optional label or integer position of the single class (or
            output) to return predictions for; if omitted, predictions include all
            outputs
        """
        self.class_ = class_
        self._output_names: Optional[List[Any]] = None

    @property
    def output_names(self) -> List[Any]:
        """
        The names of the outputs returned by :meth:`.predict`.

        Only known once the first prediction has been made, unless the underlying
        model declares them upfront.
        """
        if self._output_names is None:
            raise AttributeError(
                "output names are not known before the first prediction"
            )
        return self._output_names

    @property
    def is_multi_output(self) -> bool:
        """
        ``True`` if predictions comprise more than one output, ``False`` otherwise.
        """
        return len(self.output_names) > 1

    def predict(self, X: pd.DataFrame) -> pd.DataFrame:
        """
        Predict the outputs for the given observations.

        :param X: the features of the observations to predict
        :return: a data frame of predictions, with one row per observation and one
            column per output
        """
        if not isinstance(X, pd.DataFrame):
            raise TypeError(f"arg X must be a DataFrame but is a {type(X).__name__}")

        predictions = self._to_frame(self._predict_raw(X), X.index)
        predictions = self._select_class(predictions)

        if self._output_names is None:
            self._output_names = predictions.columns.to_list()

        return predictions

    @abstractmethod
    def _predict_raw(self, X: pd.DataFrame) -> Any:
        # get the predictions of the model in their native format
        pass

    def _default_output_names(self, n_outputs: int) -> List[Any]:
        if n_outputs == 1:
            return [Prediction.COL_PREDICTION]
        else:
            return [f"{Prediction.COL_PREDICTION}_{i}" for i in range(n_outputs)]

    def _to_frame(self, raw: Any, index: pd.Index) -> pd.DataFrame:
        frame: pd.DataFrame

        if isinstance(raw, pd.DataFrame):
            frame = raw.set_axis(index, axis=0)
        elif isinstance(raw, pd.Series):
            name = raw.name if raw.name is not None else Prediction.COL_PREDICTION
            frame = pd.DataFrame({name: raw.values}, index=index)
        else:
            values = np.asarray(raw)
            if values.ndim == 0:
                values = values.reshape(1, 1)
            elif values.ndim == 1:
                values = values.reshape(-1, 1)
            elif values.ndim > 2:
                raise ValueError(
                    f"predictions have {values.ndim} dimensions, expected 1 or 2"
                )
            if len(values) != len(index):
                raise ValueError(
                    f"got {len(values)} predictions for {len(index)} observations"
                )
            frame = pd.DataFrame(
                values,
                index=index,
                columns=self._default_output_names(values.shape[1]),
            )

        if len(frame) != len(index):
            raise ValueError(
                f"got {len(frame)} predictions for {len(index)} observations"
            )

        return frame.rename_axis(columns=Prediction.IDX_OUTPUT)

    def _select_class(self, predictions: pd.DataFrame) -> pd.DataFrame:
        class_ = self.class_

        if class_ is None:
            return predictions

        columns = predictions.columns

        if class_ in columns:
            return predictions.loc[:, [class_]]
        elif isinstance(class_, (int, np.integer)) and not isinstance(class_, bool):
            if not -len(columns) <= class_ < len(columns):
                raise IndexError(
                    f"arg class_={class_} is out of range for "
                    f"{len(columns)} outputs"
                )
            return predictions.iloc[:, [class_]]
        else:
            raise KeyError(
                f"arg class_={class_!r} is not one of the outputs "
                f"{columns.to_list()}"
            )


@inheritdoc(match="[see superclass]")
class LearnerPrediction(Prediction):
    """
    Predictions of a learner implementing the scikit-learn estimator API,
    including :mod:`sklearndf` learners.

    Classifiers are recognised by having a ``predict_proba`` method and a
    ``classes_`` attribute; their predictions are class probabilities, with one
    output per class.
    """

    #: Choose class probabilities for classifiers, and plain predictions otherwise.
    TYPE_AUTO = "auto"

    #: Always predict class probabilities.
    TYPE_PROBA = "proba"

    #: Always use the learner's ``predict`` method.
    TYPE_RESPONSE = "response"

    #: The learner to get predictions from.
    model: Any

    #: The type of predictions to make.
    prediction_type: str

    def __init__(
        self,
        model: Any,
        *,
        prediction_type: str = TYPE_AUTO,
        class_: Optional[Any] = None,
    ) -> None:
        """
        :param model: a fitted learner with a ``predict`` method
        :param prediction_type: one of ``"auto"`` (default), ``"proba"``,
            or ``"response"``
        """
        super().__init__(class_=class_)

        types = {
            LearnerPrediction.TYPE_AUTO,
            LearnerPrediction.TYPE_PROBA,
            LearnerPrediction.TYPE_RESPONSE,
        }
        if prediction_type not in types:
            raise ValueError(
                f'arg prediction_type="{prediction_type}" must be one of {types}'
            )

        if not callable(getattr(model, "predict", None)):
            raise TypeError(
                f"arg model must implement method predict: {type(model).__name__}"
            )

        is_classifier = self._is_classifier(model)

        if prediction_type == LearnerPrediction.TYPE_PROBA and not is_classifier:
            raise TypeError(
                "arg prediction_type='proba' requires a classifier implementing "
                f"method predict_proba: {type(model).__name__}"
            )

        self.model = model
        self.prediction_type = prediction_type
        self._use_proba = is_classifier and (
            prediction_type != LearnerPrediction.TYPE_RESPONSE
        )

    __init__.__doc__ = cast(str, Prediction.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    def _predict_raw(self, X: pd.DataFrame) -> Any:
        model = self.model
        if self._use_proba:
            probabilities = model.predict_proba(X)
            if isinstance(probabilities, pd.DataFrame):
                return probabilities
            return pd.DataFrame(
                np.asarray(probabilities), index=X.index, columns=list(model.classes_)
            )
        else:
            return model.predict(X)

    @staticmethod
    def _is_classifier(model: Any) -> bool:
        return callable(getattr(model, "predict_proba", None)) and hasattr(
            model, "classes_"
        )


@inheritdoc(match="[see superclass]")
class FunctionPrediction(Prediction):
    """
    Predictions of a plain function, taking a data frame of features and returning
    a series, data frame, or numpy array of predictions.
    """

    #: The function to get predictions from.
    function: ModelFunction

    def __init__(
        self,
        function: ModelFunction,
        *,
        output_names: Optional[Union[str, Sequence[Any]]] = None,
        class_: Optional[Any] = None,
    ) -> None:
        """
        :param function: the prediction function
        :param output_names: optional names for the outputs of the function; if
            omitted, names are taken from the function's results where available
        """
        super().__init__(class_=class_)

        if not callable(function):
            raise TypeError("arg function must be callable")

        self.function = function
        self._function_output_names: Optional[List[Any]] = (
            None if output_names is None else to_list(output_names)
        )

    __init__.__doc__ = cast(str, Prediction.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    def _predict_raw(self, X: pd.DataFrame) -> Any:
        raw = self.function(X)

        names = self._function_output_names
        if names is None:
            return raw

        values = raw.values if isinstance(raw, (pd.Series, pd.DataFrame)) else raw
        values = np.asarray(values)
        if values.ndim <= 1:
            values = values.reshape(-1, 1)
        if values.shape[1] != len(names):
            raise ValueError(
                f"function returned {values.shape[1]} outputs but arg output_names "
                f"has {len(names)} names"
            )
        return pd.DataFrame(values, index=X.index, columns=names)


@inheritdoc(match="[see superclass]")
class CachedPrediction(Prediction):
    """
    Memoises the predictions of another prediction object.

    Rows are identified by a hash of their feature values, so that a row which is
    predicted again, in the same or in a later call, is looked up instead of being
    passed to the model a second time.
    """

    #: The prediction object whose predictions are memoised.
    predictor: Prediction

    def __init__(self, predictor: Prediction) -> None:
        """
        :param predictor: the prediction object to memoise
        """
        super().__init__()

        if not isinstance(predictor, Prediction):
            raise TypeError("arg predictor must be a Prediction")

        self.predictor = predictor
        self.n_hits = 0
        self.n_misses = 0
        self._cache: Optional[pd.DataFrame] = None

    @property
    def output_names(self) -> List[Any]:
        """[see superclass]"""
        return self.predictor.output_names

    def clear(self) -> None:
        """
        Remove all memoised predictions.
        """
        self._cache = None
        self.n_hits = 0
        self.n_misses = 0

    def predict(self, X: pd.DataFrame) -> pd.DataFrame:
        """[see superclass]"""
        if not isinstance(X, pd.DataFrame):
            raise TypeError(f"arg X must be a DataFrame but is a {type(X).__name__}")

        keys = pd.util.hash_pandas_object(X, index=False).values
        cache = self._cache

        if cache is None:
            unknown = np.ones(len(keys), dtype=bool)
        else:
            unknown = ~pd.Index(keys).isin(cache.index)

        if unknown.any():
            new_keys, first_positions = np.unique(keys[unknown], return_index=True)
            new_rows = X.iloc[np.flatnonzero(unknown)[first_positions]]
            new_predictions = self.predictor.predict(new_rows).set_axis(
                pd.Index(new_keys), axis=0
            )
            self._cache = (
                new_predictions
                if cache is None
                else pd.concat([cache, new_predictions])
            )
            self.n_misses += len(new_keys)

        n_hits = int(len(keys) - unknown.sum())
        self.n_hits += n_hits
        log.debug(
            f"prediction cache: {n_hits} hits, {int(unknown.sum())} rows to predict"
        )

        return (
            cast(pd.DataFrame, self._cache)
            .loc[keys]
            .set_axis(X.index, axis=0)
            .rename_axis(columns=Prediction.IDX_OUTPUT)
        )

    def _predict_raw(self, X: pd.DataFrame) -> Any:
        return self.predictor.predict(X)


#
# Functions
#


def prediction_model(
    model: Union[Prediction, Any, Callable[..., Any]],
    *,
    class_: Optional[Any] = None,
    prediction_type: str = LearnerPrediction.TYPE_AUTO,
) -> Prediction:
    """
    Wrap a model in a :class:`.Prediction` object.

    :param model: a :class:`.Prediction` (returned unchanged), a learner with a
        ``predict`` method, or a prediction function
    :param class_: optional label or position of the single class to predict
    :param prediction_type: the type of predictions to make for learners (see
        :class:`.LearnerPrediction`)
    :return: the prediction object
    """
    if isinstance(model, Prediction):
        if class_ is not None:
            log.warning(
                f"ignoring arg class_={class_!r} for a model that is already a "
                f"{type(model).__name__}"
            )
        return model
    elif callable(getattr(model, "predict", None)):
        return LearnerPrediction(
            model, prediction_type=prediction_type, class_=class_
        )
    elif callable(model):
        return FunctionPrediction(model, class_=class_)
    else:
        raise TypeError(
            "arg model must be a Prediction, a learner implementing method predict, "
            f"or a function: {type(model).__name__}"
        )


__tracker.validate()
