"""
Core implementation of :mod:`iml.metrics`
"""

import logging
from typing import Callable, Dict, Union

import numpy as np
import pandas as pd
from sklearn import metrics

from pytools.api import AllTracker

from .._types import LossFunction

log = logging.getLogger(__name__)

__all__ = ["get_loss"]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Functions
#


def _single_output(y_pred: Union[pd.Series, pd.DataFrame]) -> pd.Series:
    if isinstance(y_pred, pd.DataFrame):
        if y_pred.shape[1] != 1:
            raise ValueError(
                f"loss requires a single output but predictions have "
                f"{y_pred.shape[1]} outputs; select a class or use a "
                "classification loss"
            )
        return y_pred.iloc[:, 0]
    return y_pred


def _predicted_labels(y_pred: Union[pd.Series, pd.DataFrame]) -> pd.Series:
    if isinstance(y_pred, pd.DataFrame) and y_pred.shape[1] > 1:
        # probabilities: the label of the most likely class
        return y_pred.idxmax(axis=1)
    return _single_output(y_pred)


def _regression_loss(
    metric: Callable[..., float]
) -> Callable[[pd.Series, Union[pd.Series, pd.DataFrame]], float]:
    def _loss(y_true: pd.Series, y_pred: Union[pd.Series, pd.DataFrame]) -> float:
        return float(metric(y_true, _single_output(y_pred)))

    _loss.__name__ = metric.__name__
    return _loss


def _rmse(y_true: pd.Series, y_pred: Union[pd.Series, pd.DataFrame]) -> float:
    return float(np.sqrt(metrics.mean_squared_error(y_true, _single_output(y_pred))))


def _rmsle(y_true: pd.Series, y_pred: Union[pd.Series, pd.DataFrame]) -> float:
    return float(
        np.sqrt(metrics.mean_squared_log_error(y_true, _single_output(y_pred)))
    )


def _ce(y_true: pd.Series, y_pred: Union[pd.Series, pd.DataFrame]) -> float:
    return float(metrics.zero_one_loss(y_true, _predicted_labels(y_pred)))


def _logloss(y_true: pd.Series, y_pred: Union[pd.Series, pd.DataFrame]) -> float:
    if isinstance(y_pred, pd.DataFrame) and y_pred.shape[1] > 1:
        return float(
            metrics.log_loss(y_true, y_pred.values, labels=y_pred.columns.to_list())
        )
    # a single column holds the probability of the positive class
    return float(metrics.log_loss(y_true, _single_output(y_pred)))


__LOSSES: Dict[str, LossFunction] = {
    "mae": _regression_loss(metrics.mean_absolute_error),
    "mse": _regression_loss(metrics.mean_squared_error),
    "rmse": _rmse,
    "msle": _regression_loss(metrics.mean_squared_log_error),
    "rmsle": _rmsle,
    "mdae": _regression_loss(metrics.median_absolute_error),
    "mape": _regression_loss(metrics.mean_absolute_percentage_error),
    "ce": _ce,
    "logloss": _logloss,
}

#: The names of all losses known to :func:`.get_loss`.
_LOSS_NAMES = tuple(__LOSSES.keys())


def get_loss(loss: Union[str, LossFunction]) -> LossFunction:
    """
    Get a loss function by name.

    Supported names are ``mae``, ``mse``, ``rmse``, ``msle``, ``rmsle``, ``mdae``,
    ``mape``, ``ce`` (classification error), and ``logloss``.

    The resulting function takes the actual target values as a series and the
    predictions as a series or data frame, and returns the loss as a float.
    Classification losses accept class probabilities with one column per class.

    :param loss: the name of a loss, or a loss function which is returned unchanged
    :return: the loss function
    """
    if callable(loss):
        return loss
    try:
        return __LOSSES[loss]
    except KeyError:
        raise ValueError(
            f'arg loss="{loss}" must be a function or one of {", ".join(_LOSS_NAMES)}'
        ) from None


__tracker.validate()
