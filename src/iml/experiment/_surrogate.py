"""
Global tree surrogate.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union, cast

import numpy as np
import pandas as pd
from sklearn.tree import DecisionTreeRegressor

from pytools.api import AllTracker, inheritdoc
from pytools.fit import fitted_only
from sklearndf.regression import DecisionTreeRegressorDF

from .._types import RandomState
from ..data import DataSampler
from ..prediction import Prediction
from .base import Experiment

log = logging.getLogger(__name__)

__all__ = ["TreeSurrogate"]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


@inheritdoc(match="[see superclass]")
class TreeSurrogate(Experiment):
    """
    A decision tree approximating the predictions of the model.

    The tree is fitted on a sample of the reference data, with the model's
    predictions as the target; for classifiers, the tree predicts the probabilities
    of all classes at once. Shallow trees keep the surrogate interpretable: each
    leaf describes a region of the feature space by a conjunction of split rules.

    Categorical features are one-hot encoded, with indicator columns named
    ``feature=value``.

    The results table comprises the sampled features, and columns

    - :attr:`.COL_NODE`: the id of the leaf node each observation falls into
    - :attr:`.COL_PATH`: the split rules leading to the leaf, joined by ``&``
    - :attr:`.COL_Y_HAT`: the model's prediction
    - :attr:`.COL_Y_HAT_TREE`: the surrogate's prediction

    For models with several outputs, there is one prediction column per output,
    named ``y_hat:<output>`` and ``y_hat_tree:<output>``.

    See Craven, M.W., and Shavlik, J.W. (1996). Extracting Tree-Structured
    Representations of Trained Networks. Advances in Neural Information Processing
    Systems 8: 24-30.
    """

    #: Name of the results column with leaf ids.
    COL_NODE = "node"

    #: Name of the results column with leaf paths.
    COL_PATH = "path"

    #: Name of the results column(s) with surrogate predictions.
    COL_Y_HAT_TREE = "y_hat_tree"

    #: Name of the series of predicted classes returned by :meth:`.predict`.
    COL_CLASS = "class"

    #: Predict the surrogate's outputs.
    KIND_PROB = "prob"

    #: Predict the output with the highest surrogate prediction.
    KIND_CLASS = "class"

    #: The number of rows to draw from the sampler.
    sample_size: int

    #: The maximum depth of the tree.
    max_depth: int

    #: Additional parameters for the decision tree.
    tree_params: Dict[str, Any]

    #: Seed or random state for drawing the sample and fitting the tree.
    random_state: RandomState

    def __init__(
        self,
        predictor: Prediction,
        sampler: DataSampler,
        *,
        sample_size: int = 100,
        max_depth: int = 2,
        tree_params: Optional[Mapping[str, Any]] = None,
        random_state: RandomState = None,
        n_jobs: Optional[int] = None,
        shared_memory: Optional[bool] = None,
        pre_dispatch: Optional[Union[str, int]] = None,
        verbose: Optional[int] = None,
    ) -> None:
        """
        :param sample_size: the number of rows to draw from the sampler
            (default: 100)
        :param max_depth: the maximum depth of the tree (default: 2)
        :param tree_params: additional parameters for the
            :class:`~sklearn.tree.DecisionTreeRegressor`
        :param random_state: seed or random state for drawing the sample and
            fitting the tree
        """
        super().__init__(
            predictor,
            sampler,
            n_jobs=n_jobs,
            shared_memory=shared_memory,
            pre_dispatch=pre_dispatch,
            verbose=verbose,
        )

        if sample_size < 2:
            raise ValueError(f"arg sample_size={sample_size} must be at least 2")
        if max_depth < 1:
            raise ValueError(f"arg max_depth={max_depth} must be positive")

        tree_params = dict(tree_params or {})
        if "max_depth" in tree_params:
            raise ValueError("use arg max_depth instead of tree_params['max_depth']")

        self.sample_size = sample_size
        self.max_depth = max_depth
        self.tree_params = tree_params
        self.random_state = random_state

        self._tree: Optional[DecisionTreeRegressorDF] = None
        self._encoded_columns: Optional[pd.Index] = None
        self._r_squared: Optional[pd.Series] = None

    __init__.__doc__ = cast(str, Experiment.__init__.__doc__) + cast(
        str, __init__.__doc__
    )

    @property
    @fitted_only
    def tree_(self) -> DecisionTreeRegressorDF:
        """
        The fitted surrogate tree.
        """
        return cast(DecisionTreeRegressorDF, self._tree)

    @property
    @fitted_only
    def r_squared_(self) -> pd.Series:
        """
        The share of the variance of the model's predictions that is explained by the
        surrogate, per output.
        """
        return cast(pd.Series, self._r_squared)

    @fitted_only
    def predict(
        self, X: pd.DataFrame, *, kind: str = KIND_PROB
    ) -> Union[pd.DataFrame, pd.Series]:
        """
        Predict with the surrogate tree.

        :param X: the features to predict for
        :param kind: ``"prob"`` (default) to get the surrogate's predictions, with one
            column per output; ``"class"`` to get the output with the highest
            prediction (only for models with several outputs)
        :return: a data frame of predictions, or a series of classes
        """
        kinds = {TreeSurrogate.KIND_PROB, TreeSurrogate.KIND_CLASS}
        if kind not in kinds:
            raise ValueError(f'arg kind="{kind}" must be one of {kinds}')

        predictions = self._predict_tree(self._encode(X))

        if kind == TreeSurrogate.KIND_CLASS:
            if predictions.shape[1] == 1:
                log.warning("ignoring arg kind='class' for a single-output surrogate")
            else:
                return predictions.idxmax(axis=1).rename(TreeSurrogate.COL_CLASS)

        return predictions

    def _sample(self) -> pd.DataFrame:
        return self.sampler.sample(self.sample_size, random_state=self.random_state)

    def _aggregate(self, quantity: Union[pd.Series, pd.DataFrame]) -> pd.DataFrame:
        y_hat = cast(pd.DataFrame, quantity)
        x_sample = cast(pd.DataFrame, self._x_sample)

        x_encoded = self._dummies(x_sample)
        self._encoded_columns = x_encoded.columns

        tree = DecisionTreeRegressorDF(
            max_depth=self.max_depth,
            random_state=self.random_state,
            **self.tree_params,
        )
        if y_hat.shape[1] == 1:
            tree.fit(x_encoded, y_hat.iloc[:, 0])
        else:
            tree.fit(
                x_encoded,
                y_hat.set_axis([str(output) for output in y_hat.columns], axis=1),
            )
        self._tree = tree

        y_hat_tree = self._predict_tree(x_encoded)

        residual_ss = ((y_hat - y_hat_tree) ** 2).sum()
        total_ss = ((y_hat - y_hat.mean()) ** 2).sum()
        with np.errstate(divide="ignore", invalid="ignore"):
            self._r_squared = (1 - residual_ss / total_ss).rename_axis(
                index=Experiment.COL_OUTPUT
            )

        native_tree = cast(DecisionTreeRegressor, tree.native_estimator)
        leaves = native_tree.apply(x_encoded)
        paths = self._leaf_paths(native_tree, x_encoded.columns.to_list())

        log.debug(
            f"fitted surrogate tree with {native_tree.get_n_leaves()} leaves, "
            f"R² = {self._r_squared.round(3).to_dict()}"
        )

        return pd.concat(
            [
                x_sample,
                pd.DataFrame(
                    {
                        TreeSurrogate.COL_NODE: leaves,
                        TreeSurrogate.COL_PATH: [paths[leaf] for leaf in leaves],
                    },
                    index=x_sample.index,
                ),
                self._prediction_columns(y_hat, Experiment.COL_Y_HAT),
                self._prediction_columns(y_hat_tree, TreeSurrogate.COL_Y_HAT_TREE),
            ],
            axis=1,
        )

    def _encode(self, X: pd.DataFrame) -> pd.DataFrame:
        # one-hot encode categorical features, using the columns seen in the sample
        return self._dummies(X).reindex(
            columns=cast(pd.Index, self._encoded_columns), fill_value=0.0
        )

    def _dummies(self, X: pd.DataFrame) -> pd.DataFrame:
        categorical = [
            name
            for name, feature_type in self.sampler.feature_types.items()
            if feature_type == DataSampler.TYPE_CATEGORICAL
        ]
        return pd.get_dummies(
            X.loc[:, self.sampler.feature_names],
            columns=categorical,
            prefix_sep="=",
            dtype=float,
        )

    def _predict_tree(self, x_encoded: pd.DataFrame) -> pd.DataFrame:
        predictions = cast(DecisionTreeRegressorDF, self._tree).predict(x_encoded)
        if isinstance(predictions, pd.DataFrame):
            predictions = predictions.set_axis(self.output_names, axis=1)
        else:
            predictions = pd.DataFrame(
                {self.output_names[0]: np.asarray(predictions)}, index=x_encoded.index
            )
        return predictions.set_axis(x_encoded.index, axis=0).rename_axis(
            columns=Experiment.COL_OUTPUT
        )

    @staticmethod
    def _prediction_columns(predictions: pd.DataFrame, name: str) -> pd.DataFrame:
        if predictions.shape[1] == 1:
            return predictions.set_axis([name], axis=1)
        else:
            return predictions.set_axis(
                [f"{name}:{output}" for output in predictions.columns], axis=1
            )

    @staticmethod
    def _leaf_paths(
        native_tree: DecisionTreeRegressor, feature_names: List[str]
    ) -> Dict[int, str]:
        # the conjunction of split rules from the root to each leaf
        tree = native_tree.tree_
        paths: Dict[int, str] = {}

        def _visit(node: int, rules: List[str]) -> None:
            left = tree.children_left[node]
            right = tree.children_right[node]
            if left == right:
                paths[node] = " &\n".join(rules)
                return
            feature = feature_names[tree.feature[node]]
            threshold = f"{tree.threshold[node]:.6g}"
            _visit(left, [*rules, f"{feature} <= {threshold}"])
            _visit(right, [*rules, f"{feature} > {threshold}"])

        _visit(0, [])
        return paths


__tracker.validate()
