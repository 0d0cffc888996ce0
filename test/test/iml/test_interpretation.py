import logging

import pandas as pd
import pytest
from pytest import approx

from sklearndf.regression import RandomForestRegressorDF

from iml.data import DataSampler
from iml.experiment import (
    FeatureImportance,
    IndividualConditionalExpectation,
    Lime,
    PartialDependence,
    Shapley,
    TreeSurrogate,
)
from iml.interpretation import (
    Interpretation,
    feature_importance,
    ice,
    lime,
    partial_dependence,
    shapley,
    tree_surrogate,
)
from iml.prediction import CachedPrediction, FunctionPrediction, LearnerPrediction

log = logging.getLogger(__name__)


def test_interpretation(
    diabetes_regressor: RandomForestRegressorDF,
    diabetes_df: pd.DataFrame,
    diabetes_target: str,
) -> None:
    interpretation = Interpretation(
        diabetes_regressor, diabetes_df, target=diabetes_target
    )

    assert isinstance(interpretation.predictor, CachedPrediction)
    assert isinstance(interpretation.predictor.predictor, LearnerPrediction)
    assert interpretation.sampler.target_name == diabetes_target

    importance = interpretation.feature_importance(loss="mae", random_state=42)
    assert isinstance(importance, FeatureImportance)
    assert importance.is_fitted
    assert len(importance.results_) == interpretation.sampler.n_features
    log.debug(f"\n{importance.results_}")

    pdp = interpretation.partial_dependence("bmi", grid_size=5)
    assert isinstance(pdp, PartialDependence)
    assert len(pdp.results_) == 5

    ice_curves = interpretation.ice("bmi", grid_size=5)
    assert isinstance(ice_curves, IndividualConditionalExpectation)

    # the ICE curves repeat the design of the partial dependence, so all of their
    # predictions are served from the cache
    n_misses = interpretation.predictor.n_misses
    assert ice_curves.partial_dependence().loc[:, "y_hat"].to_list() == approx(
        pdp.results_.loc[:, "y_hat"].to_list()
    )
    ice_again = interpretation.ice("bmi", grid_size=5)
    assert interpretation.predictor.n_misses == n_misses
    assert ice_again.results_.equals(ice_curves.results_)

    surrogate = interpretation.tree_surrogate(max_depth=2, random_state=42)
    assert isinstance(surrogate, TreeSurrogate)
    assert 0.0 < surrogate.r_squared_.iloc[0] <= 1.0

    x_interest = interpretation.sampler.features.iloc[0]
    assert isinstance(
        interpretation.lime(x_interest, k=3, random_state=42), Lime
    )
    assert isinstance(
        interpretation.shapley(x_interest, sample_size=10, random_state=42), Shapley
    )


def test_interpretation_sampler(
    linear_sampler: DataSampler, linear_predictor: FunctionPrediction
) -> None:
    interpretation = Interpretation(linear_predictor, linear_sampler, cache=False)
    assert interpretation.predictor is linear_predictor
    assert interpretation.sampler is linear_sampler

    with pytest.raises(ValueError):
        Interpretation(linear_predictor, linear_sampler, target="y")

    with pytest.raises(TypeError):
        # noinspection PyTypeChecker
        Interpretation(linear_predictor, linear_sampler.features.values)

    with pytest.raises(TypeError):
        Interpretation(42, linear_sampler)


def test_interpretation_functions(
    linear_df: pd.DataFrame, linear_predictor: FunctionPrediction
) -> None:
    importance = feature_importance(
        linear_predictor, linear_df, loss="mse", target="y", random_state=42
    )
    assert importance.results_.index[0] == "a"

    pdp = partial_dependence(linear_predictor, linear_df, "b", target="y")
    assert len(pdp.results_) == 10

    curves = ice(linear_predictor, linear_df, "c", target="y", grid_size=3)
    assert len(curves.results_) == 3 * len(linear_df)

    surrogate = tree_surrogate(linear_predictor, linear_df, target="y", max_depth=3)
    assert surrogate.tree_.native_estimator.get_depth() <= 3

    x_interest = linear_df.drop(columns="y").iloc[0]
    explanation = lime(
        linear_predictor, linear_df, x_interest, target="y", k=2, random_state=0
    )
    assert sorted(explanation.results_.loc[:, Lime.COL_FEATURE]) == ["a", "b"]

    attribution = shapley(
        linear_predictor, linear_df, x_interest, target="y", random_state=0
    )
    assert attribution.results_.loc[:, Shapley.COL_PHI].iloc[2] == approx(0.0)


def test_interpretation_parallel(
    linear_df: pd.DataFrame,
    linear_sampler: DataSampler,
    linear_predictor: FunctionPrediction,
) -> None:
    interpretation = Interpretation(linear_predictor, linear_sampler, n_jobs=2)
    surrogate = interpretation.tree_surrogate(max_depth=2, random_state=0)
    assert surrogate.n_jobs == 2
    assert surrogate.output_names == ["prediction"]

    # parallelization arguments are passed on by the one-call functions
    surrogate = tree_surrogate(
        linear_predictor, linear_df, target="y", max_depth=2, random_state=0, n_jobs=2
    )
    assert surrogate.n_jobs == 2
    assert surrogate.results_.loc[:, TreeSurrogate.COL_NODE].nunique() <= 4

    pdp = partial_dependence(linear_predictor, linear_df, "a", target="y", n_jobs=2)
    assert pdp.n_jobs == 2
    assert len(pdp.results_) == 10
