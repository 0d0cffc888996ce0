import logging

import pandas as pd
import pytest
from numpy.testing import assert_allclose
from pytest import approx

from sklearndf.classification import RandomForestClassifierDF

from iml.data import DataSampler
from iml.experiment import Shapley
from iml.experiment.base import Experiment
from iml.prediction import FunctionPrediction, LearnerPrediction
from iml.viz import AttributionDrawer

log = logging.getLogger(__name__)


def test_shapley_single_reference(linear_predictor: FunctionPrediction) -> None:
    # all reference observations are identical, so every draw gives the same
    # contributions
    sampler = DataSampler(pd.DataFrame(dict(a=[1.0] * 5, b=[1.0] * 5, c=[1.0] * 5)))
    x_interest = pd.Series(dict(a=3.0, b=2.0, c=7.0))

    shapley = Shapley(
        linear_predictor, sampler, x_interest, sample_size=20, random_state=42
    ).run()
    results = shapley.results_
    log.debug(f"\n{results}")

    assert results.columns.to_list() == [
        Shapley.COL_FEATURE,
        Experiment.COL_OUTPUT,
        Shapley.COL_PHI,
        Shapley.COL_PHI_VAR,
        Shapley.COL_LOWER_BOUND,
        Shapley.COL_UPPER_BOUND,
        Shapley.COL_FEATURE_VALUE,
    ]
    assert results.loc[:, Shapley.COL_FEATURE].to_list() == ["a", "b", "c"]
    assert_allclose(results.loc[:, Shapley.COL_PHI], [4.0, -1.0, 0.0])
    assert_allclose(results.loc[:, Shapley.COL_PHI_VAR], 0.0, atol=1e-12)
    assert_allclose(
        results.loc[:, Shapley.COL_LOWER_BOUND], results.loc[:, Shapley.COL_PHI]
    )
    assert results.loc[:, Shapley.COL_FEATURE_VALUE].to_list() == [
        "a=3.0",
        "b=2.0",
        "c=7.0",
    ]

    assert shapley.y_hat_interest_.iloc[0] == approx(4.0)
    assert shapley.y_hat_average_.iloc[0] == approx(1.0)

    # two rows per draw and feature
    assert len(shapley.x_design_) == 2 * 20 * 3

    AttributionDrawer(style="text").draw(shapley)


def test_shapley(linear_sampler: DataSampler, linear_predictor: FunctionPrediction) -> None:
    x_interest = linear_sampler.features.iloc[[10]]

    shapley = Shapley(
        linear_predictor, linear_sampler, x_interest, sample_size=50, random_state=0
    ).run()
    results = shapley.results_.set_index(Shapley.COL_FEATURE)

    # for an additive model, the contribution of a feature is its own term
    z = shapley.x_sample_
    x = x_interest.iloc[0]
    assert results.loc["a", Shapley.COL_PHI] == approx(2.0 * (x.a - z.a.mean()))
    assert results.loc["b", Shapley.COL_PHI] == approx(-(x.b - z.b.mean()))
    assert results.loc["c", Shapley.COL_PHI] == approx(0.0)

    # the attributions add up to the difference from the average prediction of
    # the drawn reference observations
    y_hat_interest = shapley.y_hat_interest_.iloc[0]
    assert results.loc[:, Shapley.COL_PHI].sum() == approx(
        y_hat_interest - (2.0 * z.a - z.b).mean()
    )
    assert y_hat_interest == approx(2.0 * x.a - x.b)

    assert (
        results.loc[:, Shapley.COL_LOWER_BOUND] <= results.loc[:, Shapley.COL_PHI]
    ).all()
    assert (
        results.loc[:, Shapley.COL_PHI] <= results.loc[:, Shapley.COL_UPPER_BOUND]
    ).all()

    # a lower confidence level gives a narrower interval
    narrow = (
        Shapley(
            linear_predictor,
            linear_sampler,
            x_interest,
            sample_size=50,
            confidence_level=0.5,
            random_state=0,
        )
        .run()
        .results_.set_index(Shapley.COL_FEATURE)
    )
    assert_allclose(
        narrow.loc[:, Shapley.COL_PHI], results.loc[:, Shapley.COL_PHI]
    )
    assert (
        narrow.loc["a", Shapley.COL_UPPER_BOUND]
        < results.loc["a", Shapley.COL_UPPER_BOUND]
    )

    # explain another observation
    x_other = linear_sampler.features.iloc[[11]]
    shapley.explain(x_other)
    assert shapley.y_hat_interest_.iloc[0] == approx(
        2.0 * x_other.a.iloc[0] - x_other.b.iloc[0]
    )


def test_shapley_classifier(
    iris_classifier: RandomForestClassifierDF, iris_sampler: DataSampler
) -> None:
    shapley = Shapley(
        LearnerPrediction(iris_classifier),
        iris_sampler,
        iris_sampler.features.iloc[0],
        sample_size=30,
        random_state=42,
    ).run()
    results = shapley.results_

    # one row per feature and class
    assert len(results) == 4 * 3

    phi = results.groupby(Experiment.COL_OUTPUT)[Shapley.COL_PHI].sum()
    z_predictions = shapley.predictor.predict(shapley.x_sample_).mean()
    assert_allclose(
        phi.loc[z_predictions.index],
        shapley.y_hat_interest_.loc[z_predictions.index] - z_predictions,
    )

    # attributions across classes cancel out, as probabilities add up to 1
    assert results.groupby(Shapley.COL_FEATURE)[Shapley.COL_PHI].sum().abs().max() == (
        approx(0.0, abs=1e-9)
    )

    AttributionDrawer(style="text").draw(shapley)


def test_shapley_invalid(
    linear_sampler: DataSampler, linear_predictor: FunctionPrediction
) -> None:
    x_interest = linear_sampler.features.iloc[0]

    with pytest.raises(ValueError):
        Shapley(linear_predictor, linear_sampler, x_interest, confidence_level=1.0)

    with pytest.raises(ValueError):
        Shapley(linear_predictor, linear_sampler, x_interest, sample_size=0)
