import logging

import numpy as np
import pandas as pd
import pytest
from pytest import approx

from pytools.fit import NotFittedError
from sklearndf.classification import RandomForestClassifierDF

from iml.data import DataSampler
from iml.experiment import FeatureImportance
from iml.prediction import FunctionPrediction, LearnerPrediction
from iml.viz import ImportanceDrawer

log = logging.getLogger(__name__)


def test_importance_shuffle(
    linear_sampler: DataSampler, linear_predictor: FunctionPrediction
) -> None:
    importance = FeatureImportance(
        linear_predictor,
        linear_sampler,
        loss="mae",
        n_repetitions=3,
        random_state=42,
    )

    with pytest.raises(NotFittedError):
        _ = importance.results_

    results = importance.run().results_
    log.debug(f"\n{results}")

    # the most important feature has the largest coefficient
    assert results.index.to_list() == ["a", "b", "c"]
    assert results.index.name == FeatureImportance.IDX_FEATURE
    assert results.columns.to_list() == [
        FeatureImportance.COL_ORIGINAL_ERROR,
        FeatureImportance.COL_PERMUTATION_ERROR,
        FeatureImportance.COL_IMPORTANCE,
        FeatureImportance.COL_IMPORTANCE_05,
        FeatureImportance.COL_IMPORTANCE_95,
    ]

    # the model ignores feature c
    assert results.loc["c", FeatureImportance.COL_IMPORTANCE] == approx(1.0)
    assert results.loc["a", FeatureImportance.COL_IMPORTANCE] > 5.0

    # the original error is the mean absolute noise
    assert results.loc[:, FeatureImportance.COL_ORIGINAL_ERROR].nunique() == 1
    assert results.iloc[0, 0] == approx(0.4, abs=0.1)

    assert (
        results.loc[:, FeatureImportance.COL_IMPORTANCE_05]
        <= results.loc[:, FeatureImportance.COL_IMPORTANCE_95]
    ).all()

    # one permuted copy of the data per feature and repetition
    assert len(importance.x_design_) == 3 * 3 * len(linear_sampler)

    # the same seed gives the same results
    results_again = (
        FeatureImportance(
            linear_predictor,
            linear_sampler,
            loss="mae",
            n_repetitions=3,
            random_state=42,
        )
        .run()
        .results_
    )
    assert results_again.equals(results)

    ImportanceDrawer(style="text").draw(importance)


def test_importance_cartesian(
    linear_sampler: DataSampler, linear_predictor: FunctionPrediction
) -> None:
    sampler = linear_sampler.subsample(iloc=np.arange(30))

    importance = FeatureImportance(
        linear_predictor,
        sampler,
        loss="mse",
        method="cartesian",
        compare="difference",
        features=["b", "c"],
    ).run()
    results = importance.results_

    assert results.index.to_list() == ["b", "c"]
    assert FeatureImportance.COL_IMPORTANCE_05 not in results.columns
    assert results.loc["c", FeatureImportance.COL_IMPORTANCE] == approx(0.0)
    assert results.loc["b", FeatureImportance.COL_IMPORTANCE] > 0.0

    # every observation is combined with every other observation's value
    assert len(importance.x_design_) == 2 * 30 * 29

    # the cartesian method is deterministic
    assert (
        FeatureImportance(
            linear_predictor,
            sampler,
            loss="mse",
            method="cartesian",
            compare="difference",
            features=["b", "c"],
        )
        .run()
        .results_.equals(results)
    )


def test_importance_classifier(
    iris_classifier: RandomForestClassifierDF, iris_sampler: DataSampler
) -> None:
    importance = FeatureImportance(
        LearnerPrediction(iris_classifier),
        iris_sampler,
        loss="ce",
        compare="difference",
        random_state=42,
    ).run()
    results = importance.results_
    log.debug(f"\n{results}")

    assert sorted(results.index) == sorted(iris_sampler.feature_names)
    assert results.loc[:, FeatureImportance.COL_IMPORTANCE].max() > 0.0
    # the classification error is a share of observations
    assert (results.loc[:, FeatureImportance.COL_PERMUTATION_ERROR] <= 1.0).all()


def test_importance_invalid(
    linear_sampler: DataSampler, linear_predictor: FunctionPrediction
) -> None:
    with pytest.raises(ValueError):
        FeatureImportance(
            linear_predictor,
            DataSampler(linear_sampler.features),
            loss="mae",
        )

    with pytest.raises(ValueError):
        FeatureImportance(linear_predictor, linear_sampler, loss="unknown")

    with pytest.raises(ValueError):
        FeatureImportance(
            linear_predictor, linear_sampler, loss="mae", method="bootstrap"
        )

    with pytest.raises(ValueError):
        FeatureImportance(
            linear_predictor, linear_sampler, loss="mae", compare="quotient"
        )

    with pytest.raises(ValueError):
        FeatureImportance(linear_predictor, linear_sampler, loss="mae", n_repetitions=0)

    with pytest.raises(KeyError):
        FeatureImportance(linear_predictor, linear_sampler, loss="mae", features=["d"])

    with pytest.raises(TypeError):
        # noinspection PyTypeChecker
        FeatureImportance(lambda df: df.a, linear_sampler, loss="mae")


def test_importance_exact_model(
    linear_df: pd.DataFrame,
    linear_predictor: FunctionPrediction,
    caplog: pytest.LogCaptureFixture,
) -> None:
    # the target is predicted without error
    sampler = DataSampler(
        linear_df.assign(y=2.0 * linear_df.loc[:, "a"] - linear_df.loc[:, "b"]),
        target="y",
    )

    with caplog.at_level(logging.WARNING):
        results = (
            FeatureImportance(linear_predictor, sampler, loss="mae", random_state=42)
            .run()
            .results_
        )
    log.debug(f"\n{results}")

    assert "the loss of the model on the unchanged data is 0" in caplog.text
    assert (results.loc[:, FeatureImportance.COL_ORIGINAL_ERROR] == 0.0).all()

    importance = results.loc[:, FeatureImportance.COL_IMPORTANCE]
    assert importance.loc["a"] == np.inf
    assert importance.loc["b"] == np.inf
    # permuting an unused feature does not change the loss: 0 / 0
    assert np.isnan(importance.loc["c"])
