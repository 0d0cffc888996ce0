import numpy as np
import pandas as pd
import pytest
from pandas.testing import assert_frame_equal

from sklearndf.classification import RandomForestClassifierDF
from sklearndf.regression import RandomForestRegressorDF

from iml.data import DataSampler
from iml.prediction import (
    CachedPrediction,
    FunctionPrediction,
    LearnerPrediction,
    Prediction,
    prediction_model,
)


def test_learner_prediction_classifier(
    iris_classifier: RandomForestClassifierDF, iris_sampler: DataSampler
) -> None:
    x = iris_sampler.features.iloc[:10]

    predictor = LearnerPrediction(iris_classifier)

    with pytest.raises(AttributeError):
        # output names are only known after predicting
        _ = predictor.output_names

    probabilities = predictor.predict(x)
    assert probabilities.shape == (10, 3)
    assert probabilities.index.equals(x.index)
    assert probabilities.columns.name == Prediction.IDX_OUTPUT
    assert predictor.output_names == ["setosa", "versicolor", "virginica"]
    assert predictor.is_multi_output
    np.testing.assert_allclose(probabilities.sum(axis=1), 1.0)

    # select a class by label or by position
    virginica = LearnerPrediction(iris_classifier, class_="virginica").predict(x)
    assert virginica.columns.to_list() == ["virginica"]
    assert_frame_equal(
        virginica,
        LearnerPrediction(iris_classifier, class_=2).predict(x),
    )

    with pytest.raises(KeyError):
        LearnerPrediction(iris_classifier, class_="tulip").predict(x)

    with pytest.raises(IndexError):
        LearnerPrediction(iris_classifier, class_=3).predict(x)

    # predicted labels instead of probabilities
    labels = LearnerPrediction(iris_classifier, prediction_type="response").predict(x)
    assert labels.shape == (10, 1)
    assert labels.iloc[:, 0].isin(["setosa", "versicolor", "virginica"]).all()


def test_learner_prediction_regressor(
    diabetes_regressor: RandomForestRegressorDF,
    diabetes_sampler: DataSampler,
    diabetes_target: str,
) -> None:
    x = diabetes_sampler.features.iloc[:5]
    predictor = LearnerPrediction(diabetes_regressor)

    predictions = predictor.predict(x)
    assert predictions.shape == (5, 1)
    assert not predictor.is_multi_output
    # the regressor names its predictions after the target
    assert predictor.output_names == [diabetes_target]

    with pytest.raises(TypeError):
        LearnerPrediction(diabetes_regressor, prediction_type="proba")

    with pytest.raises(ValueError):
        LearnerPrediction(diabetes_regressor, prediction_type="margin")

    with pytest.raises(TypeError):
        LearnerPrediction(object())


def test_function_prediction(linear_sampler: DataSampler) -> None:
    x = linear_sampler.features.iloc[:4]

    # unnamed series
    predictor = FunctionPrediction(lambda df: 2.0 * df.a - df.b)
    predictions = predictor.predict(x)
    assert predictor.output_names == [Prediction.COL_PREDICTION]
    np.testing.assert_allclose(predictions.iloc[:, 0], 2.0 * x.a - x.b)

    # 1-dimensional numpy array, with explicit output name
    predictor = FunctionPrediction(lambda df: df.a.values, output_names="a")
    assert predictor.predict(x).columns.to_list() == ["a"]

    # 2-dimensional numpy array
    predictor = FunctionPrediction(lambda df: df.loc[:, ["a", "b"]].values)
    assert predictor.predict(x).columns.to_list() == ["prediction_0", "prediction_1"]
    assert predictor.is_multi_output

    # data frame, selecting one output
    predictor = FunctionPrediction(lambda df: df.loc[:, ["a", "b"]], class_="b")
    assert predictor.predict(x).columns.to_list() == ["b"]

    with pytest.raises(ValueError):
        # wrong number of rows
        FunctionPrediction(lambda df: np.zeros(len(df) + 1)).predict(x)

    with pytest.raises(ValueError):
        # wrong number of output names
        FunctionPrediction(lambda df: df.a, output_names=["a", "b"]).predict(x)

    with pytest.raises(TypeError):
        # not a data frame
        FunctionPrediction(lambda df: df.a).predict(x.values)

    with pytest.raises(TypeError):
        FunctionPrediction("not a function")


def test_cached_prediction(linear_sampler: DataSampler) -> None:
    n_calls = []

    def _f(df: pd.DataFrame) -> pd.Series:
        n_calls.append(len(df))
        return df.a + df.b

    predictor = CachedPrediction(FunctionPrediction(_f))
    x = linear_sampler.features.iloc[:10]

    first = predictor.predict(x)
    assert n_calls == [10]
    assert predictor.n_misses == 10
    assert predictor.n_hits == 0

    # duplicated and already known rows are not predicted again
    x_repeated = pd.concat([x.iloc[:5], x.iloc[:5]]).reset_index(drop=True)
    second = predictor.predict(x_repeated)
    assert n_calls == [10]
    assert predictor.n_hits == 10
    np.testing.assert_allclose(
        second.values, np.concatenate([first.iloc[:5].values] * 2)
    )
    assert second.index.equals(x_repeated.index)

    # new rows are predicted, once per distinct row
    x_new = linear_sampler.features.iloc[[20, 20, 21]]
    third = predictor.predict(x_new)
    assert n_calls == [10, 2]
    assert predictor.n_misses == 12
    assert third.index.equals(x_new.index)
    np.testing.assert_allclose(third.iloc[:, 0], x_new.a + x_new.b)

    assert predictor.output_names == [Prediction.COL_PREDICTION]

    predictor.clear()
    predictor.predict(x.iloc[:1])
    assert n_calls == [10, 2, 1]
    assert predictor.n_misses == 1


def test_prediction_model(
    iris_classifier: RandomForestClassifierDF, linear_predictor: FunctionPrediction
) -> None:
    assert isinstance(prediction_model(iris_classifier), LearnerPrediction)
    assert isinstance(prediction_model(lambda df: df.a), FunctionPrediction)
    assert prediction_model(linear_predictor) is linear_predictor

    learner_prediction = prediction_model(iris_classifier, class_="setosa")
    assert learner_prediction.class_ == "setosa"

    with pytest.raises(TypeError):
        prediction_model(42)
