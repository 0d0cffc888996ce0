import logging

import numpy as np
import pandas as pd
import pytest
from sklearn import datasets

from sklearndf.classification import RandomForestClassifierDF
from sklearndf.regression import RandomForestRegressorDF

from iml.data import DataSampler
from iml.prediction import FunctionPrediction, LearnerPrediction

logging.basicConfig(level=logging.DEBUG)
log = logging.getLogger(__name__)

# disable 3rd party debugging messages
logging.getLogger("matplotlib").setLevel(logging.WARNING)

# configure pandas text output

# get display width from terminal
pd.set_option("display.width", None)
# 3 digits precision for easier readability
pd.set_option("display.precision", 3)

N_LINEAR_OBSERVATIONS = 200


@pytest.fixture  # type: ignore
def iris_target_name() -> str:
    return "species"


@pytest.fixture  # type: ignore
def iris_df(iris_target_name: str) -> pd.DataFrame:
    #  load iris data set, with the species names as the target
    iris = datasets.load_iris(as_frame=True)
    return iris.data.assign(
        **{iris_target_name: iris.target_names[iris.target.values]}
    )


@pytest.fixture  # type: ignore
def iris_sampler(iris_df: pd.DataFrame, iris_target_name: str) -> DataSampler:
    return DataSampler(iris_df, target=iris_target_name)


@pytest.fixture  # type: ignore
def iris_classifier(iris_sampler: DataSampler) -> RandomForestClassifierDF:
    return RandomForestClassifierDF(n_estimators=20, random_state=42).fit(
        X=iris_sampler.features, y=iris_sampler.target
    )


@pytest.fixture  # type: ignore
def diabetes_target() -> str:
    return "disease_progression"


@pytest.fixture  # type: ignore
def diabetes_df(diabetes_target: str) -> pd.DataFrame:
    diabetes = datasets.load_diabetes(as_frame=True)
    return diabetes.data.assign(**{diabetes_target: diabetes.target.values})


@pytest.fixture  # type: ignore
def diabetes_sampler(diabetes_df: pd.DataFrame, diabetes_target: str) -> DataSampler:
    return DataSampler(diabetes_df, target=diabetes_target)


@pytest.fixture  # type: ignore
def diabetes_regressor(diabetes_sampler: DataSampler) -> RandomForestRegressorDF:
    return RandomForestRegressorDF(
        n_estimators=20, max_depth=4, random_state=42
    ).fit(X=diabetes_sampler.features, y=diabetes_sampler.target)


@pytest.fixture  # type: ignore
def diabetes_predictor(diabetes_regressor: RandomForestRegressorDF) -> LearnerPrediction:
    return LearnerPrediction(diabetes_regressor)


@pytest.fixture  # type: ignore
def linear_df() -> pd.DataFrame:
    # three uniform features and a target depending linearly on the first two
    rng = np.random.RandomState(42)
    x = pd.DataFrame(
        rng.uniform(0.0, 10.0, size=(N_LINEAR_OBSERVATIONS, 3)), columns=["a", "b", "c"]
    )
    return x.assign(y=2.0 * x.a - x.b + rng.normal(0.0, 0.5, N_LINEAR_OBSERVATIONS))


@pytest.fixture  # type: ignore
def linear_sampler(linear_df: pd.DataFrame) -> DataSampler:
    return DataSampler(linear_df, target="y")


@pytest.fixture  # type: ignore
def linear_predictor() -> FunctionPrediction:
    # the exact linear function underlying the linear data
    return FunctionPrediction(lambda x: 2.0 * x.loc[:, "a"] - x.loc[:, "b"])


@pytest.fixture  # type: ignore
def mixed_df() -> pd.DataFrame:
    # one numerical and one categorical feature
    rng = np.random.RandomState(7)
    n = 120
    return pd.DataFrame(
        dict(
            x=rng.uniform(0.0, 1.0, n),
            colour=pd.Categorical(rng.choice(["red", "green", "blue"], n)),
        )
    )


@pytest.fixture  # type: ignore
def mixed_predictor() -> FunctionPrediction:
    # adds 10 for red observations
    return FunctionPrediction(
        lambda x: x.loc[:, "x"] + 10.0 * (x.loc[:, "colour"] == "red").astype(float),
        output_names="score",
    )
