"""
Drawers for the results of interpretability experiments.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Type, Union, cast

import pandas as pd

from pytools.api import AllTracker, inheritdoc
from pytools.viz import Drawer

from ..data import DataSampler
from ..experiment import (
    FeatureImportance,
    IndividualConditionalExpectation,
    Lime,
    PartialDependence,
    Shapley,
    TreeSurrogate,
)
from ..experiment.base import Experiment
from ._style import ExplanationMatplotStyle, ExplanationReportStyle, ExplanationStyle

log = logging.getLogger(__name__)

__all__ = [
    "ImportanceDrawer",
    "EffectDrawer",
    "SurrogateDrawer",
    "AttributionDrawer",
]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


@inheritdoc(match="[see superclass]")
class ImportanceDrawer(Drawer[FeatureImportance, ExplanationStyle]):
    """
    Draws the permutation importance of features, as calculated by a
    :class:`.FeatureImportance` experiment.

    Features are shown in descending order of importance; if the experiment has
    repeated the permutations, the bars show the range between the 5% and 95%
    quantiles of importance across repetitions.
    """

    def draw(self, data: FeatureImportance, *, title: Optional[str] = None) -> None:
        """
        Draw the feature importance chart.

        :param data: the feature importance experiment to draw, after it has been run
        :param title: the title of the chart (default: ``"Feature importance"``)
        """
        if title is None:
            title = "Feature importance"
        super().draw(data=data, title=title)

    @classmethod
    def get_style_classes(cls) -> Iterable[Type[ExplanationStyle]]:
        """[see superclass]"""
        return [
            ExplanationMatplotStyle,
            ExplanationReportStyle,
        ]

    def _draw(self, data: FeatureImportance) -> None:
        results = data.results_

        if FeatureImportance.COL_IMPORTANCE_05 in results.columns:
            lower_bounds = results.loc[:, FeatureImportance.COL_IMPORTANCE_05].values
            upper_bounds = results.loc[:, FeatureImportance.COL_IMPORTANCE_95].values
        else:
            lower_bounds = upper_bounds = None

        self.style.draw_bars(
            labels=results.index.to_list(),
            values=results.loc[:, FeatureImportance.COL_IMPORTANCE].values,
            lower_bounds=lower_bounds,
            upper_bounds=upper_bounds,
            value_label=f"importance ({data.compare})",
        )


@inheritdoc(match="[see superclass]")
class EffectDrawer(
    Drawer[
        Union[PartialDependence, IndividualConditionalExpectation], ExplanationStyle
    ]
):
    """
    Draws the effect of one or two features on the predictions of the model, as
    calculated by a :class:`.PartialDependence` or an
    :class:`.IndividualConditionalExpectation` experiment.

    Partial dependence is drawn as one curve per output; partial dependence on two
    features is drawn as one curve per value of the second feature.
    Individual conditional expectation curves are drawn in the background, with
    their average in the foreground.
    """

    def draw(
        self,
        data: Union[PartialDependence, IndividualConditionalExpectation],
        *,
        title: Optional[str] = None,
    ) -> None:
        """
        Draw the feature effect chart.

        :param data: the experiment to draw, after it has been run
        :param title: the title of the chart (default: derived from the type of the
            experiment and the names of the features)
        """
        if title is None:
            kind = (
                "ICE"
                if isinstance(data, IndividualConditionalExpectation)
                else "Partial dependence"
            )
            title = f"{kind}: {', '.join(data.features)}"
        super().draw(data=data, title=title)

    @classmethod
    def get_style_classes(cls) -> Iterable[Type[ExplanationStyle]]:
        """[see superclass]"""
        return [
            ExplanationMatplotStyle,
            ExplanationReportStyle,
        ]

    def _draw(
        self, data: Union[PartialDependence, IndividualConditionalExpectation]
    ) -> None:
        results = data.results_
        feature = data.features[0]
        x_values = data.grid_.loc[:, feature].drop_duplicates().to_list()
        is_categorical = (
            data.sampler.feature_types.loc[feature] == DataSampler.TYPE_CATEGORICAL
        )
        multi_output = results.loc[:, Experiment.COL_OUTPUT].nunique() > 1

        curves: Dict[str, List[float]] = {}
        if isinstance(data, IndividualConditionalExpectation):
            for (observation, output), curve in results.groupby(
                [IndividualConditionalExpectation.IDX_OBSERVATION, Experiment.COL_OUTPUT],
                sort=False,
            ):
                label = f"{observation}:{output}" if multi_output else f"{observation}"
                curves[label] = self._along_grid(curve, feature, x_values)
            averages = data.partial_dependence()
            id_columns = [Experiment.COL_OUTPUT]
        else:
            averages = results
            id_columns = [*data.features[1:], Experiment.COL_OUTPUT]

        highlights: Dict[str, List[float]] = {}
        for key, curve in averages.groupby(id_columns, sort=False):
            if not isinstance(key, tuple):
                key = (key,)
            highlights[self._curve_label(id_columns, key, multi_output)] = (
                self._along_grid(curve, feature, x_values)
            )

        self.style.draw_curves(
            x_values=x_values,
            curves=curves,
            highlights=highlights,
            x_label=feature,
            y_label=Experiment.COL_Y_HAT,
            is_categorical=is_categorical,
        )

    @staticmethod
    def _along_grid(
        curve: pd.DataFrame, feature: str, x_values: Sequence
    ) -> List[float]:
        return (
            curve.set_index(feature)
            .loc[:, Experiment.COL_Y_HAT]
            .reindex(x_values)
            .to_list()
        )

    @staticmethod
    def _curve_label(id_columns: List[str], key: tuple, multi_output: bool) -> str:
        # the output is only named if there are several
        parts = [
            f"{name}={value}" if name != Experiment.COL_OUTPUT else str(value)
            for name, value in zip(id_columns, key)
            if name != Experiment.COL_OUTPUT or multi_output
        ]
        return ", ".join(parts) if parts else Experiment.COL_Y_HAT


@inheritdoc(match="[see superclass]")
class SurrogateDrawer(Drawer[TreeSurrogate, ExplanationStyle]):
    """
    Draws the distribution of the model's predictions in each leaf of a
    :class:`.TreeSurrogate`, labelled with the path of split rules leading to the
    leaf.
    """

    #: The output to draw; ``None`` to draw the first output.
    output: Optional[str]

    def __init__(
        self,
        style: Optional[Union[ExplanationStyle, str]] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        :param output: the output to draw, for surrogates of models with several
            outputs (default: the first output)
        """
        super().__init__(style=style)
        self.output = output

    __init__.__doc__ = cast(str, Drawer.__init__.__doc__) + cast(str, __init__.__doc__)

    def draw(self, data: TreeSurrogate, *, title: Optional[str] = None) -> None:
        """
        Draw the surrogate chart.

        :param data: the tree surrogate experiment to draw, after it has been run
        :param title: the title of the chart (default: includes the R² of the
            surrogate)
        """
        if title is None:
            if self.output is None:
                r_squared = data.r_squared_.iloc[0]
            else:
                r_squared = data.r_squared_.loc[self.output]
            title = f"Tree surrogate (R² = {r_squared:.3f})"
        super().draw(data=data, title=title)

    @classmethod
    def get_style_classes(cls) -> Iterable[Type[ExplanationStyle]]:
        """[see superclass]"""
        return [
            ExplanationMatplotStyle,
            ExplanationReportStyle,
        ]

    def _draw(self, data: TreeSurrogate) -> None:
        results = data.results_
        output_names = data.output_names

        if len(output_names) == 1:
            if self.output is not None and self.output != output_names[0]:
                raise KeyError(f"arg output={self.output!r} is not a model output")
            column = Experiment.COL_Y_HAT
            output = output_names[0]
        else:
            output = output_names[0] if self.output is None else self.output
            if output not in output_names:
                raise KeyError(f"arg output={output!r} is not a model output")
            column = f"{Experiment.COL_Y_HAT}:{output}"

        groups = {
            (path or "(all)"): values.to_list()
            for path, values in results.groupby(TreeSurrogate.COL_PATH, sort=True)[
                column
            ]
        }

        self.style.draw_groups(groups=groups, value_label=f"{column}")


@inheritdoc(match="[see superclass]")
class AttributionDrawer(Drawer[Union[Lime, Shapley], ExplanationStyle]):
    """
    Draws the attribution of a single prediction to features, as calculated by a
    :class:`.Lime` experiment (the effect of each selected feature) or a
    :class:`.Shapley` experiment (the Shapley value of each feature, with its
    confidence interval).
    """

    def draw(self, data: Union[Lime, Shapley], *, title: Optional[str] = None) -> None:
        """
        Draw the attribution chart.

        :param data: the experiment to draw, after it has been run
        :param title: the title of the chart (default: derived from the type of the
            experiment)
        """
        if title is None:
            title = "LIME" if isinstance(data, Lime) else "Shapley values"
        super().draw(data=data, title=title)

    @classmethod
    def get_style_classes(cls) -> Iterable[Type[ExplanationStyle]]:
        """[see superclass]"""
        return [
            ExplanationMatplotStyle,
            ExplanationReportStyle,
        ]

    def _draw(self, data: Union[Lime, Shapley]) -> None:
        results = data.results_
        multi_output = results.loc[:, Experiment.COL_OUTPUT].nunique() > 1

        labels = results.loc[:, Shapley.COL_FEATURE_VALUE].astype(str)
        if multi_output:
            labels = labels + " (" + results.loc[:, Experiment.COL_OUTPUT].astype(
                str
            ) + ")"

        if isinstance(data, Lime):
            values = results.loc[:, Lime.COL_EFFECT].values
            lower_bounds = upper_bounds = None
            value_label = Lime.COL_EFFECT
        else:
            values = results.loc[:, Shapley.COL_PHI].values
            lower_bounds = results.loc[:, Shapley.COL_LOWER_BOUND].values
            upper_bounds = results.loc[:, Shapley.COL_UPPER_BOUND].values
            value_label = Shapley.COL_PHI

        self.style.draw_bars(
            labels=labels.to_list(),
            values=values,
            lower_bounds=lower_bounds,
            upper_bounds=upper_bounds,
            value_label=value_label,
        )


__tracker.validate()
