"""
Drawing styles for the results of interpretability experiments.
"""

import logging
from abc import ABCMeta, abstractmethod
from typing import Any, Mapping, Optional, Sequence

import numpy as np

from pytools.api import AllTracker, inheritdoc
from pytools.text import format_table
from pytools.viz import DrawingStyle, MatplotStyle, TextStyle

log = logging.getLogger(__name__)

__all__ = [
    "ExplanationStyle",
    "ExplanationMatplotStyle",
    "ExplanationReportStyle",
]


#
# Ensure all symbols introduced below are included in __all__
#

__tracker = AllTracker(globals())


#
# Class definitions
#


class ExplanationStyle(DrawingStyle, metaclass=ABCMeta):
    """
    Base class of styles used by the drawers in :mod:`iml.viz`.
    """

    @abstractmethod
    def draw_bars(
        self,
        labels: Sequence[str],
        values: Sequence[float],
        lower_bounds: Optional[Sequence[float]],
        upper_bounds: Optional[Sequence[float]],
        value_label: str,
    ) -> None:
        """
        Draw one horizontal bar per label, top to bottom.

        :param labels: the labels of the bars
        :param values: the lengths of the bars
        :param lower_bounds: optional lower ends of a range around each value
        :param upper_bounds: optional upper ends of a range around each value
        :param value_label: the label of the value axis
        """
        pass

    @abstractmethod
    def draw_curves(
        self,
        x_values: Sequence[Any],
        curves: Mapping[str, Sequence[float]],
        highlights: Mapping[str, Sequence[float]],
        x_label: str,
        y_label: str,
        is_categorical: bool,
    ) -> None:
        """
        Draw curves across a common sequence of x values.

        :param x_values: the x values shared by all curves
        :param curves: the curves to draw as a background, by label
        :param highlights: the curves to draw in the foreground, by label
        :param x_label: the label of the x axis
        :param y_label: the label of the y axis
        :param is_categorical: ``True`` if the x values are categories,
            ``False`` if they are numbers
        """
        pass

    @abstractmethod
    def draw_groups(
        self, groups: Mapping[str, Sequence[float]], value_label: str
    ) -> None:
        """
        Draw the distribution of values in each group.

        :param groups: the values of each group, by group label
        :param value_label: the label of the value axis
        """
        pass


@inheritdoc(match="[see superclass]")
class ExplanationMatplotStyle(MatplotStyle, ExplanationStyle):
    """
    `matplotlib` style for explanation charts.

    Bars are drawn horizontally, with error bars for ranges; background curves are
    drawn as thin translucent lines; groups are drawn as horizontal box plots.
    """

    # sizing constants
    __HEIGHT_BARS = 0.8
    __ALPHA_BACKGROUND = 0.3

    def draw_bars(
        self,
        labels: Sequence[str],
        values: Sequence[float],
        lower_bounds: Optional[Sequence[float]],
        upper_bounds: Optional[Sequence[float]],
        value_label: str,
    ) -> None:
        """[see superclass]"""
        ax = self.ax
        y = np.arange(len(labels))

        if lower_bounds is not None and upper_bounds is not None:
            x_err = np.abs(
                np.array([values, values]) - np.array([lower_bounds, upper_bounds])
            )
        else:
            x_err = None

        ax.barh(
            y=y,
            width=values,
            height=ExplanationMatplotStyle.__HEIGHT_BARS,
            xerr=x_err,
            color=self.colors.fill_1,
            ecolor=self.colors.accent_3,
        )
        ax.axvline(x=0, linewidth=0.5, color=self.colors.foreground)

        ax.set_yticks(y)
        ax.set_yticklabels(labels)
        # first label at the top
        ax.invert_yaxis()
        ax.set_xlabel(value_label)

        self._hide_spines()

    def draw_curves(
        self,
        x_values: Sequence[Any],
        curves: Mapping[str, Sequence[float]],
        highlights: Mapping[str, Sequence[float]],
        x_label: str,
        y_label: str,
        is_categorical: bool,
    ) -> None:
        """[see superclass]"""
        ax = self.ax
        x = range(len(x_values)) if is_categorical else x_values

        for values in curves.values():
            ax.plot(
                x,
                values,
                color=self.colors.accent_3,
                linewidth=0.5,
                alpha=ExplanationMatplotStyle.__ALPHA_BACKGROUND,
            )

        for label, values in highlights.items():
            ax.plot(x, values, linewidth=2, label=label)

        if len(highlights) > 1:
            ax.legend()

        if is_categorical:
            ax.set_xticks(x)
            ax.set_xticklabels(labels=x_values)
            ax.tick_params(axis="x", labelrotation=45)

        ax.set_xlabel(x_label)
        ax.set_ylabel(y_label)

        self._hide_spines()

    def draw_groups(
        self, groups: Mapping[str, Sequence[float]], value_label: str
    ) -> None:
        """[see superclass]"""
        ax = self.ax
        ax.boxplot(list(groups.values()), vert=False)
        ax.set_yticklabels(list(groups.keys()))
        ax.invert_yaxis()
        ax.set_xlabel(value_label)

        self._hide_spines()

    def _hide_spines(self) -> None:
        for pos in ["top", "right"]:
            self.ax.spines[pos].set_visible(False)


@inheritdoc(match="[see superclass]")
class ExplanationReportStyle(ExplanationStyle, TextStyle):
    """
    Renders the results of interpretability experiments as text reports.
    """

    # general format with sufficient space for potential sign and "e" notation
    __NUM_PRECISION = 3
    __NUM_WIDTH = __NUM_PRECISION + 6
    __NUM_FORMAT = f"> {__NUM_WIDTH}.{__NUM_PRECISION}g"

    # table headings
    __HEADING_LOWER = "Lower"
    __HEADING_UPPER = "Upper"
    __HEADING_GROUP = "Group"
    __HEADING_COUNT = "Count"
    __HEADING_MEAN = "Mean"
    __HEADING_MIN = "Min"
    __HEADING_MAX = "Max"

    def draw_bars(
        self,
        labels: Sequence[str],
        values: Sequence[float],
        lower_bounds: Optional[Sequence[float]],
        upper_bounds: Optional[Sequence[float]],
        value_label: str,
    ) -> None:
        """[see superclass]"""
        num_format = ExplanationReportStyle.__NUM_FORMAT
        has_bounds = lower_bounds is not None and upper_bounds is not None

        headings = ["", value_label]
        columns = [list(map(str, labels)), values]
        if has_bounds:
            headings += [
                ExplanationReportStyle.__HEADING_LOWER,
                ExplanationReportStyle.__HEADING_UPPER,
            ]
            columns += [lower_bounds, upper_bounds]

        self.out.write("\n")
        self.out.write(
            format_table(
                headings=headings,
                data=list(zip(*columns)),
                formats=["s", *([num_format] * (len(headings) - 1))],
                alignment=["<", *([">"] * (len(headings) - 1))],
            )
        )

    def draw_curves(
        self,
        x_values: Sequence[Any],
        curves: Mapping[str, Sequence[float]],
        highlights: Mapping[str, Sequence[float]],
        x_label: str,
        y_label: str,
        is_categorical: bool,
    ) -> None:
        """[see superclass]"""
        if highlights:
            # background curves are too many to tabulate
            tabulated = highlights
            if curves:
                self.out.write(f"\n{len(curves)} individual curves, averaged:\n")
        else:
            tabulated = curves

        self.out.write(f"\n{y_label}:\n\n")
        self.out.write(
            format_table(
                headings=[x_label, *map(str, tabulated.keys())],
                data=list(
                    zip(
                        map(str, x_values) if is_categorical else x_values,
                        *tabulated.values(),
                    )
                ),
                formats=[
                    "s" if is_categorical else "g",
                    *([ExplanationReportStyle.__NUM_FORMAT] * len(tabulated)),
                ],
                alignment=["<", *([">"] * len(tabulated))],
            )
        )

    def draw_groups(
        self, groups: Mapping[str, Sequence[float]], value_label: str
    ) -> None:
        """[see superclass]"""
        num_format = ExplanationReportStyle.__NUM_FORMAT

        self.out.write(f"\n{value_label}:\n\n")
        self.out.write(
            format_table(
                headings=[
                    ExplanationReportStyle.__HEADING_GROUP,
                    ExplanationReportStyle.__HEADING_COUNT,
                    ExplanationReportStyle.__HEADING_MEAN,
                    ExplanationReportStyle.__HEADING_MIN,
                    ExplanationReportStyle.__HEADING_MAX,
                ],
                data=[
                    (
                        # one line per group in a table
                        label.replace("\n", " "),
                        len(values),
                        np.mean(values),
                        np.min(values),
                        np.max(values),
                    )
                    for label, values in groups.items()
                ],
                formats=["s", "d", num_format, num_format, num_format],
                alignment=["<", ">", ">", ">", ">"],
            )
        )

    def finalize_drawing(self, **kwargs: Any) -> None:
        """[see superclass]"""
        super().finalize_drawing(**kwargs)
        self.out.write("\n")


__tracker.validate()
