"""
Interpretability experiments.

Each experiment explains a model by observing how its predictions change when its
inputs are changed:

- :class:`.FeatureImportance`: the increase of the model's loss after permuting a
  feature
- :class:`.PartialDependence` and :class:`.IndividualConditionalExpectation`: the
  predictions of the model across a grid of feature values
- :class:`.TreeSurrogate`: a shallow decision tree approximating the model
- :class:`.Lime`: a sparse local linear model explaining a single prediction
- :class:`.Shapley`: the contributions of the features to a single prediction
"""

from ._effect import *
from ._importance import *
from ._lime import *
from ._shapley import *
from ._surrogate import *
