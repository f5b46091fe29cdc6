"""
qnflow
======
Flow vector (Qn vector) corrections for non-uniform detector acceptance.

Per event, each detector configuration builds a plain Qn vector from its
data vectors and runs it through an ordered chain of correction steps
(recentering and width equalisation, alignment, twist and rescale). Each
step calibrates itself from the statistics it collects in one pass and
applies the correction in the next one.
"""

from qnflow.errors import ConfigurationError
from qnflow.qnvector import QnVector
from qnflow.eventclasses import EventClassVariable, EventClassVariablesSet
from qnflow.histograms import (ChannelProfile, ProfileComponents, CorrelationComponents,
                               HistogramCounts)
from qnflow.steps import CorrectionStep, StepState
from qnflow.recentering import Recentering
from qnflow.alignment import Alignment
from qnflow.twist_rescale import TwistAndRescale
from qnflow.detector import Detector, DetectorConfiguration
from qnflow.manager import CorrectionsManager

__version__ = '0.1.0'
