import numpy as np
import pytest

from qnflow.detector import Detector
from qnflow.eventclasses import EventClassVariable, EventClassVariablesSet


# variable vector layout used throughout the tests: [centrality]
CENTRAL    = [25.0]   # event class bin 0
PERIPHERAL = [75.0]   # event class bin 1


@pytest.fixture
def event_classes():
    return EventClassVariablesSet([EventClassVariable(0, 'Centrality', [0.0, 50.0, 100.0])])


@pytest.fixture
def make_configuration(event_classes):
    """Factory: configuration on its own detector."""
    counter = {'id': 0}

    def _make(name='TPC', harmonics=(1, 2)):
        det = Detector(f'{name}_det', counter['id'])
        counter['id'] += 1
        return det.new_configuration(name, event_classes, harmonics=harmonics)

    return _make


@pytest.fixture
def setup_configuration():
    """Factory: run the set-up protocol of a standalone configuration."""

    def _setup(configuration, input_store=None):
        output = {}
        configuration.reset_states()
        configuration.create_support_data_structures()
        configuration.create_support_histograms(output)
        configuration.attach_correction_inputs(input_store)
        configuration.after_inputs_attach_actions()
        return output

    return _setup


def set_plain(configuration, components, good=True):
    """Load the plain vector of a configuration: {harmonic: (qx, qy)}."""
    configuration.clear_configuration()
    for h, (qx, qy) in components.items():
        configuration.plain_vector.set(h, qx, qy)
    configuration.plain_vector.n = 1.0
    configuration.plain_vector.set_good(good, force=True)


@pytest.fixture
def plain():
    return set_plain


@pytest.fixture
def rng():
    return np.random.default_rng(12345)
