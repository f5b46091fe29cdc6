"""Multi-pass workflow through the corrections manager."""
import numpy as np
import pytest

from qnflow.manager import CorrectionsManager
from qnflow.recentering import Recentering
from qnflow.alignment import Alignment
from qnflow.steps import StepState
from qnflow.errors import ConfigurationError

from conftest import CENTRAL, PERIPHERAL


def make_network(event_classes):
    manager = CorrectionsManager()
    conf_a = manager.new_detector('detA', 0).new_configuration('A', event_classes, harmonics=[1, 2])
    conf_b = manager.new_detector('detB', 1).new_configuration('B', event_classes, harmonics=[1, 2])
    conf_a.add_correction_step(Recentering())
    conf_a.add_correction_step(Alignment(1, 'B'))
    conf_b.add_correction_step(Recentering())
    return manager, conf_a, conf_b


def run_pass(manager, n_events=300, psi=0.4, seed=7):
    """Flow-like events: A has a lopsided acceptance and is turned by psi w.r.t. B."""
    rng = np.random.default_rng(seed)
    for _ in range(n_events):
        plane = rng.uniform(0.0, 2 * np.pi)
        phi   = plane + rng.vonmises(0.0, 1.0, size=20)
        keep  = np.cos(phi) > -0.5
        manager.clear_event()
        manager.add_data_vectors('detA', phi[keep] + psi)
        manager.add_data_vectors('detB', phi)
        manager.process_event(CENTRAL if rng.uniform() < 0.5 else PERIPHERAL)


def states(conf):
    return [s.state for s in conf.steps]


class TestMultiPass:
    def test_states_across_passes(self, event_classes):
        manager, conf_a, conf_b = make_network(event_classes)

        assert not manager.initialize(None)
        assert states(conf_a) == [StepState.CALIBRATING, StepState.PASSIVE]
        assert states(conf_b) == [StepState.CALIBRATING]
        run_pass(manager)
        first = manager.calibration_output

        assert manager.initialize(first)
        assert states(conf_a) == [StepState.APPLY_COLLECT, StepState.CALIBRATING]
        assert states(conf_b) == [StepState.APPLY_COLLECT]
        run_pass(manager)
        second = manager.calibration_output
        assert second['QnQn AxB'].total_entries() > 0

        manager.initialize(second)
        assert states(conf_a) == [StepState.APPLY_COLLECT, StepState.APPLY_COLLECT]
        run_pass(manager)
        assert conf_a.corrected_vector.name == 'align'

    def test_recentering_centres_the_vectors(self, event_classes):
        manager, conf_a, _ = make_network(event_classes)
        manager.initialize(None)
        run_pass(manager)
        raw = manager.calibration_output['Qn A']
        assert abs(raw.content('X', 0, 1)) > 0.5

        manager.initialize(manager.calibration_output, qa=True)
        run_pass(manager)
        qa = manager.qa_output['QA rec A']
        for ibin in (0, 1):
            np.testing.assert_allclose(qa.content('X', ibin, 1), 0.0, atol=1e-9)
            np.testing.assert_allclose(qa.content('Y', ibin, 1), 0.0, atol=1e-9)

    def test_stop_collecting(self, event_classes):
        manager, conf_a, _ = make_network(event_classes)
        manager.initialize(None)
        run_pass(manager, n_events=20)
        manager.initialize(manager.calibration_output)
        assert manager.stop_collecting()
        assert states(conf_a)[0] == StepState.APPLYING
        run_pass(manager, n_events=20)
        assert manager.calibration_output['Qn A'].total_entries() == 0

    def test_report(self, event_classes, capsys):
        manager, _, _ = make_network(event_classes)
        manager.initialize(None)
        run_pass(manager, n_events=5)
        report = manager.report()
        assert report['A'] == {'steps': ['Recentering and width equalization', 'Alignment'],
                               'calibrating': ['Recentering and width equalization'],
                               'applying': []}
        assert report['B']['calibrating'] == ['Recentering and width equalization']
        assert 'passive' in capsys.readouterr().out

    def test_calibration_file_round_trip(self, event_classes, tmp_path):
        manager, conf_a, _ = make_network(event_classes)
        manager.initialize(None)
        run_pass(manager, n_events=50)
        path = str(tmp_path / 'pass_1.h5')
        manager.save_calibration(path, pass_label='pass 1')
        saved = manager.calibration_output['Qn A']

        assert manager.initialize(path)
        assert states(conf_a)[0] == StepState.APPLY_COLLECT
        loaded = manager.input_store['Qn A']
        assert loaded is not saved
        np.testing.assert_array_equal(loaded.sum, saved.sum)
        np.testing.assert_array_equal(loaded.entries, saved.entries)


class TestRegistry:
    def test_detector_clash(self):
        manager = CorrectionsManager()
        manager.new_detector('TPC', 0)
        with pytest.raises(ConfigurationError):
            manager.new_detector('TPC', 1)
        with pytest.raises(ConfigurationError):
            manager.new_detector('V0', 0)

    def test_duplicate_configuration_names(self, event_classes):
        manager = CorrectionsManager()
        manager.new_detector('TPC', 0).new_configuration('same', event_classes)
        manager.new_detector('V0', 1).new_configuration('same', event_classes)
        with pytest.raises(ConfigurationError):
            manager.initialize(None)

    def test_event_before_initialize(self):
        with pytest.raises(ConfigurationError):
            CorrectionsManager().process_event(CENTRAL)

    def test_unknown_detector(self):
        with pytest.raises(KeyError):
            CorrectionsManager().add_data_vectors('nowhere', [0.1])

    def test_lookup(self, event_classes):
        manager = CorrectionsManager()
        det  = manager.new_detector('TPC', 0)
        conf = det.new_configuration('TPC_a', event_classes)
        assert manager.find_detector('TPC') is det
        assert manager.find_configuration('TPC_a') is conf
        assert manager.find_configuration('nope') is None
