import numpy as np
import pytest

from qnflow.manager import CorrectionsManager
from qnflow.alignment import Alignment
from qnflow.recentering import Recentering
from qnflow.steps import StepState
from qnflow.errors import ConfigurationError

from conftest import CENTRAL, PERIPHERAL


N_EVENTS = 200


def build_manager(event_classes, step, harmonics_a=(1, 2), harmonics_b=(1,), extra_a=()):
    manager = CorrectionsManager()
    det_a = manager.new_detector('detA', 0)
    det_b = manager.new_detector('detB', 1)
    conf_a = det_a.new_configuration('A', event_classes, harmonics=harmonics_a)
    conf_b = det_b.new_configuration('B', event_classes, harmonics=harmonics_b)
    for s in extra_a:
        conf_a.add_correction_step(s)
    conf_a.add_correction_step(step)
    return manager, conf_a, conf_b


def run_events(manager, psi, angles, variables=CENTRAL):
    """Detector A sees every particle of detector B turned by psi."""
    for a in angles:
        manager.clear_event()
        manager.add_data_vectors('detA', [a + psi])
        manager.add_data_vectors('detB', [a])
        manager.process_event(variables)


ANGLES = np.linspace(0.0, 2 * np.pi, N_EVENTS, endpoint=False)


class TestCalibration:
    def test_correlations_collected(self, event_classes):
        step = Alignment(1, 'B')
        manager, conf_a, _ = build_manager(event_classes, step)
        manager.initialize(None)
        assert step.state == StepState.CALIBRATING
        run_events(manager, 0.3, ANGLES)

        hist = manager.calibration_output['QnQn AxB']
        c = hist.correlations(0)
        np.testing.assert_allclose(c['XY'] - c['YX'], -np.sin(0.3), atol=1e-12)
        np.testing.assert_allclose(c['XX'] + c['YY'], np.cos(0.3), atol=1e-12)
        assert hist.bin_entries(0) == N_EVENTS

    def test_bad_reference_not_collected(self, event_classes):
        step = Alignment(1, 'B')
        manager, _, _ = build_manager(event_classes, step)
        manager.initialize(None)
        manager.clear_event()
        manager.add_data_vectors('detA', [0.1, 0.2])
        manager.process_event(CENTRAL)
        assert manager.calibration_output['QnQn AxB'].total_entries() == 0


class TestApply:
    def test_recovers_rotation(self, event_classes):
        psi  = 0.3
        step = Alignment(1, 'B')
        manager, conf_a, _ = build_manager(event_classes, step)
        manager.initialize(None)
        run_events(manager, psi, ANGLES)

        manager.initialize(manager.calibration_output)
        assert step.state == StepState.APPLY_COLLECT

        manager.clear_event()
        manager.add_data_vectors('detA', [0.4 + psi])
        manager.add_data_vectors('detB', [0.4])
        manager.process_event(CENTRAL)

        qn = conf_a.corrected_vector
        assert qn.name == 'align'
        np.testing.assert_allclose([qn.qx(1), qn.qy(1)], [np.cos(0.4), np.sin(0.4)], atol=1e-9)
        np.testing.assert_allclose([qn.qx(2), qn.qy(2)], [np.cos(0.8), np.sin(0.8)], atol=1e-9)

    def test_not_significant_untouched(self, event_classes):
        step = Alignment(1, 'B')
        # identical vectors on both sides: XY and YX cancel exactly
        manager, conf_a, _ = build_manager(event_classes, step, harmonics_b=(1, 2))
        manager.initialize(None)
        run_events(manager, 0.0, ANGLES)

        manager.initialize(manager.calibration_output)
        manager.clear_event()
        manager.add_data_vectors('detA', [1.0])
        manager.add_data_vectors('detB', [1.0])
        manager.process_event(CENTRAL)
        assert np.array_equal(conf_a.corrected_vector.components()[1],
                              conf_a.plain_vector.components()[1])

    def test_bad_quality_passes_through(self, event_classes, plain):
        step = Alignment(1, 'B')
        manager, conf_a, _ = build_manager(event_classes, step)
        manager.initialize(None)
        run_events(manager, 0.3, ANGLES)

        manager.initialize(manager.calibration_output)
        assert step.state == StepState.APPLY_COLLECT
        plain(conf_a, {1: (0.6, -0.2), 2: (0.1, 0.4)}, good=False)
        assert conf_a.process_event(CENTRAL) == [True]

        qn = conf_a.corrected_vector
        assert qn.name == 'align'
        assert not qn.is_good_quality()
        assert (qn.qx(1), qn.qy(1), qn.qx(2), qn.qy(2)) == (0.6, -0.2, 0.1, 0.4)

    def test_non_validated_bin_counted(self, event_classes):
        step = Alignment(1, 'B')
        manager, conf_a, _ = build_manager(event_classes, step)
        manager.initialize(None)
        run_events(manager, 0.3, ANGLES)

        manager.initialize(manager.calibration_output, nve_qa=True)
        manager.clear_event()
        manager.add_data_vectors('detA', [1.0])
        manager.add_data_vectors('detB', [1.0])
        manager.process_event(PERIPHERAL)

        assert conf_a.corrected_vector.qx(1) == conf_a.plain_vector.qx(1)
        np.testing.assert_array_equal(manager.qa_output['Align NvE A'].counts(), [0.0, 1.0])


class TestSetUp:
    def test_reference_object(self, event_classes):
        step = Alignment(1)
        manager, conf_a, conf_b = build_manager(event_classes, step)
        step.set_reference(conf_b)
        manager.initialize(None)
        assert step.references() == [conf_b]

    def test_harmonic_activated_on_both(self, event_classes):
        step = Alignment(3, 'B')
        manager, conf_a, conf_b = build_manager(event_classes, step)
        manager.initialize(None)
        assert 3 in conf_a.harmonics
        assert 3 in conf_b.harmonics
        assert step.corrected_vector.is_active(3)

    def test_references_processed_first(self, event_classes):
        step = Alignment(1, 'B')
        manager, conf_a, conf_b = build_manager(event_classes, step)
        manager.initialize(None)
        assert manager.processing_order == [conf_b, conf_a]

    def test_unresolved_reference(self, event_classes):
        manager, _, _ = build_manager(event_classes, Alignment(1, 'nowhere'))
        with pytest.raises(ConfigurationError):
            manager.initialize(None)

    def test_missing_reference(self, event_classes):
        manager, _, _ = build_manager(event_classes, Alignment(1))
        with pytest.raises(ConfigurationError):
            manager.initialize(None)

    def test_self_reference(self, event_classes):
        manager, _, _ = build_manager(event_classes, Alignment(1, 'A'))
        with pytest.raises(ConfigurationError):
            manager.initialize(None)

    def test_cyclic_reference(self, event_classes):
        manager, _, conf_b = build_manager(event_classes, Alignment(1, 'B'))
        conf_b.add_correction_step(Alignment(1, 'A'))
        with pytest.raises(ConfigurationError):
            manager.initialize(None)


class TestPassive:
    def test_waits_for_recentering(self, event_classes):
        step = Alignment(1, 'B')
        manager, _, _ = build_manager(event_classes, step, extra_a=[Recentering()])
        manager.initialize(None)
        assert step.state == StepState.PASSIVE
        run_events(manager, 0.3, ANGLES[:10])
        assert manager.calibration_output['QnQn AxB'].total_entries() == 0

    def test_waits_for_reference_recentering(self, event_classes):
        step = Alignment(1, 'B')
        manager, _, conf_b = build_manager(event_classes, step)
        conf_b.add_correction_step(Recentering())
        manager.initialize(None)
        assert step.state == StepState.PASSIVE

    def test_calibrates_once_recentering_applied(self, event_classes):
        step = Alignment(1, 'B')
        rec  = Recentering()
        manager, _, _ = build_manager(event_classes, step, extra_a=[rec])
        manager.initialize(None)
        run_events(manager, 0.3, ANGLES)

        manager.initialize(manager.calibration_output)
        assert rec.state == StepState.APPLY_COLLECT
        assert step.state == StepState.CALIBRATING
