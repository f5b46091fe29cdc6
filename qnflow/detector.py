import numpy as np
from logging import info

from qnflow.qnvector import QnVector
from qnflow.errors import ConfigurationError
from qnflow.histograms import ProfileComponents
from qnflow.parameters import (DEFAULT_HARMONICS, DEFAULT_NORMALIZATION, QN_NORMALIZATIONS,
                               PLAIN_VECTOR_NAME, QA_HISTOGRAM_NAME)


# ══════════════════════════════════════════════════════════════════════════════
# Detector configuration: one Qn vector and its chain of correction steps
# ══════════════════════════════════════════════════════════════════════════════

class DetectorConfiguration:
    """
    A detector seen through a concrete selection, target of a Qn vector
    correction chain.

    It owns the plain Qn vector built from the event data vectors and the
    corrected Qn vector, which every applied correction step overwrites in
    turn. There is exactly one current corrected vector per configuration
    per event.

    Parameters
    ----------
    name          : str                    - unique configuration name
    detector      : Detector               - owning detector
    event_classes : EventClassVariablesSet - calibration binning
    harmonics     : sequence of int        - harmonics to compute
    normalization : str                    - plain Qn vector normalisation
    """

    def __init__(self, name, detector, event_classes, harmonics=DEFAULT_HARMONICS,
                 normalization=DEFAULT_NORMALIZATION):
        if normalization not in QN_NORMALIZATIONS:
            raise ConfigurationError(
                f"Unknown Qn normalization '{normalization}' for configuration "
                f"'{name}'. Available: {QN_NORMALIZATIONS}"
            )
        self.name          = name
        self.detector      = detector
        self.event_classes = event_classes
        self.normalization = normalization
        self.manager       = None

        self.plain_vector     = QnVector(PLAIN_VECTOR_NAME, harmonics)
        self.corrected_vector = QnVector(PLAIN_VECTOR_NAME, harmonics)
        self.steps            = []
        self.qa_histograms    = None

        self._phi     = []
        self._weights = []
        self._started = False

    def __repr__(self):
        return (f"DetectorConfiguration({self.name!r}, harmonics={list(self.harmonics)}, "
                f"steps={[s.name for s in self.steps]})")

    # ── harmonics ──────────────────────────────────────────────────────────

    @property
    def harmonics(self):
        return self.plain_vector.harmonics

    def activate_harmonic(self, harmonic):
        """
        Make sure harmonic is computed, on the plain, the corrected and the
        step vectors. Idempotent; only allowed before the first event.
        """
        if self.plain_vector.is_active(harmonic):
            return
        if self._started:
            raise ConfigurationError(
                f"Harmonic {harmonic} requested on '{self.name}' after event "
                f"processing started"
            )
        self.plain_vector.activate_harmonic(harmonic)
        self.corrected_vector.activate_harmonic(harmonic)
        for step in self.steps:
            if step.corrected_vector is not None:
                step.corrected_vector.activate_harmonic(harmonic)
        info(f"Harmonic {harmonic} activated on {self.name}")

    # ── correction steps ───────────────────────────────────────────────────

    def add_correction_step(self, step):
        """Insert step keeping ascending key order; names must be unique."""
        if any(s.name == step.name for s in self.steps):
            raise ConfigurationError(
                f"Correction step '{step.name}' already present in configuration "
                f"'{self.name}'"
            )
        step.set_configuration_owner(self)
        pos = len(self.steps)
        for i, s in enumerate(self.steps):
            if step.before(s):
                pos = i
                break
        self.steps.insert(pos, step)
        return step

    def find_step(self, name):
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def is_correction_step_being_applied(self, name):
        step = self.find_step(name)
        return step is not None and step.is_being_applied()

    def previous_corrected_vector(self, step):
        """
        The Qn vector as it was right before step: the output of the closest
        earlier step being applied, or the plain vector if there is none.
        """
        idx = self.steps.index(step)
        for prev in reversed(self.steps[:idx]):
            if prev.is_being_applied():
                return prev.corrected_vector
        return self.plain_vector

    def update_current_vector(self, qn_vector, change_name=True):
        """Overwrite the current corrected vector with the output of a step."""
        self.corrected_vector.copy_from(qn_vector, change_name=change_name)

    # ── lifecycle fan-out ──────────────────────────────────────────────────

    def attach_manager(self, manager):
        self.manager = manager
        for step in self.steps:
            step.attached_to_manager(manager)

    def reset_states(self):
        self._started = False
        for step in self.steps:
            step.reset_state()

    def create_support_data_structures(self):
        for step in self.steps:
            step.create_support_data_structures()

    def create_support_histograms(self, store):
        result = False
        for step in self.steps:
            result = step.create_support_histograms(store) or result
        return result

    def create_qa_histograms(self, store):
        name = f"{QA_HISTOGRAM_NAME} {PLAIN_VECTOR_NAME} {self.name}"
        self.qa_histograms = ProfileComponents(name, self.event_classes, self.harmonics,
                                               error_mode='mean')
        store[name] = self.qa_histograms
        result = True
        for step in self.steps:
            result = step.create_qa_histograms(store) or result
        return result

    def create_nve_qa_histograms(self, store):
        result = False
        for step in self.steps:
            result = step.create_nve_qa_histograms(store) or result
        return result

    def attach_correction_inputs(self, store):
        result = False
        for step in self.steps:
            result = step.attach_input(store) or result
        return result

    def after_inputs_attach_actions(self):
        for step in self.steps:
            step.after_inputs_attach_actions()

    def stop_collecting(self):
        result = False
        for step in self.steps:
            result = step.stop_collecting() or result
        return result

    def report_on_corrections(self):
        """
        Returns
        -------
        steps, calibrating, applying : list of str - step names in key order
        """
        calib, apply = [], []
        for step in self.steps:
            collecting, applying = step.report_usage()
            if collecting:
                calib.append(step.name)
            if applying:
                apply.append(step.name)
        return [s.name for s in self.steps], calib, apply

    # ── per event ──────────────────────────────────────────────────────────

    def add_data_vectors(self, phi, weights=None):
        """Queue data vectors (azimuthal angles and weights) for this event."""
        phi = np.atleast_1d(np.asarray(phi, dtype=np.float64))
        w   = np.ones_like(phi) if weights is None else np.atleast_1d(np.asarray(weights, dtype=np.float64))
        if w.shape != phi.shape:
            raise ValueError(
                f"phi and weights shapes differ for '{self.name}': {phi.shape} vs {w.shape}"
            )
        self._phi.append(phi)
        self._weights.append(w)

    def build_qn_vector(self):
        """Build the plain Qn vector from the queued data vectors."""
        phi = np.concatenate(self._phi) if self._phi else np.zeros(0)
        w   = np.concatenate(self._weights) if self._weights else np.zeros(0)
        self.plain_vector.build(phi, w, self.normalization)
        return self.plain_vector

    def process_event(self, variables):
        """
        Run the correction chain on the current plain vector.

        The corrected vector starts as a copy of the plain one; then, for each
        step in key order, data are collected from the vector the step
        receives and the step correction is processed, each applied step
        overwriting the corrected vector.

        Parameters
        ----------
        variables : sequence of float - per-event variable vector

        Returns
        -------
        list of bool - for each step, whether it was applied
        """
        self._started = True
        self.corrected_vector.copy_from(self.plain_vector, change_name=True)
        if self.qa_histograms is not None and self.plain_vector.is_good_quality():
            self.qa_histograms.fill_vector(self.qa_histograms.get_bin(variables), self.plain_vector)

        applied = []
        for step in self.steps:
            step.collect_data(variables)
            applied.append(step.process_correction(variables))
        return applied

    def clear_configuration(self):
        """Get ready for a new event: empty data bank, zeroed vectors."""
        self._phi.clear()
        self._weights.clear()
        self.plain_vector.reset()
        self.corrected_vector.reset()
        self.corrected_vector.name = PLAIN_VECTOR_NAME
        for step in self.steps:
            step.clear_correction_step()


# ══════════════════════════════════════════════════════════════════════════════
# Detector: configurations sharing a physical sub-detector
# ══════════════════════════════════════════════════════════════════════════════

class Detector:
    """
    A physical detector and the configurations defined on it.

    Parameters
    ----------
    name        : str - detector name
    detector_id : int - detector id
    """

    def __init__(self, name, detector_id):
        self.name           = name
        self.detector_id    = detector_id
        self.configurations = []

    def __repr__(self):
        return f"Detector({self.name!r}, id={self.detector_id}, configurations={len(self.configurations)})"

    def add_configuration(self, configuration):
        if configuration.detector is not self:
            owner = configuration.detector
            raise ConfigurationError(
                f"You are adding {configuration.name} detector configuration of detector "
                f"{owner.name if owner is not None else None} to detector {self.name}"
            )
        if self.find_configuration(configuration.name) is not None:
            raise ConfigurationError(
                f"You are trying to add twice {configuration.name} detector configuration "
                f"to detector {self.name}"
            )
        self.configurations.append(configuration)
        return configuration

    def new_configuration(self, name, event_classes, harmonics=DEFAULT_HARMONICS,
                          normalization=DEFAULT_NORMALIZATION):
        """Create a configuration owned by this detector and add it."""
        return self.add_configuration(
            DetectorConfiguration(name, self, event_classes, harmonics, normalization))

    def find_configuration(self, name):
        for conf in self.configurations:
            if conf.name == name:
                return conf
        return None

    # ── lifecycle fan-out ──────────────────────────────────────────────────

    def create_support_histograms(self, store):
        result = False
        for conf in self.configurations:
            result = conf.create_support_histograms(store) or result
        return result

    def create_qa_histograms(self, store):
        result = False
        for conf in self.configurations:
            result = conf.create_qa_histograms(store) or result
        return result

    def create_nve_qa_histograms(self, store):
        result = False
        for conf in self.configurations:
            result = conf.create_nve_qa_histograms(store) or result
        return result

    def attach_correction_inputs(self, store):
        result = False
        for conf in self.configurations:
            result = conf.attach_correction_inputs(store) or result
        return result

    def add_data_vectors(self, phi, weights=None):
        """Data vectors of this detector go to every configuration."""
        for conf in self.configurations:
            conf.add_data_vectors(phi, weights)

    def clear_detector(self):
        for conf in self.configurations:
            conf.clear_configuration()
