from logging import info, debug

from qnflow.steps import CorrectionStep, StepState
from qnflow.errors import ConfigurationError
from qnflow.histograms import CorrelationComponents, HistogramCounts
from qnflow.harmonics import alignment_angle, is_significant, rotate
from qnflow.parameters import (ALIGNMENT_NAME, ALIGNMENT_KEY, ALIGNED_NAME,
                               QNQN_HISTOGRAM_NAME, NVE_HISTOGRAM_NAME,
                               DEFAULT_MIN_ENTRIES, SIGNIFICANCE_THRESHOLD)


class Alignment(CorrectionStep):
    """
    Alignment of the Qn vector with the one of a reference configuration.

    Calibration profiles, per event class, the correlations at the alignment
    harmonic k between the vector this step receives and the reference
    corrected vector:

        XX = Qx Qx_ref    XY = Qx Qy_ref    YX = Qy Qx_ref    YY = Qy Qy_ref

    When applied, the phase offset

        dPhi = -atan2(XY - YX, XX + YY) / k

    rotates every active harmonic h by h * dPhi, provided the XY-YX asymmetry
    is at least SIGNIFICANCE_THRESHOLD sigma away from zero. Non-validated
    bins leave the vector untouched and are counted in the optional
    not-validated-entries histogram.

    Parameters
    ----------
    harmonic    : int - alignment harmonic k
    reference   : DetectorConfiguration or str - reference configuration, or
                  its name to be resolved when attached to a manager
    min_entries : int - entries needed to trust a calibration bin
    """

    corrected_vector_name = ALIGNED_NAME
    nve_prefix            = f"Align {NVE_HISTOGRAM_NAME}"
    histogram_prefix      = QNQN_HISTOGRAM_NAME

    def __init__(self, harmonic, reference=None, min_entries=DEFAULT_MIN_ENTRIES,
                 threshold=SIGNIFICANCE_THRESHOLD, name=ALIGNMENT_NAME, key=ALIGNMENT_KEY):
        super().__init__(name, key)
        self.harmonic               = int(harmonic)
        self.min_entries            = min_entries
        self.threshold              = threshold
        self.reference              = None
        self.reference_name         = None
        self.input_histograms       = None
        self.calibration_histograms = None
        self.nve_histograms         = None
        if reference is not None:
            self.set_reference(reference)

    def set_reference(self, reference):
        """Store the reference configuration, or its name for later resolution."""
        if isinstance(reference, str):
            self.reference_name = reference
            self.reference      = None
        else:
            self.reference_name = reference.name
            self.reference      = reference

    # ── set-up ─────────────────────────────────────────────────────────────

    def attached_to_manager(self, registry):
        if self.reference_name is None:
            raise ConfigurationError(
                f"No reference configuration given for the {self.name} step "
                f"of '{self.configuration.name}'"
            )
        found = registry.find_configuration(self.reference_name)
        if found is None:
            raise ConfigurationError(
                f"Wrong reference detector configuration '{self.reference_name}' "
                f"for the {self.name} step of '{self.configuration.name}'"
            )
        if found is self.configuration:
            raise ConfigurationError(
                f"The {self.name} step of '{self.configuration.name}' cannot use "
                f"its own configuration as reference"
            )
        self.reference = found
        info(f"{self.name} on {self.configuration.name}: reference {found.name}")

    def references(self):
        return [] if self.reference is None else [self.reference]

    def create_support_data_structures(self):
        if self.reference is None:
            raise ConfigurationError(
                f"Reference configuration '{self.reference_name}' of the {self.name} "
                f"step of '{self.configuration.name}' not resolved"
            )
        # the alignment harmonic must be built in both configurations
        self.configuration.activate_harmonic(self.harmonic)
        self.reference.activate_harmonic(self.harmonic)
        super().create_support_data_structures()

    @property
    def histogram_name(self):
        return f"{self.histogram_prefix} {self.configuration.name}x{self.reference.name}"

    def create_support_histograms(self, store):
        self.calibration_histograms = CorrelationComponents(self.histogram_name,
                                                            self.configuration.event_classes,
                                                            self.harmonic)
        store[self.histogram_name] = self.calibration_histograms
        return True

    def create_nve_qa_histograms(self, store):
        name = f"{self.nve_prefix} {self.configuration.name}"
        self.nve_histograms = HistogramCounts(name, self.configuration.event_classes)
        store[name] = self.nve_histograms
        return True

    def attach_input(self, store):
        hist = None if store is None else store.get(self.histogram_name)
        if hist is None or hist.total_entries() == 0:
            return False
        self.input_histograms = hist
        self.state = StepState.APPLY_COLLECT
        info(f"{self.name} on {self.configuration.name} going to be applied")
        return True

    def after_inputs_attach_actions(self):
        """
        Go passive while earlier steps, here or on the reference, are not
        applied yet: the correlation would be built on uncorrected vectors.
        This extends the base state machine, where a failed attach simply
        leaves the step calibrating.
        """
        if self.state != StepState.CALIBRATING:
            return
        pending = [s for s in self.configuration.steps + self.reference.steps
                   if s.key < self.key and not s.is_being_applied()]
        if pending:
            self.state = StepState.PASSIVE
            info(f"{self.name} on {self.configuration.name} passive, waiting for "
                 f"{', '.join(sorted(set(s.name for s in pending)))}")

    # ── per event ──────────────────────────────────────────────────────────

    def _collect(self, variables):
        qn     = self.configuration.previous_corrected_vector(self)
        qn_ref = self.reference.corrected_vector
        if not (qn.is_good_quality() and qn_ref.is_good_quality()):
            return False
        ibin = self.calibration_histograms.get_bin(variables)
        return self.calibration_histograms.fill_correlation(ibin, qn, qn_ref)

    def _apply(self, variables, qn_input):
        hist = self.input_histograms
        ibin = hist.get_bin(variables)
        if not hist.is_validated(ibin, self.min_entries):
            if self.nve_histograms is not None:
                self.nve_histograms.count(self.nve_histograms.get_bin(variables))
            return

        c = hist.correlations(ibin)
        if not is_significant(c['XY'], c['YX'], c['eXY'], c['eYX'], self.threshold):
            debug(f"{self.name} on {self.configuration.name}: bin {ibin} not significant")
            return

        delta_phi = alignment_angle(c['XX'], c['YY'], c['XY'], c['YX'], self.harmonic)
        h, qx, qy = qn_input.components()
        new_x, new_y = rotate(h, qx, qy, delta_phi)
        self.corrected_vector.set_components(h, new_x, new_y)
