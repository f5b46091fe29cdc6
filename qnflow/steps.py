from enum import Enum
from logging import info, debug

from qnflow.qnvector import QnVector
from qnflow.errors import ConfigurationError
from qnflow.histograms import ProfileComponents
from qnflow.parameters import QA_HISTOGRAM_NAME


class StepState(Enum):
    """
    CALIBRATING      : no usable calibration yet, only collects data
    APPLYING         : calibration fixed and applied, no further collection
    APPLY_COLLECT    : calibration applied while fresh data keep being collected
    PASSIVE          : waiting for an external precondition, does nothing
    """
    CALIBRATING   = 'calibration'
    APPLYING      = 'apply'
    APPLY_COLLECT = 'applyCollect'
    PASSIVE       = 'passive'


class CorrectionStep:
    """
    Base class of the correction steps applied to a detector configuration
    Qn vector.

    Each step has a name, which identifies it, and a key, which fixes its
    position in the ordered chain of steps of a configuration: steps run in
    ascending key order.

    Per event the owning configuration calls collect_data() and then
    process_correction() on every step, whatever its state:

        state          collect_data    process_correction
        CALIBRATING    collects        pass-through, returns False
        APPLY_COLLECT  collects        applies, returns True
        APPLYING       -               applies, returns True
        PASSIVE        -               pass-through, returns False

    Subclasses implement the _collect() and _apply() hooks and the set-up
    protocol (histogram creation and input attachment).
    """

    corrected_vector_name = 'corrected'

    def __init__(self, name, key):
        self._name         = name
        self._key          = key
        self.state         = StepState.CALIBRATING
        self.configuration = None
        self.corrected_vector = None
        self.qa_histograms    = None

    def __repr__(self):
        return f"{type(self).__name__}({self._name!r}, key={self._key!r}, state={self.state.name})"

    @property
    def name(self):
        return self._name

    @property
    def key(self):
        return self._key

    def before(self, other):
        """True if this step runs before other."""
        return self._key < other.key

    def set_configuration_owner(self, configuration):
        """Called once by the owning configuration when the step is added."""
        if self.configuration is not None and self.configuration is not configuration:
            raise ConfigurationError(
                f"Correction step '{self._name}' already belongs to configuration "
                f"'{self.configuration.name}', cannot add it to '{configuration.name}'"
            )
        self.configuration = configuration

    # ── state handling ─────────────────────────────────────────────────────

    def reset_state(self):
        """Back to CALIBRATING at the start of a new run set-up."""
        self.state = StepState.CALIBRATING

    def set_passive(self):
        self.state = StepState.PASSIVE

    def stop_collecting(self):
        """Run boundary promotion APPLY_COLLECT -> APPLYING."""
        if self.state == StepState.APPLY_COLLECT:
            self.state = StepState.APPLYING
            return True
        return False

    def is_being_applied(self):
        return self.state in (StepState.APPLYING, StepState.APPLY_COLLECT)

    def is_collecting(self):
        return self.state in (StepState.CALIBRATING, StepState.APPLY_COLLECT)

    def report_usage(self):
        """
        Returns
        -------
        collecting, applying : bool, bool
        """
        return self.is_collecting(), self.is_being_applied()

    # ── set-up protocol ────────────────────────────────────────────────────

    def attached_to_manager(self, registry):
        """The configuration joined a manager; resolve references through registry."""

    def references(self):
        """Other configurations whose corrected vectors this step reads."""
        return []

    def create_support_data_structures(self):
        """Create the corrected Qn vector with the configuration harmonics."""
        self.corrected_vector = QnVector(self.corrected_vector_name,
                                         self.configuration.harmonics)

    def create_support_histograms(self, store):
        raise NotImplementedError

    def create_qa_histograms(self, store):
        """QA profile of the vector produced by this step."""
        name = f"{QA_HISTOGRAM_NAME} {self.corrected_vector_name} {self.configuration.name}"
        self.qa_histograms = ProfileComponents(name, self.configuration.event_classes,
                                               self.configuration.harmonics,
                                               error_mode='mean')
        store[name] = self.qa_histograms
        return True

    def create_nve_qa_histograms(self, store):
        return False

    def attach_input(self, store):
        raise NotImplementedError

    def after_inputs_attach_actions(self):
        """All inputs are in place; check requirements on other steps."""

    # ── per event ──────────────────────────────────────────────────────────

    def collect_data(self, variables):
        """
        Accumulate calibration statistics from the vector this step receives.

        Returns
        -------
        bool - True if data were collected for this event
        """
        if not self.is_collecting():
            return False
        return self._collect(variables)

    def process_correction(self, variables):
        """
        Apply the correction to the configuration current Qn vector.

        The result always overwrites the configuration corrected vector when
        the step is being applied. A bad quality input is propagated as is,
        with its quality flag down, and no transform is made.

        Returns
        -------
        bool - True if the step is being applied
        """
        if not self.is_being_applied():
            return False

        current = self.configuration.corrected_vector
        self.corrected_vector.copy_from(current, change_name=False)
        if current.is_good_quality():
            self._apply(variables, current)
        else:
            self.corrected_vector.set_good(False)
            debug(f"{self._name} on {self.configuration.name}: bad quality input, not applied")

        self.configuration.update_current_vector(self.corrected_vector)
        if self.qa_histograms is not None and self.corrected_vector.is_good_quality():
            ibin = self.qa_histograms.get_bin(variables)
            self.qa_histograms.fill_vector(ibin, self.corrected_vector)
        return True

    def _collect(self, variables):
        raise NotImplementedError

    def _apply(self, variables, qn_input):
        """Write the transform of qn_input into self.corrected_vector."""
        raise NotImplementedError

    def clear_correction_step(self):
        if self.corrected_vector is not None:
            self.corrected_vector.reset()

    def _log_attached(self):
        info(f"{self._name} on {self.configuration.name} going to be applied")
