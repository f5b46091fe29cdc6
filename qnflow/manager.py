from logging import info

from qnflow.detector import Detector
from qnflow.errors import ConfigurationError
from qnflow.calibio import save_hdf5, load_hdf5


class CorrectionsManager:
    """
    Owns the detectors of an analysis pass and drives the correction network.

    It is also the registry through which correction steps resolve their
    reference configurations by name at set-up; the reference is then held
    directly by the step for the whole run.

    Typical pass
    ------------
        manager.initialize(input_store)          # previous pass output, or None
        for each event:
            manager.clear_event()
            manager.add_data_vectors('TPC', phi, weights)
            manager.process_event(variables)
        manager.save_calibration('pass_1.h5')    # input of the next pass
    """

    def __init__(self):
        self.detectors          = []
        self.calibration_output = {}
        self.qa_output          = {}
        self.input_store        = None
        self.n_events           = 0
        self._order             = []
        self._initialized       = False

    # ── registry ───────────────────────────────────────────────────────────

    def add_detector(self, detector):
        for det in self.detectors:
            if det.name == detector.name or det.detector_id == detector.detector_id:
                raise ConfigurationError(
                    f"Detector {detector.name} (id {detector.detector_id}) clashes with "
                    f"already registered {det.name} (id {det.detector_id})"
                )
        self.detectors.append(detector)
        return detector

    def new_detector(self, name, detector_id):
        return self.add_detector(Detector(name, detector_id))

    def find_detector(self, name):
        for det in self.detectors:
            if det.name == name:
                return det
        return None

    @property
    def configurations(self):
        return [conf for det in self.detectors for conf in det.configurations]

    def find_configuration(self, name):
        for conf in self.configurations:
            if conf.name == name:
                return conf
        return None

    @property
    def processing_order(self):
        return list(self._order)

    def _resolve_order(self):
        """
        Order configurations so that every configuration read by a step is
        fully processed before the configuration owning the step.
        Registration order is kept otherwise.
        """
        confs   = self.configurations
        pending = {conf.name: {ref.name for step in conf.steps for ref in step.references()}
                   for conf in confs}
        order = []
        while len(order) < len(confs):
            ready = [c for c in confs if c not in order and not (pending[c.name] - {o.name for o in order})]
            if not ready:
                stuck = [c.name for c in confs if c not in order]
                raise ConfigurationError(
                    f"Cyclic reference between detector configurations: {stuck}"
                )
            order.append(ready[0])
        return order

    # ── set-up ─────────────────────────────────────────────────────────────

    def initialize(self, input_store=None, qa=False, nve_qa=False):
        """
        Set the correction network up for a new pass.

        Parameters
        ----------
        input_store : dict or str or None - calibration histograms of the
                      previous pass, or the HDF5 file they were saved in
        qa          : bool - create QA profiles of the plain and corrected vectors
        nve_qa      : bool - create not-validated-entries histograms
        """
        names = [conf.name for conf in self.configurations]
        dup   = sorted(set(n for n in names if names.count(n) > 1))
        if dup:
            raise ConfigurationError(f"Duplicated detector configuration names: {dup}")

        if isinstance(input_store, str):
            input_store, _ = load_hdf5(input_store)
        self.input_store        = input_store
        self.calibration_output = {}
        self.qa_output          = {}
        self.n_events           = 0

        for conf in self.configurations:
            conf.reset_states()
            conf.attach_manager(self)
        self._order = self._resolve_order()

        for conf in self._order:
            conf.create_support_data_structures()
        for det in self.detectors:
            det.create_support_histograms(self.calibration_output)
            if qa:
                det.create_qa_histograms(self.qa_output)
            if nve_qa:
                det.create_nve_qa_histograms(self.qa_output)

        attached = False
        for det in self.detectors:
            attached = det.attach_correction_inputs(input_store) or attached
        for conf in self._order:
            conf.after_inputs_attach_actions()

        self._initialized = True
        info(f"Corrections manager initialised: {len(self._order)} configurations, "
             f"calibration input {'attached' if attached else 'not available'}")
        return attached

    # ── per event ──────────────────────────────────────────────────────────

    def clear_event(self):
        for det in self.detectors:
            det.clear_detector()

    def add_data_vectors(self, detector_name, phi, weights=None):
        det = self.find_detector(detector_name)
        if det is None:
            raise KeyError(f"Detector '{detector_name}' not registered. "
                           f"Available: {[d.name for d in self.detectors]}")
        det.add_data_vectors(phi, weights)

    def process_event(self, variables):
        """Build and correct every configuration, references first."""
        if not self._initialized:
            raise ConfigurationError("process_event() called before initialize()")
        for conf in self._order:
            conf.build_qn_vector()
            conf.process_event(variables)
        self.n_events += 1

    # ── run boundary ───────────────────────────────────────────────────────

    def stop_collecting(self):
        """Promote every applying and collecting step to applying only."""
        result = False
        for conf in self.configurations:
            result = conf.stop_collecting() or result
        return result

    def save_calibration(self, filename, pass_label='calibration'):
        save_hdf5(filename, self.calibration_output, n_events=self.n_events,
                  pass_label=pass_label)
        print(f"Saved {len(self.calibration_output)} calibration histograms "
              f"({self.n_events} events) to {filename}")

    def report(self):
        """Print the state of every correction step and return it as a dict."""
        out = {}
        print(f"Correction steps after {self.n_events} events")
        print(f"  {'Configuration':16s}  {'Step':36s}  {'State':12s}  {'Collect':>7s}  {'Apply':>5s}")
        print(f"  {'-'*84}")
        for conf in self.configurations:
            steps, calib, apply = conf.report_on_corrections()
            out[conf.name] = {'steps': steps, 'calibrating': calib, 'applying': apply}
            for step in conf.steps:
                print(f"  {conf.name:16s}  {step.name:36s}  {step.state.value:12s}  "
                      f"{str(step.name in calib):>7s}  {str(step.name in apply):>5s}")
        return out
