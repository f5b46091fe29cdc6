import numpy as np
from logging import info

from qnflow.steps import CorrectionStep, StepState
from qnflow.histograms import ProfileComponents
from qnflow.harmonics import recenter
from qnflow.parameters import (RECENTERING_NAME, RECENTERING_KEY, RECENTERED_NAME,
                               QN_HISTOGRAM_NAME, DEFAULT_MIN_ENTRIES)


class Recentering(CorrectionStep):
    """
    Recentering and (optional) width equalisation of the Qn vector.

    Calibration profiles, per event class and harmonic, the Qx and Qy of the
    vector this step receives. Once an input profile is attached the step
    subtracts the bin means and, with width equalisation, divides by the bin
    standard deviations:

        Qx' = (Qx - <Qx>) / sigma_x,    Qy' = (Qy - <Qy>) / sigma_y

    Harmonics missing from the input profile, non-validated bins and bins
    with vanishing width are left untouched.

    Parameters
    ----------
    apply_width_equalization : bool - divide by the per bin standard deviation
    min_entries              : int  - entries needed to trust a calibration bin
    """

    corrected_vector_name = RECENTERED_NAME

    def __init__(self, apply_width_equalization=False, min_entries=DEFAULT_MIN_ENTRIES):
        super().__init__(RECENTERING_NAME, RECENTERING_KEY)
        self.apply_width_equalization = apply_width_equalization
        self.min_entries              = min_entries
        self.input_histograms         = None
        self.calibration_histograms   = None

    @property
    def histogram_name(self):
        return f"{QN_HISTOGRAM_NAME} {self.configuration.name}"

    def create_support_histograms(self, store):
        """
        Fresh calibration profile for this process, registered in store.
        Errors are the bin spread so that they can serve as widths.
        """
        self.calibration_histograms = ProfileComponents(self.histogram_name,
                                                        self.configuration.event_classes,
                                                        self.configuration.harmonics,
                                                        error_mode='spread')
        store[self.histogram_name] = self.calibration_histograms
        return True

    def attach_input(self, store):
        hist = None if store is None else store.get(self.histogram_name)
        if hist is None or hist.total_entries() == 0:
            return False
        self.input_histograms = hist
        self.state = StepState.APPLY_COLLECT
        info(f"Recentering on {self.configuration.name} going to be applied")
        return True

    def _collect(self, variables):
        qn = self.configuration.previous_corrected_vector(self)
        if not qn.is_good_quality():
            return False
        ibin = self.calibration_histograms.get_bin(variables)
        return self.calibration_histograms.fill_vector(ibin, qn)

    def _apply(self, variables, qn_input):
        hist = self.input_histograms
        ibin = hist.get_bin(variables)
        if not hist.is_validated(ibin, self.min_entries):
            return

        h, qx, qy = qn_input.components()
        covered = np.array([hist.has_harmonic(k) for k in h], dtype=bool)
        if not covered.any():
            return
        h, qx, qy = h[covered], qx[covered], qy[covered]

        mean_x, width_x = hist.contents('X', ibin, h)
        mean_y, width_y = hist.contents('Y', ibin, h)
        if not self.apply_width_equalization:
            width_x = np.ones_like(mean_x)
            width_y = np.ones_like(mean_y)
        else:
            ok = (width_x > 0.0) & (width_y > 0.0)
            h, qx, qy = h[ok], qx[ok], qy[ok]
            mean_x, mean_y   = mean_x[ok], mean_y[ok]
            width_x, width_y = width_x[ok], width_y[ok]

        new_x, new_y = recenter(qx, qy, mean_x, mean_y, width_x, width_y)
        self.corrected_vector.set_components(h, new_x, new_y)
