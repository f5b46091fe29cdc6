from qnflow.alignment import Alignment
from qnflow.parameters import (TWIST_RESCALE_NAME, TWIST_RESCALE_KEY, TWIST_RESCALED_NAME,
                               TWIST_NVE_NAME, QNQN_HISTOGRAM_NAME,
                               TWIST_DEFAULT_MIN_ENTRIES, SIGNIFICANCE_THRESHOLD)


class TwistAndRescale(Alignment):
    """
    Twist and rescale step for the three sub-detector case.

    Shares the correlation profiles, significance gate and rotation of
    Alignment. It runs after alignment, correlates the vector as left by the
    previous applied step with the reference corrected vector, validates bins
    with its own entries threshold and counts non-validated entries.
    """

    corrected_vector_name = TWIST_RESCALED_NAME
    nve_prefix            = TWIST_NVE_NAME
    histogram_prefix      = f"TwScale {QNQN_HISTOGRAM_NAME}"

    def __init__(self, harmonic, reference=None, min_entries=TWIST_DEFAULT_MIN_ENTRIES,
                 threshold=SIGNIFICANCE_THRESHOLD):
        super().__init__(harmonic, reference, min_entries=min_entries, threshold=threshold,
                         name=TWIST_RESCALE_NAME, key=TWIST_RESCALE_KEY)
