import numpy as np

from qnflow.parameters import SIGNIFICANCE_THRESHOLD


# ══════════════════════════════════════════════════════════════════════════════
# Shared math for the Qn vector correction steps
# ══════════════════════════════════════════════════════════════════════════════

def recenter(qx, qy, mean_x, mean_y, width_x=1.0, width_y=1.0):
    """
    Recentering with optional width equalisation, per harmonic:

        Qx' = (Qx - <Qx>) / width_x
        Qy' = (Qy - <Qy>) / width_y

    All arguments broadcast; widths are 1 unless width equalisation is on.
    """
    return (qx - mean_x) / width_x, (qy - mean_y) / width_y


def alignment_angle(xx, yy, xy, yx, harmonic):
    """
    Phase offset between two sub-detectors from their correlation components
    at the alignment harmonic k:

        dPhi = -atan2(XY - YX, XX + YY) / k
    """
    return -np.arctan2(xy - yx, xx + yy) / harmonic


def alignment_significance(xy, yx, exy, eyx):
    """
    Significance, in sigma, of the XY-YX asymmetry:

        sqrt( (XY - YX)^2 / (eXY^2 + eYX^2) )

    With vanishing errors any non-zero asymmetry is infinitely significant
    and a zero asymmetry has zero significance.
    """
    num   = (xy - yx) ** 2
    denom = exy ** 2 + eyx ** 2
    if denom <= 0.0:
        return np.inf if num > 0.0 else 0.0
    return float(np.sqrt(num / denom))


def is_significant(xy, yx, exy, eyx, threshold=SIGNIFICANCE_THRESHOLD):
    """Apply the rotation unless the asymmetry is below threshold sigma."""
    return not (alignment_significance(xy, yx, exy, eyx) < threshold)


def rotate(harmonics, qx, qy, delta_phi):
    """
    Rotate every harmonic coherently by a phase found at the fundamental:
    harmonic h turns by h * dPhi.

        Qx'_h = Qx_h cos(h dPhi) + Qy_h sin(h dPhi)
        Qy'_h = Qy_h cos(h dPhi) - Qx_h sin(h dPhi)

    Parameters
    ----------
    harmonics : np.ndarray of int - harmonic numbers of the components
    qx, qy    : np.ndarray        - components, same length as harmonics
    delta_phi : float             - rotation angle at harmonic 1

    Returns
    -------
    qx, qy : np.ndarray - rotated components
    """
    angle = np.asarray(harmonics, dtype=np.float64) * delta_phi
    c, s  = np.cos(angle), np.sin(angle)
    return qx * c + qy * s, qy * c - qx * s
