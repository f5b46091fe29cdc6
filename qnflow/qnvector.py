import numpy as np

from qnflow.parameters import MAX_HARMONIC, QN_NORMALIZATIONS, MIN_DATA_VECTORS
from qnflow.errors import ConfigurationError


def _check_harmonic(harmonic):
    if not (1 <= int(harmonic) <= MAX_HARMONIC):
        raise ValueError(
            f"harmonic {harmonic} out of range: supported harmonics are "
            f"1..{MAX_HARMONIC}"
        )
    return int(harmonic)


class QnVector:
    """
    Fixed-size harmonic flow vector.

    Storage is one slot per harmonic number 0..MAX_HARMONIC (slot 0 unused);
    only harmonics in the active set carry meaningful (Qx, Qy) values and
    querying any other harmonic is an error.

    Attributes
    ----------
    name : str   - label of the correction stage that last produced the values
    n    : float - sum of weights (multiplicity) of the data vectors
    good : bool  - quality flag; sticky downward, see set_good()
    """

    def __init__(self, name, harmonics=()):
        self.name    = name
        self.n       = 0.0
        self.good    = False
        self._qx     = np.zeros(MAX_HARMONIC + 1, dtype=np.float64)
        self._qy     = np.zeros(MAX_HARMONIC + 1, dtype=np.float64)
        self._active = np.zeros(MAX_HARMONIC + 1, dtype=bool)
        for h in harmonics:
            self.activate_harmonic(h)

    def __repr__(self):
        comps = ", ".join(f"{h}: ({self._qx[h]:.4g}, {self._qy[h]:.4g})"
                          for h in self.harmonics)
        return f"QnVector({self.name!r}, good={self.good}, {{{comps}}})"

    # ── harmonic bookkeeping ───────────────────────────────────────────────

    def activate_harmonic(self, harmonic):
        """Idempotently add a harmonic to the active set."""
        self._active[_check_harmonic(harmonic)] = True

    @property
    def harmonics(self):
        """Active harmonic numbers in ascending order, as np.ndarray of int."""
        return np.flatnonzero(self._active)

    def is_active(self, harmonic):
        h = int(harmonic)
        return 1 <= h <= MAX_HARMONIC and bool(self._active[h])

    def _slot(self, harmonic):
        h = int(harmonic)
        if not self.is_active(h):
            raise KeyError(
                f"harmonic {harmonic} is not active in Qn vector '{self.name}' "
                f"(active: {list(self.harmonics)})"
            )
        return h

    # ── components ─────────────────────────────────────────────────────────

    def qx(self, harmonic):
        return float(self._qx[self._slot(harmonic)])

    def qy(self, harmonic):
        return float(self._qy[self._slot(harmonic)])

    def set_qx(self, harmonic, value):
        self._qx[self._slot(harmonic)] = value

    def set_qy(self, harmonic, value):
        self._qy[self._slot(harmonic)] = value

    def set(self, harmonic, qx, qy):
        h = self._slot(harmonic)
        self._qx[h] = qx
        self._qy[h] = qy

    def components(self):
        """
        Vectorised view of the active components.

        Returns
        -------
        harmonics, qx, qy : np.ndarray - copies, same length
        """
        h = self.harmonics
        return h, self._qx[h].copy(), self._qy[h].copy()

    def set_components(self, harmonics, qx, qy):
        """Inverse of components(); every harmonic must be active."""
        for harmonic in harmonics:
            self._slot(harmonic)
        self._qx[harmonics] = qx
        self._qy[harmonics] = qy

    def length(self, harmonic):
        h = self._slot(harmonic)
        return float(np.hypot(self._qx[h], self._qy[h]))

    def event_plane(self, harmonic):
        """Event plane angle Psi_n = atan2(Qy, Qx) / n."""
        h = self._slot(harmonic)
        return float(np.arctan2(self._qy[h], self._qx[h]) / h)

    # ── quality ────────────────────────────────────────────────────────────

    def is_good_quality(self):
        return self.good

    def set_good(self, good, force=False):
        """
        Set the quality flag.

        Quality only goes down: once bad, a vector becomes good again only
        with force=True (a fresh build or an explicit override).
        """
        if good and not self.good and not force:
            return
        self.good = bool(good)

    # ── whole vector operations ────────────────────────────────────────────

    def copy_from(self, other, change_name=True):
        """Copy values, active set, multiplicity and quality from other."""
        self._qx[:]     = other._qx
        self._qy[:]     = other._qy
        self._active[:] = other._active
        self.n          = other.n
        self.good       = other.good
        if change_name:
            self.name = other.name

    def reset(self):
        """Zero every harmonic and clear the quality; the active set is kept."""
        self._qx[:] = 0.0
        self._qy[:] = 0.0
        self.n      = 0.0
        self.good   = False

    def build(self, phi, weights=None, normalization='none'):
        """
        Fill the active harmonics from data vectors.

            Q_n = sum_j w_j exp(i n phi_j)

        The vector is marked good iff there are at least MIN_DATA_VECTORS
        entries with a positive total weight.

        Parameters
        ----------
        phi           : array-like - azimuthal angles of the data vectors
        weights       : array-like or None - weights, default 1 each
        normalization : str - one of QN_NORMALIZATIONS
        """
        if normalization not in QN_NORMALIZATIONS:
            raise ConfigurationError(
                f"Unknown Qn normalization '{normalization}'. "
                f"Available: {QN_NORMALIZATIONS}"
            )
        phi = np.asarray(phi, dtype=np.float64)
        w   = np.ones_like(phi) if weights is None else np.asarray(weights, dtype=np.float64)

        self.reset()
        h = self.harmonics
        # shape (n_harm, n_data)
        q = np.exp(1j * np.outer(h, phi)) @ w if len(phi) > 0 else np.zeros(len(h), dtype=complex)
        self.n = float(w.sum()) if len(w) > 0 else 0.0

        if len(phi) < MIN_DATA_VECTORS or self.n <= 0.0:
            self._qx[h] = q.real
            self._qy[h] = q.imag
            return self

        if normalization == 'sqrt_m':
            q = q / np.sqrt(self.n)
        elif normalization == 'm':
            q = q / self.n
        elif normalization == 'qlength':
            mod = np.abs(q)
            q   = np.where(mod > 0, q / np.where(mod > 0, mod, 1.0), 0.0)

        self._qx[h] = q.real
        self._qy[h] = q.imag
        self.set_good(True, force=True)
        return self
