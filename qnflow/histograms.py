import numpy as np

from qnflow.parameters import INVALID_BIN, DEFAULT_MIN_ENTRIES


# ══════════════════════════════════════════════════════════════════════════════
# Per event class profile accumulators
# ══════════════════════════════════════════════════════════════════════════════
#
# Every accumulator keeps, per (channel, event class bin, harmonic):
#     sum      : sum of filled values
#     sum2     : sum of squared values
#     entries  : number of fills
# from which the bin content (mean) and error are derived on request.
# Accumulation is strictly per process; finalised histograms attached as
# calibration input are only ever read.

ERROR_MODES = ('spread', 'mean')


class ChannelProfile:
    """
    Profile histogram over event classes with several value channels.

    Parameters
    ----------
    name          : str                    - unique histogram name in its store
    event_classes : EventClassVariablesSet - classifier for the calibration bins
    channels      : sequence of str        - channel labels, e.g. ('X', 'Y')
    harmonics     : sequence of int        - harmonic numbers profiled
    error_mode    : str - 'spread' gives the standard deviation of the bin,
                          'mean' the standard error of the mean
    """

    kind = 'profile'

    def __init__(self, name, event_classes, channels, harmonics, error_mode='mean'):
        if error_mode not in ERROR_MODES:
            raise ValueError(f"error_mode must be one of {ERROR_MODES}, got '{error_mode}'")
        self.name          = name
        self.event_classes = event_classes
        self.channels      = tuple(channels)
        self.harmonics     = np.array(sorted(set(int(h) for h in harmonics)), dtype=np.int64)
        self.error_mode    = error_mode

        self._ch_index = {c: i for i, c in enumerate(self.channels)}
        self._h_index  = {int(h): i for i, h in enumerate(self.harmonics)}

        shape        = (len(self.channels), event_classes.n_bins, len(self.harmonics))
        self.sum     = np.zeros(shape, dtype=np.float64)
        self.sum2    = np.zeros(shape, dtype=np.float64)
        self.entries = np.zeros(shape, dtype=np.int64)

    def __repr__(self):
        return (f"{type(self).__name__}({self.name!r}, channels={self.channels}, "
                f"harmonics={list(self.harmonics)}, entries={self.total_entries()})")

    # ── indexing ───────────────────────────────────────────────────────────

    def get_bin(self, variables):
        return self.event_classes.classify(variables)

    def has_harmonic(self, harmonic):
        return int(harmonic) in self._h_index

    def _ih(self, harmonic):
        try:
            return self._h_index[int(harmonic)]
        except KeyError:
            raise KeyError(
                f"harmonic {harmonic} not profiled in '{self.name}' "
                f"(available: {list(self.harmonics)})"
            ) from None

    def _ic(self, channel):
        try:
            return self._ch_index[channel]
        except KeyError:
            raise KeyError(
                f"channel '{channel}' not in '{self.name}' (available: {self.channels})"
            ) from None

    # ── filling ────────────────────────────────────────────────────────────

    def fill(self, channel, ibin, harmonic, value):
        """Add one value; fills into the invalid bin are dropped."""
        if ibin == INVALID_BIN:
            return False
        ic, ih = self._ic(channel), self._ih(harmonic)
        self.sum    [ic, ibin, ih] += value
        self.sum2   [ic, ibin, ih] += value * value
        self.entries[ic, ibin, ih] += 1
        return True

    def fill_harmonics(self, channel, ibin, harmonics, values):
        """Vectorised fill of several harmonics of one channel in one bin."""
        if ibin == INVALID_BIN:
            return False
        ic  = self._ic(channel)
        ih  = np.array([self._ih(h) for h in harmonics], dtype=np.int64)
        val = np.asarray(values, dtype=np.float64)
        self.sum    [ic, ibin, ih] += val
        self.sum2   [ic, ibin, ih] += val * val
        self.entries[ic, ibin, ih] += 1
        return True

    # ── retrieval ──────────────────────────────────────────────────────────

    def _moments(self, ic, ibin, ih):
        if ibin == INVALID_BIN:
            empty = np.zeros(np.shape(ih))
            return empty, empty
        n    = self.entries[ic, ibin, ih].astype(np.float64)
        safe = np.where(n > 0, n, 1.0)
        mean = np.where(n > 0, self.sum[ic, ibin, ih] / safe, 0.0)
        msq  = np.where(n > 0, self.sum2[ic, ibin, ih] / safe, 0.0)
        var  = msq - mean**2
        # sum2/n - mean^2 cancels; a remainder within rounding of <x^2> is zero spread
        var  = np.where(var <= 8 * np.finfo(np.float64).eps * msq, 0.0, var)
        spread = np.sqrt(np.clip(var, 0.0, None))
        if self.error_mode == 'mean':
            return mean, np.where(n > 0, spread / np.sqrt(safe), 0.0)
        return mean, spread

    def content(self, channel, ibin, harmonic):
        """Mean of the values filled into (channel, bin, harmonic); 0 if empty or the invalid bin."""
        mean, _ = self._moments(self._ic(channel), ibin, self._ih(harmonic))
        return float(mean)

    def error(self, channel, ibin, harmonic):
        _, err = self._moments(self._ic(channel), ibin, self._ih(harmonic))
        return float(err)

    def contents(self, channel, ibin, harmonics):
        """Vectorised (mean, error) for several harmonics of one channel."""
        ih = np.array([self._ih(h) for h in harmonics], dtype=np.int64)
        return self._moments(self._ic(channel), ibin, ih)

    def bin_entries(self, ibin):
        """Smallest entry count over channels and harmonics of the bin."""
        if ibin == INVALID_BIN or self.entries.shape[2] == 0:
            return 0
        return int(self.entries[:, ibin, :].min())

    def is_validated(self, ibin, min_entries=DEFAULT_MIN_ENTRIES):
        """True iff the bin has at least min_entries in every channel and harmonic."""
        if ibin == INVALID_BIN:
            return False
        return self.bin_entries(ibin) >= min_entries

    def total_entries(self):
        if self.entries.size == 0:
            return 0
        return int(self.entries.sum(axis=(1, 2)).max())

    def mean_map(self, channel):
        """Per bin, per harmonic means of a channel, NaN where empty. Shape (n_bins, n_harm)."""
        ic   = self._ic(channel)
        n    = self.entries[ic].astype(np.float64)
        with np.errstate(invalid='ignore', divide='ignore'):
            return np.where(n > 0, self.sum[ic] / n, np.nan)

    def reset(self):
        self.sum[:]     = 0.0
        self.sum2[:]    = 0.0
        self.entries[:] = 0


class ProfileComponents(ChannelProfile):
    """Qx and Qy profiles for every harmonic of a Qn vector."""

    kind = 'components'

    def __init__(self, name, event_classes, harmonics, error_mode='spread'):
        super().__init__(name, event_classes, ('X', 'Y'), harmonics, error_mode)

    def fill_vector(self, ibin, qn_vector):
        """Fill Qx, Qy of all active harmonics of qn_vector profiled here."""
        h, qx, qy = qn_vector.components()
        keep = np.array([self.has_harmonic(k) for k in h], dtype=bool)
        if not keep.any():
            return False
        self.fill_harmonics('X', ibin, h[keep], qx[keep])
        return self.fill_harmonics('Y', ibin, h[keep], qy[keep])


class CorrelationComponents(ChannelProfile):
    """
    XX, XY, YX, YY correlation profiles between two Qn vectors at a single
    harmonic. Errors default to the standard error of the mean.
    """

    kind = 'correlation'

    def __init__(self, name, event_classes, harmonic, error_mode='mean'):
        super().__init__(name, event_classes, ('XX', 'XY', 'YX', 'YY'), [harmonic], error_mode)
        self.harmonic = int(harmonic)

    def fill_correlation(self, ibin, qn_self, qn_ref):
        """Fill the four products of qn_self and qn_ref at the profiled harmonic."""
        if ibin == INVALID_BIN:
            return False
        k = self.harmonic
        x1, y1 = qn_self.qx(k), qn_self.qy(k)
        x2, y2 = qn_ref.qx(k),  qn_ref.qy(k)
        self.fill('XX', ibin, k, x1 * x2)
        self.fill('XY', ibin, k, x1 * y2)
        self.fill('YX', ibin, k, y1 * x2)
        self.fill('YY', ibin, k, y1 * y2)
        return True

    def correlations(self, ibin):
        """
        Returns
        -------
        dict : {'XX', 'XY', 'YX', 'YY', 'eXY', 'eYX'} -> float
        """
        k   = self.harmonic
        out = {c: self.content(c, ibin, k) for c in self.channels}
        out['eXY'] = self.error('XY', ibin, k)
        out['eYX'] = self.error('YX', ibin, k)
        return out


class HistogramCounts(ChannelProfile):
    """Plain entry counter per event class bin (e.g. non-validated entries)."""

    kind = 'counts'

    def __init__(self, name, event_classes):
        super().__init__(name, event_classes, ('N',), [1], error_mode='mean')

    def count(self, ibin, weight=1.0):
        return self.fill('N', ibin, 1, weight)

    def counts(self):
        """Sum of weights per bin, shape (n_bins,)."""
        return self.sum[0, :, 0].copy()


HISTOGRAM_KINDS = {
    cls.kind: cls
    for cls in (ChannelProfile, ProfileComponents, CorrelationComponents, HistogramCounts)
}
