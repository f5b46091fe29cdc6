import numpy as np

from qnflow.parameters import INVALID_BIN


class EventClassVariable:
    """
    One event classification variable.

    Parameters
    ----------
    var_id    : int - position of the variable in the per-event variable vector
    label     : str - human readable name, e.g. 'Centrality'
    bin_edges : array-like - monotonically increasing bin edges
    """

    def __init__(self, var_id, label, bin_edges):
        self.var_id    = int(var_id)
        self.label     = label
        self.bin_edges = np.asarray(bin_edges, dtype=np.float64)
        if len(self.bin_edges) < 2 or np.any(np.diff(self.bin_edges) <= 0):
            raise ValueError(
                f"Event class variable '{label}' needs at least two strictly "
                f"increasing bin edges, got {self.bin_edges}"
            )

    @property
    def n_bins(self):
        return len(self.bin_edges) - 1

    def find_bin(self, value):
        """Bin index of value, or INVALID_BIN if outside [first, last) edges."""
        if not np.isfinite(value):
            return INVALID_BIN
        if value < self.bin_edges[0] or value >= self.bin_edges[-1]:
            return INVALID_BIN
        return int(np.searchsorted(self.bin_edges, value, side='right')) - 1


class EventClassVariablesSet:
    """
    The set of variables that define event classes.

    Maps a fixed-layout variable vector to a single flat calibration bin
    (row-major over the variables, first variable slowest). Any variable out
    of range sends the event to INVALID_BIN.
    """

    def __init__(self, variables):
        self.variables = list(variables)
        if not self.variables:
            raise ValueError("An event class variables set needs at least one variable")
        self.shape = tuple(v.n_bins for v in self.variables)

    def __len__(self):
        return len(self.variables)

    @property
    def n_bins(self):
        return int(np.prod(self.shape))

    @property
    def labels(self):
        return [v.label for v in self.variables]

    def classify(self, variables):
        """
        Parameters
        ----------
        variables : sequence of float - per-event variable vector, indexed by var_id

        Returns
        -------
        int - flat bin index, or INVALID_BIN
        """
        idx = []
        for var in self.variables:
            ib = var.find_bin(variables[var.var_id])
            if ib == INVALID_BIN:
                return INVALID_BIN
            idx.append(ib)
        return int(np.ravel_multi_index(tuple(idx), self.shape))

    def bin_centres(self, axis=0):
        """Centres of the bins of one variable, for plotting."""
        edges = self.variables[axis].bin_edges
        return 0.5 * (edges[:-1] + edges[1:])
