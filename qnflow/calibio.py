import numpy as np
import h5py

from qnflow.eventclasses import EventClassVariable, EventClassVariablesSet
from qnflow.histograms import HISTOGRAM_KINDS, CorrelationComponents, HistogramCounts
from qnflow.parameters import (CALIBRATION_FORMAT_VERSION, HDF5_COMPRESSION,
                               HDF5_COMPRESSION_OPTS)


# ══════════════════════════════════════════════════════════════════════════════
# HDF5 persistence of calibration histograms
# ══════════════════════════════════════════════════════════════════════════════

def save_hdf5(filename, store, n_events=0, pass_label='calibration'):
    """
    Write a histogram store (calibration output of a pass) to HDF5.

    File structure
    --------------
    /metadata/
        attrs: format_version, n_events, pass_label, n_histograms
    /histograms/<index>/
        attrs: name, kind, channels, harmonics, error_mode,
               variable_ids, variable_labels, bin_edges_<i>
        sum     : float64 (n_channels, n_bins, n_harmonics)
        sum2    : float64 (n_channels, n_bins, n_harmonics)
        entries : int64   (n_channels, n_bins, n_harmonics)

    Groups are indexed rather than named after the histograms because
    histogram names contain spaces and are not meant as HDF5 paths.

    Parameters
    ----------
    filename   : str  - output HDF5 file path
    store      : dict - {histogram name: ChannelProfile}
    n_events   : int  - number of events the pass processed
    pass_label : str  - free label for the pass
    """
    with h5py.File(filename, 'w') as f:

        # ── metadata group ─────────────────────────────────────────────────
        meta = f.create_group('metadata')
        meta.attrs['format_version'] = CALIBRATION_FORMAT_VERSION
        meta.attrs['n_events']       = n_events
        meta.attrs['pass_label']     = pass_label
        meta.attrs['n_histograms']   = len(store)

        # ── histograms ─────────────────────────────────────────────────────
        hgrp = f.create_group('histograms')
        for ih, (name, hist) in enumerate(store.items()):
            grp = hgrp.create_group(f'{ih:04d}')
            grp.attrs['name']       = name
            grp.attrs['kind']       = hist.kind
            grp.attrs['channels']   = list(hist.channels)
            grp.attrs['harmonics']  = np.asarray(hist.harmonics, dtype=np.int64)
            grp.attrs['error_mode'] = hist.error_mode

            ec = hist.event_classes
            grp.attrs['variable_ids']    = np.array([v.var_id for v in ec.variables], dtype=np.int64)
            grp.attrs['variable_labels'] = ec.labels
            for iv, var in enumerate(ec.variables):
                grp.attrs[f'bin_edges_{iv}'] = var.bin_edges

            for key in ('sum', 'sum2', 'entries'):
                grp.create_dataset(key, data=getattr(hist, key),
                                   compression=HDF5_COMPRESSION,
                                   compression_opts=HDF5_COMPRESSION_OPTS)


def _event_classes_from_attrs(grp):
    ids    = grp.attrs['variable_ids']
    labels = [str(l) for l in grp.attrs['variable_labels']]
    return EventClassVariablesSet([
        EventClassVariable(int(ids[iv]), labels[iv], grp.attrs[f'bin_edges_{iv}'])
        for iv in range(len(ids))
    ])


def load_hdf5(filename):
    """
    Load a histogram store written by save_hdf5(), to be attached as the
    calibration input of the next pass.

    Returns
    -------
    store : dict {histogram name: ChannelProfile subclass instance}
    meta  : dict - the /metadata attributes
    """
    store = {}
    with h5py.File(filename, 'r') as f:
        if 'metadata' not in f or 'histograms' not in f:
            raise KeyError(f"{filename} is not a calibration file: "
                           f"expected /metadata and /histograms, found {list(f.keys())}")
        meta = {k: v for k, v in f['metadata'].attrs.items()}
        if int(meta.get('format_version', -1)) != CALIBRATION_FORMAT_VERSION:
            raise ValueError(
                f"Calibration format version {meta.get('format_version')} in {filename}, "
                f"expected {CALIBRATION_FORMAT_VERSION}"
            )

        for key in sorted(f['histograms'].keys()):
            grp  = f[f'histograms/{key}']
            name = str(grp.attrs['name'])
            kind = str(grp.attrs['kind'])
            if kind not in HISTOGRAM_KINDS:
                raise ValueError(f"Unknown histogram kind '{kind}' for '{name}' in {filename}")

            ec        = _event_classes_from_attrs(grp)
            harmonics = [int(h) for h in grp.attrs['harmonics']]
            mode      = str(grp.attrs['error_mode'])
            cls       = HISTOGRAM_KINDS[kind]

            if cls is CorrelationComponents:
                hist = cls(name, ec, harmonics[0], error_mode=mode)
            elif cls is HistogramCounts:
                hist = cls(name, ec)
            elif kind == 'profile':
                hist = cls(name, ec, [str(c) for c in grp.attrs['channels']], harmonics, mode)
            else:
                hist = cls(name, ec, harmonics, error_mode=mode)

            hist.sum[...]     = grp['sum'][:]
            hist.sum2[...]    = grp['sum2'][:]
            hist.entries[...] = grp['entries'][:]
            store[name] = hist

    return store, meta


def inspect_hdf5(filename):
    """Print the full structure of a calibration file."""
    with h5py.File(filename, 'r') as f:

        print(f"File: {filename}")
        print("=" * 55)

        def print_tree(name, obj):
            indent = '  ' * name.count('/')
            if isinstance(obj, h5py.Group):
                print(f"{indent}[GROUP]  /{name}")
                for k, v in obj.attrs.items():
                    print(f"{indent}  attr: {k} = {v}")
            elif isinstance(obj, h5py.Dataset):
                print(f"{indent}[DATA]   /{name}  shape={obj.shape}  dtype={obj.dtype}")

        f.visititems(print_tree)
