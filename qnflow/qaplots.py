import os

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import matplotlib.cm as cm

from qnflow.histograms import HistogramCounts
from qnflow.parameters import QA_HISTOGRAM_NAME, PLAIN_VECTOR_NAME


###################################################### Qn MEANS ###########################################################

def plot_qn_means(qa_store, configuration, output_dir, harmonic=None):
    """
    Per event class <Qx> and <Qy> of the plain vector and after each step,
    for one configuration. After recentering both should sit on zero.

    Parameters
    ----------
    qa_store      : dict - manager.qa_output
    configuration : DetectorConfiguration
    output_dir    : str  - figures directory, created if missing
    harmonic      : int  - harmonic to show, default the first active one

    Returns
    -------
    str - path of the saved figure
    """
    os.makedirs(output_dir, exist_ok=True)
    if harmonic is None:
        harmonic = int(configuration.harmonics[0])

    labels = [PLAIN_VECTOR_NAME] + [s.corrected_vector_name for s in configuration.steps]
    hists  = [(lab, qa_store.get(f"{QA_HISTOGRAM_NAME} {lab} {configuration.name}")) for lab in labels]
    hists  = [(lab, h) for lab, h in hists if h is not None and h.has_harmonic(harmonic)]

    fig, axes = plt.subplots(1, 2, figsize=(12, 5))
    colors    = cm.plasma(np.linspace(0.1, 0.9, max(len(hists), 1)))

    for (lab, hist), color in zip(hists, colors):
        xbins = np.arange(hist.event_classes.n_bins)
        col   = list(hist.harmonics).index(harmonic)
        for ax, channel in zip(axes, ('X', 'Y')):
            means = hist.mean_map(channel)[:, col]
            ok    = np.isfinite(means)
            ax.plot(xbins[ok], means[ok], 'o-', ms=3, color=color, label=lab)

    for ax, channel in zip(axes, ('x', 'y')):
        ax.axhline(0.0, color='grey', lw=0.8, ls='--')
        ax.set_xlabel('Event class bin')
        ax.set_ylabel(rf'$\langle Q_{{{harmonic},{channel}}} \rangle$')
        ax.set_title(f"{configuration.name}  n={harmonic}")
        ax.legend(fontsize=7)

    plt.tight_layout()
    path = os.path.join(output_dir, f'qn_means_{configuration.name}_h{harmonic}.pdf')
    plt.savefig(path)
    plt.close(fig)
    print(f"Saved {path}")
    return path

###################################################### NOT VALIDATED ###########################################################

def plot_not_validated(qa_store, output_dir):
    """
    Counts of events that fell into non-validated calibration bins, one
    curve per not-validated-entries histogram in the store.

    Returns
    -------
    str or None - path of the saved figure, None if the store has no such histogram
    """
    nve = [(name, h) for name, h in qa_store.items() if isinstance(h, HistogramCounts)]
    if not nve:
        print("No not-validated-entries histograms to plot")
        return None

    os.makedirs(output_dir, exist_ok=True)
    fig, ax = plt.subplots(figsize=(8, 5))
    colors  = cm.plasma(np.linspace(0.1, 0.9, len(nve)))

    for (name, hist), color in zip(nve, colors):
        counts = hist.counts()
        ax.step(np.arange(len(counts)), counts, where='mid', color=color, label=name)

    ax.set_xlabel('Event class bin')
    ax.set_ylabel('Not validated entries')
    ax.set_title('Events in non-validated calibration bins')
    ax.legend(fontsize=7)
    plt.tight_layout()
    path = os.path.join(output_dir, 'not_validated_entries.pdf')
    plt.savefig(path)
    plt.close(fig)
    print(f"Saved {path}")
    return path
