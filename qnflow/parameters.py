import numpy as np

# Global settings for the Qn vector correction chain. Everything that has to
# match between calibration passes (keys, histogram names, binning) lives here.

# ── harmonics ─────────────────────────────────────────────────────────────────

# Harmonic vectors have fixed storage; harmonic numbers run 1..MAX_HARMONIC.
MAX_HARMONIC      = 8
DEFAULT_HARMONICS = [1, 2, 3, 4]

# Normalisation applied to the plain Qn vector once it is built from data vectors.
#   none    : raw sums  Q = sum_j w_j e^{i n phi_j}
#   sqrt_m  : Q / sqrt(M)
#   m       : Q / M
#   qlength : Q / |Q|
QN_NORMALIZATIONS     = ('none', 'sqrt_m', 'm', 'qlength')
DEFAULT_NORMALIZATION = 'none'

# Minimum number of data vectors for the plain Qn vector to be of good quality.
MIN_DATA_VECTORS = 1

# ── correction steps ──────────────────────────────────────────────────────────

# Steps run in ascending key order. Keys are short strings over a fixed
# alphabet so that input level corrections precede alignment, which precedes
# twist and rescale.
RECENTERING_NAME   = 'Recentering and width equalization'
RECENTERING_KEY    = 'CCCC'
ALIGNMENT_NAME     = 'Alignment'
ALIGNMENT_KEY      = 'EEEE'
TWIST_RESCALE_NAME = 'Twist and rescale'
TWIST_RESCALE_KEY  = 'HHHH'

# Label carried by each step's corrected vector (and so by the configuration
# corrected vector once the step writes into it).
PLAIN_VECTOR_NAME   = 'plain'
RECENTERED_NAME     = 'rec'
ALIGNED_NAME        = 'align'
TWIST_RESCALED_NAME = 'twist'

# ── calibration histograms ────────────────────────────────────────────────────

QN_HISTOGRAM_NAME   = 'Qn'
QNQN_HISTOGRAM_NAME = 'QnQn'
NVE_HISTOGRAM_NAME  = 'NvE'
TWIST_NVE_NAME      = 'TwScale NvE'
QA_HISTOGRAM_NAME   = 'QA'

# A calibration bin is used only if it has at least this many entries.
DEFAULT_MIN_ENTRIES       = 2
TWIST_DEFAULT_MIN_ENTRIES = 2

# Alignment is applied only for an XY-YX asymmetry of at least this many sigma.
SIGNIFICANCE_THRESHOLD = 2.0

# Sentinel bin for events outside the configured event class ranges.
INVALID_BIN = -1

# ── event classes ─────────────────────────────────────────────────────────────

# Centrality percentile edges, standard heavy-ion classes.
CENTRALITY_BINS = np.array([0, 5, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100], dtype=np.float64)

# Primary vertex z window [cm], 10 bins of 2 cm.
VERTEX_Z_BINS = np.linspace(-10.0, 10.0, 11)

# ── persistence ───────────────────────────────────────────────────────────────

CALIBRATION_FORMAT_VERSION = 1
HDF5_COMPRESSION           = 'gzip'
HDF5_COMPRESSION_OPTS      = 4
