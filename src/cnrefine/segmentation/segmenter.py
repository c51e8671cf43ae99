import importlib

import numpy as np
import scipy.stats

import cnrefine.tools as tools
import cnrefine.logutils as logutils
import cnrefine.params as libparams
import cnrefine.segmentation.cbs as cbs
from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.errors import RuntimeInvariantError


FAKE_LOGR_MAX_DIFF = 1e-4
FAKE_LOGR_FRACTION = 0.9
SEGMENT_COLUMNS = ['seg_mean', 'num_mark', 'size', 'pval']
UNDO_SD_RETRY_FACTOR = 1.5


##########################
# undo.SD auto selection #
##########################

def is_fake_log_ratio(log_ratio):
    """Heuristic: more than 90% of consecutive differences are below 1e-4,
    which is typical of log-ratios made from a given segmentation.
    """
    log_ratio = np.asarray(log_ratio, dtype=float)
    if len(log_ratio) == 0:
        return False
    nsmall = np.count_nonzero(np.abs(np.diff(log_ratio)) < FAKE_LOGR_MAX_DIFF)
    return (nsmall / len(log_ratio)) > FAKE_LOGR_FRACTION


def get_robust_sd(log_ratio):
    return tools.chunk_sd_median(log_ratio, size=25)


def get_dispersion_band(values, d):
    """0, 1, 2, 3 for a (d, 1 - d) quantile spread of <0.5, <1, <1.5, more"""
    values = np.asarray(values, dtype=float)
    values = values[~np.isnan(values)]
    qlow, qhigh = np.quantile(values, [d, 1 - d])
    spread = abs(qhigh - qlow)
    if spread < 0.5:
        return 0
    elif spread < 1:
        return 1
    elif spread < 1.5:
        return 2
    else:
        return 3


def get_sd_undo(log_ratio, min_logr_sdev=0.15, d=0.1):
    log_ratio = np.asarray(log_ratio, dtype=float)
    if is_fake_log_ratio(log_ratio):
        logutils.log(f'Log-ratios look like a given segmentation; setting undo.SD to 0.', level='info')
        return 0

    robust_sd = get_robust_sd(log_ratio)
    if (not np.isfinite(robust_sd)) or (robust_sd <= 0):
        multiplier = 2.0
    else:
        multiplier = round(min(2, max(1, min_logr_sdev / robust_sd)), 1)
    if multiplier > 1:
        logutils.log(
            f'Very clean log-ratios, will increase default undo.SD parameter by a factor of {multiplier:.1f}.',
            level='info',
        )

    band = get_dispersion_band(log_ratio, d)
    return (0.5, 0.75, 1.0, 1.25)[band] * multiplier


#############
# segmenter #
#############

class CBSSegmenter:
    """Segments log-ratios of sorted targets chromosome by chromosome.

    The default 'dnacopy' backend runs DNAcopy through rpy2; its stopping
    boundary table ("sbdry") is computed once at construction unless given.
    The 'python' backend (cnrefine.segmentation.cbs) is an approximation
    for environments without R.
    """

    def __init__(self, params=None, sbdry=None):
        if params is None:
            params = libparams.SegmentationParams()
        self.params = params.validate()

        if self.params.backend == 'dnacopy':
            self.rdnacopy = importlib.import_module('cnrefine.segmentation.rdnacopy')
            if sbdry is None:
                sbdry = self.params.sbdry
            if sbdry is None:
                logutils.log(f'Computing DNAcopy stopping boundaries...', level='info')
                sbdry = self.rdnacopy.get_sbdry(
                    eta=self.params.eta, nperm=self.params.nperm, alpha=self.params.alpha,
                )
        else:
            self.rdnacopy = None
        self.sbdry = sbdry

    def __repr__(self):
        return f'<CBSSegmenter (backend={self.params.backend}, alpha={self.params.alpha})>'

    def get_lengths(self, values, weights, undo_sd, rng, chrom):
        if self.rdnacopy is None:
            return cbs.run_cbs(
                values,
                weights=weights,
                alpha=self.params.alpha,
                nperm=self.params.nperm,
                min_width=self.params.min_width,
                undo_sd=undo_sd,
                rng=rng,
            )
        else:
            segdf = self.rdnacopy.run_dnacopy_segment(
                np.repeat(chrom, len(values)),
                np.arange(len(values)),
                values,
                weights=weights,
                alpha=self.params.alpha,
                nperm=self.params.nperm,
                eta=self.params.eta,
                min_width=self.params.min_width,
                undo_sd=undo_sd,
                sbdry=self.sbdry,
            )
            return segdf['num_mark'].to_numpy()

    def segment_once(self, targets, log_ratio, weights, undo_sd):
        rng = np.random.default_rng(self.params.seed)
        frames = list()
        for chrom, indexes in targets.group_bychrom().items():
            indexes = indexes[np.isfinite(log_ratio[indexes])]
            if len(indexes) == 0:
                continue

            values = log_ratio[indexes]
            subweights = (None if weights is None else weights[indexes])
            lengths = self.get_lengths(values, subweights, undo_sd, rng, chrom)
            frames.append(
                make_segments(targets, indexes, values, subweights, lengths)
            )

        if len(frames) == 0:
            return GenomeDataFrame.init_empty(
                chromhash=targets.chromhash, annot_cols=SEGMENT_COLUMNS,
            )
        return GenomeDataFrame.concat(frames)

    def segment(self, targets, log_ratio, weights=None):
        """Returns segments (GenomeDataFrame) with columns seg_mean,
        num_mark, size, pval. Start and End are those of the first and
        last target of each segment.
        """
        targets.ensure_sorted('targets')
        log_ratio = np.asarray(log_ratio, dtype=float)
        if len(log_ratio) != targets.nrow:
            raise RuntimeInvariantError(
                f'Number of log-ratios ({len(log_ratio)}) differs from the number of targets ({targets.nrow}).'
            )
        if weights is not None:
            weights = np.asarray(weights, dtype=float)
            if len(weights) != targets.nrow:
                raise RuntimeInvariantError(
                    f'Number of weights ({len(weights)}) differs from the number of targets ({targets.nrow}).'
                )
            if np.isnan(weights).any():
                # should not happen; counted as median
                weights = np.where(np.isnan(weights), np.nanmedian(weights), weights)
            if len(np.unique(weights)) > 1:
                logutils.log(f'Interval weights found, will use weighted CBS.', level='info')

        undo_sd = self.params.undo_sd
        if undo_sd is None:
            undo_sd = get_sd_undo(
                log_ratio[np.isfinite(log_ratio)],
                min_logr_sdev=self.params.min_logr_sdev,
            )

        ntry = 0
        while True:
            logutils.log(f'Setting undo.SD parameter to {undo_sd:f}.', level='info')
            seg = self.segment_once(targets, log_ratio, weights, undo_sd)
            if (
                (undo_sd <= 0)
                or (self.params.max_segments is None)
                or (seg.nrow < self.params.max_segments)
            ):
                break
            if ntry >= self.params.max_retries:
                logutils.log(
                    (
                        f'Segment count ({seg.nrow}) still reaches max_segments '
                        f'({self.params.max_segments}) after {ntry} retries; keeping the last result.'
                    ),
                    level='info',
                )
                break
            undo_sd *= UNDO_SD_RETRY_FACTOR
            ntry += 1

        return seg


def make_segments(targets, indexes, values, weights, lengths):
    """Segment rows of one chromosome from segment lengths in units of the
    targets given by "indexes"
    """
    if lengths.sum() != len(indexes):
        raise RuntimeInvariantError(f'Segment lengths do not add up to the number of targets.')

    ends = np.cumsum(lengths)
    starts = ends - lengths
    first_idxs = indexes[starts]
    last_idxs = indexes[ends - 1]

    if weights is None:
        weights = np.ones(len(values))
    seg_means = np.array(
        [np.average(values[s:e], weights=weights[s:e]) for s, e in zip(starts, ends)]
    )
    pvals = np.full(len(lengths), np.nan)
    for idx in range(len(lengths) - 1):
        left = values[starts[idx]:ends[idx]]
        right = values[starts[idx + 1]:ends[idx + 1]]
        pvals[idx] = get_breakpoint_pval(left, right)

    seg_starts = targets.starts[first_idxs]
    seg_ends = targets.ends[last_idxs]
    return GenomeDataFrame.from_data(
        targets.chroms[first_idxs],
        seg_starts,
        seg_ends,
        chromhash=targets.chromhash,
        seg_mean=seg_means,
        num_mark=lengths.astype(int),
        size=(seg_ends - seg_starts),
        pval=pvals,
    )


def get_breakpoint_pval(left, right):
    """Welch t-test between the log-ratios of two adjacent segments"""
    if (len(left) < 2) or (len(right) < 2):
        return np.nan
    if (np.ptp(left) == 0) and (np.ptp(right) == 0):
        return (1.0 if left[0] == right[0] else 0.0)
    return scipy.stats.ttest_ind(left, right, equal_var=False).pvalue
