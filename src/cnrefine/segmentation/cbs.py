"""Approximate circular binary segmentation of one chromosome, used by
the 'python' backend when R and DNAcopy are not available. Segmentation
defaults to DNAcopy (cnrefine.segmentation.rdnacopy).

Only the arc between the extremes of the centered cumulative sum is
tested, so short focal events next to larger shifts can be missed.

Arc statistic: for values x with weights w and centered partial sums
S_k = sum_{i<k} w_i (x_i - xbar_w), the arc [i, j) maximizing |S_j - S_i|
lies between argmin(S) and argmax(S). Its statistic is
(S_j - S_i)^2 * W / (W_ij * (W - W_ij)), compared against the same
statistic of random permutations of (x, w).
"""

import numpy as np
import scipy.stats

import cnrefine.logutils as logutils


DEFAULT_NPERM = 10000
PERM_BLOCK_SIZE = 500
TRIM = 0.025


##################
# arc statistics #
##################

def get_arc_stats(values, weights):
    """Args:
        values, weights: 2d arrays (nrow, n); each row is scored separately

    Returns: (stats, arc_starts, arc_ends), arcs as half-open indexes
    """
    wsum = weights.sum(axis=1, keepdims=True)
    wmean = (values * weights).sum(axis=1, keepdims=True) / wsum

    nrow, n = values.shape
    csum = np.zeros((nrow, n + 1))
    csum[:, 1:] = np.cumsum(weights * (values - wmean), axis=1)
    wcsum = np.zeros((nrow, n + 1))
    wcsum[:, 1:] = np.cumsum(weights, axis=1)

    argmins = np.argmin(csum, axis=1)
    argmaxs = np.argmax(csum, axis=1)
    arc_starts = np.minimum(argmins, argmaxs)
    arc_ends = np.maximum(argmins, argmaxs)

    rows = np.arange(nrow)
    arc_sums = csum[rows, arc_ends] - csum[rows, arc_starts]
    arc_wsums = wcsum[rows, arc_ends] - wcsum[rows, arc_starts]
    wtotal = wsum[:, 0]
    with np.errstate(divide='ignore', invalid='ignore'):
        stats = (arc_sums ** 2) * wtotal / (arc_wsums * (wtotal - arc_wsums))
    stats[~np.isfinite(stats)] = 0

    return stats, arc_starts, arc_ends


def permutation_test(values, weights, observed, nperm, alpha, rng):
    """Returns True when fewer than floor(nperm * alpha) + 1 permutations
    reach the observed statistic. Stops as soon as that count is reached.
    """
    max_exceed = int(np.floor(nperm * alpha)) + 1
    n = len(values)
    nexceed = 0
    ndone = 0
    while ndone < nperm:
        blocksize = min(PERM_BLOCK_SIZE, nperm - ndone)
        perm_idxs = rng.permuted(np.tile(np.arange(n), (blocksize, 1)), axis=1)
        perm_stats, _, _ = get_arc_stats(values[perm_idxs], weights[perm_idxs])
        nexceed += np.count_nonzero(perm_stats >= observed)
        if nexceed >= max_exceed:
            return False
        ndone += blocksize

    return True


def find_change(values, weights, nperm, alpha, min_width, rng):
    """Returns the significant arc (start, end) of values, or None"""
    n = len(values)
    if n < 2 * min_width:
        return None

    stats, arc_starts, arc_ends = get_arc_stats(values[np.newaxis, :], weights[np.newaxis, :])
    observed = stats[0]
    start = arc_starts[0]
    end = arc_ends[0]
    if observed <= 0:
        return None

    # arcs too close to either end are extended to the end
    if start < min_width:
        start = 0
    if n - end < min_width:
        end = n
    if (end - start < min_width) or (end - start == n):
        return None

    if not permutation_test(values, weights, observed, nperm, alpha, rng):
        return None

    return start, end


def segment_values(values, weights=None, alpha=0.005, nperm=DEFAULT_NPERM, min_width=2, rng=None):
    """Returns segment lengths (summing to len(values)) from recursive
    circular binary segmentation.
    """
    values = np.asarray(values, dtype=float)
    if weights is None:
        weights = np.ones(len(values))
    weights = np.asarray(weights, dtype=float)
    if rng is None:
        rng = np.random.default_rng(0)

    lengths = list()
    stack = [(0, len(values))]
    while stack:
        start0, end0 = stack.pop()
        change = find_change(
            values[start0:end0], weights[start0:end0],
            nperm=nperm, alpha=alpha, min_width=min_width, rng=rng,
        )
        if change is None:
            lengths.append((start0, end0 - start0))
            continue

        arc_start, arc_end = change
        pieces = [
            (start0 + x, start0 + y)
            for x, y in ((0, arc_start), (arc_start, arc_end), (arc_end, end0 - start0))
            if y > x
        ]
        # reversed so that the leftmost piece is segmented first
        stack.extend(reversed(pieces))

    lengths.sort()
    return np.array([x[1] for x in lengths], dtype=int)


########
# undo #
########

def get_inflation_factor(trim=TRIM):
    """Inverse of the variance of a standard normal truncated at the
    (trim, 1 - trim) quantiles
    """
    a = scipy.stats.norm.ppf(1 - trim)
    kept = 1 - 2 * trim
    return kept / (kept - 2 * a * scipy.stats.norm.pdf(a))


def get_trimmed_sd(values, trim=TRIM):
    """SD from the smallest (1 - 2 * trim) fraction of absolute first
    differences, corrected for the trimming.
    """
    values = np.asarray(values, dtype=float)
    n = len(values)
    if n < 2:
        return 0
    nkeep = int(round((1 - 2 * trim) * (n - 1)))
    if nkeep < 1:
        return 0
    absdiffs = np.sort(np.abs(np.diff(values)))[:nkeep]
    variance = get_inflation_factor(trim) * np.sum(absdiffs ** 2 / (2 * nkeep))
    return np.sqrt(variance)


def undo_splits_sd(values, lengths, undo_sd, trimmed_sd=None):
    """Removes change points between adjacent segments whose medians
    differ by less than undo_sd * trimmed_sd, smallest difference first.
    """
    if trimmed_sd is None:
        trimmed_sd = get_trimmed_sd(values)
    threshold = undo_sd * trimmed_sd

    ends = list(np.cumsum(lengths))
    while len(ends) > 1:
        starts = [0] + ends[:-1]
        medians = np.array([np.median(values[s:e]) for s, e in zip(starts, ends)])
        absdiffs = np.abs(np.diff(medians))
        min_diff = absdiffs.min()
        if min_diff >= threshold:
            break
        remove = set(np.nonzero(absdiffs == min_diff)[0])
        ends = [x for idx, x in enumerate(ends) if idx not in remove]

    return np.diff([0] + ends)


########
# main #
########

def run_cbs(
    values,
    weights=None,
    alpha=0.005,
    nperm=DEFAULT_NPERM,
    min_width=2,
    undo_sd=None,
    rng=None,
):
    """CBS of one chromosome followed by the undo step when "undo_sd" is
    positive. Returns segment lengths.
    """
    values = np.asarray(values, dtype=float)
    if len(values) == 0:
        return np.array([], dtype=int)

    lengths = segment_values(
        values, weights=weights, alpha=alpha, nperm=nperm, min_width=min_width, rng=rng,
    )
    if (undo_sd is not None) and (undo_sd > 0) and (len(lengths) > 1):
        nseg_before = len(lengths)
        lengths = undo_splits_sd(values, lengths, undo_sd)
        logutils.log(
            f'undo.SD step removed {nseg_before - len(lengths)} of {nseg_before - 1} change points.',
            level='debug',
        )

    return lengths
