"""Refinement of CBS segments with germline variant allele fractions.

Every step takes a segment table (GenomeDataFrame with seg_mean, num_mark,
size and, where needed, pval and cluster_id) and returns a new one.
"""

import numpy as np
import pandas as pd
import scipy.stats
import scipy.cluster.hierarchy

import cnrefine.tools as tools
import cnrefine.deco as deco
import cnrefine.logutils as logutils
import cnrefine.params as libparams
import cnrefine.segmentation.germline as libgermline
import cnrefine.segmentation.segmenter as segmenter
from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.errors import UserInputError, RuntimeInvariantError


PRUNE_MERGE_MIN_PVAL = 0.2
CNNLOH_MIN_DIFF = 0.05
CNNLOH_MIN_DIFF_LARGE = 0.025
CNNLOH_MIN_FRACTION = 0.05
PRUNE_H_VALUES = (0.1, 0.15, 0.2, 0.25)


def welch_pval(x1, x2):
    return scipy.stats.ttest_ind(x1, x2, equal_var=False).pvalue


######################
# breakpoint pruning #
######################

@deco.get_deco_arg_range({'max_pval': (0, 1)})
def prune_by_vcf(seg, germline, min_size=5, max_pval=1e-5, iterations=3):
    """Merges adjacent segments whose breakpoint is not highly significant
    and whose reflected VAFs do not differ (Welch t-test p > 0.2).
    """
    for iteration in range(iterations):
        groups = seg.get_overlap_groups(germline)
        reflected = libgermline.get_reflected(germline)

        chroms = seg.chroms
        seg_means = seg['seg_mean'].astype(float)
        num_marks = seg['num_mark'].astype(int)
        sizes = seg['size'].astype(int)
        ends = seg.ends.copy()
        pvals = seg['pval'].astype(float)

        merged = np.zeros(seg.nrow, dtype=bool)
        for idx in range(1, seg.nrow):
            if chroms[idx] != chroms[idx - 1]:
                continue
            # very significant breakpoints are kept
            if np.isnan(pvals[idx - 1]) or (pvals[idx - 1] < max_pval):
                continue
            if (len(groups[idx]) < min_size) or (len(groups[idx - 1]) < min_size):
                continue
            if merged[idx - 1]:
                continue

            pval = welch_pval(reflected[groups[idx]], reflected[groups[idx - 1]])
            if pval > PRUNE_MERGE_MIN_PVAL:
                merged[idx] = True
                if (num_marks[idx] + num_marks[idx - 1]) > 0:
                    seg_means[idx - 1] = np.average(
                        [seg_means[idx], seg_means[idx - 1]],
                        weights=[num_marks[idx], num_marks[idx - 1]],
                    )
                num_marks[idx - 1] += num_marks[idx]
                sizes[idx - 1] += sizes[idx]
                ends[idx - 1] = ends[idx]
                pvals[idx - 1] = pvals[idx]

            logutils.log(
                (
                    f'{chroms[idx]}:{seg.starts[idx] + 1} LR diff: '
                    f'{abs(seg_means[idx] - seg_means[idx - 1]):.3f}, VAF t-test p: {pval:.3g}, '
                    f'merged: {merged[idx]}'
                ),
                level='debug',
            )

        if not merged.any():
            break

        logutils.log(f'Pruning pass {iteration + 1}: merged {merged.sum()} breakpoint(s).', level='debug')
        seg = seg.assign(
            End=ends, seg_mean=seg_means, num_mark=num_marks, size=sizes, pval=pvals,
        ).filter(~merged)

    return seg


##################
# CNN-LOH search #
##################

def find_cnnloh_split(reflected, min_variants=7, alpha=0.005):
    """Returns the number of variants in the first half of the best split,
    or None if the split is not significant.
    """
    nvar = len(reflected)
    if nvar < 2 * min_variants:
        return None

    min_half = max(min_variants, int(nvar * CNNLOH_MIN_FRACTION))
    candidates = np.arange(min_half, nvar - min_half + 1)
    if len(candidates) == 0:
        return None
    sd_sums = [
        np.std(reflected[:k], ddof=1) + np.std(reflected[k:], ddof=1)
        for k in candidates
    ]
    split = candidates[int(np.argmin(sd_sums))]

    x1 = reflected[:split]
    x2 = reflected[split:]
    diff = abs(x1.mean() - x2.mean())
    pval = welch_pval(x1, x2)
    if np.isnan(pval) or pval >= alpha:
        return None
    if (
        (diff > CNNLOH_MIN_DIFF)
        or ((diff > CNNLOH_MIN_DIFF_LARGE) and (min(len(x1), len(x2)) > min_variants * 3))
    ):
        return split
    return None


@deco.get_deco_arg_range({'alpha': (0, 1)})
def find_cnnloh(seg, germline, targets, alpha=0.005, min_variants=7, iterations=2):
    """Splits segments with a shift of reflected VAF. The new boundary is
    the End of the last variant of the first half.
    """
    for iteration in range(iterations):
        groups = seg.get_overlap_groups(germline)
        reflected = libgermline.get_reflected(germline)

        row_idxs = list()
        new_starts = list()
        new_ends = list()
        nsplit = 0
        for idx, group in enumerate(groups):
            split = find_cnnloh_split(reflected[group], min_variants=min_variants, alpha=alpha)
            boundary = (None if split is None else germline.ends[group[split - 1]])
            if (boundary is None) or not (seg.starts[idx] < boundary < seg.ends[idx]):
                row_idxs.append(idx)
                new_starts.append(seg.starts[idx])
                new_ends.append(seg.ends[idx])
                continue

            logutils.log(
                f'CNN-LOH split of {seg.chroms[idx]}:{seg.starts[idx] + 1}-{seg.ends[idx]} at {boundary}',
                level='debug',
            )
            row_idxs.extend([idx, idx])
            new_starts.extend([seg.starts[idx], boundary])
            new_ends.extend([boundary, seg.ends[idx]])
            nsplit += 1

        if nsplit == 0:
            break

        new_starts = np.array(new_starts)
        new_ends = np.array(new_ends)
        seg = seg.take(row_idxs).assign(
            Start=new_starts, End=new_ends, size=(new_ends - new_starts),
        )
        seg = update_num_mark(seg, targets)

    return seg


def update_num_mark(seg, targets):
    """num_mark = number of target midpoints whose first overlapping
    segment is this one
    """
    midpoints = targets.get_midpoints()
    points = GenomeDataFrame.from_data(
        targets.chroms, midpoints, midpoints + 1, chromhash=targets.chromhash,
    ).sort()
    first_hits = points.find_first(seg)
    counts = np.bincount(first_hits[first_hits >= 0], minlength=seg.nrow)
    return seg.assign(num_mark=counts.astype(int))


#####################
# dosage clustering #
#####################

def get_prune_h(seg, d=0.05):
    seg = seg.filter(seg['num_mark'] >= 1)
    log_ratio = np.repeat(seg['seg_mean'], seg['num_mark'].astype(int))
    log_ratio = log_ratio[~np.isnan(log_ratio)]
    if len(log_ratio) == 0:
        return PRUNE_H_VALUES[0]

    return PRUNE_H_VALUES[segmenter.get_dispersion_band(log_ratio, d)]


def get_dosages(groups, reflected, depths):
    """sqrt(depth)-weighted mean reflected VAF of each segment"""
    dosages = np.full(len(groups), np.nan)
    for idx, group in enumerate(groups):
        if len(group) == 0:
            continue
        weights = np.sqrt(depths[group])
        weights[np.isnan(weights)] = 0
        if weights.sum() == 0:
            dosages[idx] = np.nanmean(reflected[group])
        else:
            dosages[idx] = tools.nanaverage(reflected[group], weights)
    return dosages


@deco.get_deco_arg_choices({'method': libparams.HCLUST_METHODS})
def cluster_segments(seg_means, dosages, h, method):
    """Returns cluster labels from cutting the dendrogram at height "h"."""
    data = np.stack([seg_means, dosages], axis=1)
    linkage = scipy.cluster.hierarchy.linkage(data, method=method)
    return scipy.cluster.hierarchy.fcluster(linkage, t=h, criterion='distance')


def prune_by_hclust(seg, germline, h=None, method='ward', min_variants=5, iterations=2):
    """Hierarchical clustering of (seg_mean, dosage) of all segments with
    variants; clusters keep only segments with at least "min_variants"
    variants. Members of multi-segment clusters share the num_mark-weighted
    mean and a cluster_id. Run-adjacent segments of one cluster are merged.
    """
    if h is None:
        h = get_prune_h(seg)
        logutils.log(f'Setting prune_hclust_h parameter to {h:f}.', level='info')

    for iteration in range(iterations):
        groups = seg.get_overlap_groups(germline)
        num_variants = np.array([len(x) for x in groups], dtype=int)
        if num_variants.sum() == 0:
            raise UserInputError(f'Segmentation and VCF do not overlap.')

        dosages = get_dosages(
            groups, libgermline.get_reflected(germline), germline['depth'].astype(float),
        )
        seg_means = seg['seg_mean'].astype(float)
        num_marks = seg['num_mark'].astype(int)
        cluster_ids = np.full(seg.nrow, np.nan)

        # the dendrogram includes segments with few variants; they are
        # dropped from the clusters afterwards
        finite_idxs = np.nonzero(~np.isnan(dosages) & ~np.isnan(seg_means))[0]
        if len(finite_idxs) >= 2:
            labels = cluster_segments(
                seg_means[finite_idxs], dosages[finite_idxs], h, method,
            )
            cluster_num = 0
            for label in pd.unique(labels):
                members = finite_idxs[labels == label]
                members = members[num_variants[members] >= min_variants]
                if len(members) < 2:
                    continue
                cluster_num += 1
                cluster_ids[members] = cluster_num
                if num_marks[members].sum() > 0:
                    seg_means[members] = np.average(seg_means[members], weights=num_marks[members])
                else:
                    seg_means[members] = seg_means[members].mean()

        # unclustered segments never merge
        merge_keys = np.where(
            np.isnan(cluster_ids), -np.arange(1, seg.nrow + 1), cluster_ids,
        )
        nrow_before = seg.nrow
        seg = (
            seg.assign(seg_mean=seg_means, cluster_id=cluster_ids, merge_key=merge_keys)
            .merge_byannot('merge_key', sum_cols=['num_mark', 'size'])
            .drop_annots(['merge_key'])
        )
        logutils.log(
            f'Clustering pass {iteration + 1}: {nrow_before} -> {seg.nrow} segments.',
            level='debug',
        )

    return seg


###########
# weights #
###########

def get_average_weight_pvals(seg_weights, num_marks, weights, perm=2000, max_run=25, rng=None):
    """For each segment, the fraction of random runs of "num_mark"
    consecutive target weights whose mean is below the segment's mean
    weight. Runs longer than "max_run" are scored as 0.
    """
    if rng is None:
        rng = np.random.default_rng(0)
    weights = np.asarray(weights, dtype=float)
    nweight = len(weights)
    perm = min(nweight, perm)

    valid = ~np.isnan(weights)
    csum = np.concatenate([[0], np.cumsum(np.where(valid, weights, 0))])
    ccount = np.concatenate([[0], np.cumsum(valid)])

    null_means = dict()
    for num_mark in np.unique(num_marks):
        num_mark = int(num_mark)
        if num_mark > max_run:
            null_means[num_mark] = np.zeros(perm)
            continue
        run_length = max(num_mark, 1)
        run_starts = rng.choice(nweight, size=perm, replace=False)
        run_starts = np.minimum(run_starts, max(nweight - run_length, 0))
        run_ends = np.minimum(run_starts + run_length, nweight)
        with np.errstate(invalid='ignore', divide='ignore'):
            null_means[num_mark] = (
                (csum[run_ends] - csum[run_starts]) / (ccount[run_ends] - ccount[run_starts])
            )

    pvals = np.array(
        [
            np.count_nonzero(seg_weight > null_means[int(num_mark)]) / perm
            for seg_weight, num_mark in zip(seg_weights, num_marks)
        ]
    )
    return pvals


@deco.get_deco_arg_range({'weight_flag_pvalue': (0, 1)})
def add_average_weights(
    seg, targets, weights=None, weight_flag_pvalue=0.01, perm=2000, max_run=25, rng=None,
):
    """Adds seg_weight (mean weight of overlapping targets) and
    weight_flagged. Uniform or missing weights give seg_weight 1 and
    weight_flagged NA.
    """
    if weights is not None:
        weights = np.asarray(weights, dtype=float)
    if (weights is None) or (len(np.unique(weights[~np.isnan(weights)])) < 2):
        return seg.assign(
            seg_weight=np.ones(seg.nrow),
            weight_flagged=pd.array([pd.NA] * seg.nrow, dtype='boolean'),
        )

    groups = seg.get_overlap_groups(targets)
    if any(len(x) == 0 for x in groups):
        raise RuntimeInvariantError(f'Could not find weights for all segments.')
    seg_weights = np.array([np.nanmean(weights[x]) for x in groups])

    pvals = get_average_weight_pvals(
        seg_weights, seg['num_mark'].astype(int), weights,
        perm=perm, max_run=max_run, rng=rng,
    )
    return seg.assign(
        seg_weight=seg_weights,
        weight_flagged=pd.array(pvals < weight_flag_pvalue, dtype='boolean'),
    )


##############################
# breakpoints within targets #
##############################

def fix_breakpoints_in_baits(seg, targets, log_ratio):
    """A target overlapping two segments is given wholly to the segment
    whose mean is closer to the target's log-ratio.
    """
    log_ratio = np.asarray(log_ratio, dtype=float)
    if len(log_ratio) != targets.nrow:
        raise RuntimeInvariantError(f'Targets and log-ratios do not align.')
    if seg.is_empty:
        return seg

    first_hits = targets.find_first(seg)
    last_hits = targets.find_last(seg)
    if 'on_target' in targets.columns:
        on_target = targets['on_target'].astype(bool)
    else:
        on_target = np.ones(targets.nrow, dtype=bool)

    straddling = np.nonzero(
        (first_hits >= 0) & (first_hits != last_hits) & on_target & ~np.isnan(log_ratio)
    )[0]
    if len(straddling) == 0:
        return seg

    seg_means = seg['seg_mean']
    starts = seg.starts.copy()
    ends = seg.ends.copy()
    for idx in straddling:
        left = first_hits[idx]
        right = last_hits[idx]
        if abs(log_ratio[idx] - seg_means[left]) < abs(log_ratio[idx] - seg_means[right]):
            boundary = targets.ends[idx]
        else:
            boundary = targets.starts[idx]

        if (starts[left] < boundary) and (boundary < ends[right]):
            ends[left] = boundary
            starts[right] = boundary

    return seg.assign(Start=starts, End=ends)
