import numpy as np
import pandas as pd


##########
# colors #
##########

COLORS = {
    'red':     '\033[38;5;196m',
    'orange':  '\033[38;5;9m',
    'yellow':  '\033[38;5;214m',
    'green':   '\033[38;5;40m',
    'cyan':    '\033[38;5;14m',
    'end':     '\033[0m',
}


##########
# arrays #
##########

def array_grouper(arr, omit_values=False, omit_counts=False):
    """- Does not sort before grouping, like itertools.groupby
    - Missing values are regarded as equal to each other
    - Returns: values (first row of each group), counts, groupkey
    """
    frame = pd.DataFrame(arr)
    assert frame.shape[0] > 0
    codes = np.stack(
        [pd.factorize(frame.iloc[:, idx])[0] for idx in range(frame.shape[1])],
        axis=1,
    )

    # make diff
    diff = np.empty(codes.shape[0], dtype=bool)
    diff[0] = True
    diff[1:] = (np.diff(codes, axis=0) != 0).any(axis=1)

    # groupkey
    groupkey = np.cumsum(diff) - 1
    indexes = np.nonzero(diff)[0]

    if omit_values:
        values = None
    else:
        values = frame.iloc[indexes, :].to_numpy()

    if omit_counts:
        counts = None
    else:
        counts = np.empty(len(indexes), dtype=int)
        counts[:-1] = np.diff(indexes)
        counts[-1] = codes.shape[0] - indexes[-1]

    return values, counts, groupkey


def nanaverage(values, weights):
    values = np.array(values, dtype=float)
    weights = np.array(weights, dtype=float)

    selector = ~np.isnan(values)
    if not selector.any():
        return np.nan
    return np.average(values[selector], weights=weights[selector])


def chunk_sd_median(values, size=25):
    """Median of the standard deviations of consecutive chunks of "size"
    values. Insensitive to a small number of level shifts.
    """
    values = np.asarray(values, dtype=float)
    nchunk = int(np.ceil(len(values) / size))
    sds = [
        np.nanstd(values[(idx * size):((idx + 1) * size)], ddof=1)
        for idx in range(nchunk)
        if np.count_nonzero(~np.isnan(values[(idx * size):((idx + 1) * size)])) > 1
    ]
    if len(sds) == 0:
        return np.nan
    return np.median(sds)


def logit(x):
    return np.log(x) - np.log1p(-x)


def expit(x):
    return 1 / (1 + np.exp(-x))
