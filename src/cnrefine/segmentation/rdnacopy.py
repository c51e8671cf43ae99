import numpy as np

import rpy2.robjects as ro
from rpy2.robjects.packages import importr
from rpy2.robjects import pandas2ri


'''rpy2 package seems to utilize 'root' logger.
logutils uses a logger with another name, so that rpy2 log messages are not mixed in.
'''


DNACOPY = importr('DNAcopy')


def rdataframe_to_df(rdataframe):
    with (ro.default_converter + pandas2ri.converter).context():
        return ro.conversion.get_conversion().rpy2py(rdataframe)


def get_sbdry(eta=0.05, nperm=10000, alpha=0.005):
    """Stopping boundary table of the sequential permutation test"""
    max_ones = int(np.floor(nperm * alpha)) + 1
    return tuple(np.array(DNACOPY.getbdry(eta, nperm, max_ones), dtype=int))


def run_dnacopy_segment(
    chromosomes, positions, values,
    *,
    weights=None,
    alpha=0.005,
    nperm=10000,
    eta=0.05,
    min_width=2,
    undo_sd=None,
    sbdry=None,
    verbose=False,
):
    """Runs DNAcopy 'segment' and returns its output table with columns
    Chromosome, Start, End (0-based half-open marker positions), num_mark,
    seg_mean. Rows keep the input order of chromosomes.

    - Input positions are marker midpoints (0-based).
    """
    segment_kwargs = {
        'alpha': alpha,
        'nperm': nperm,
        'p_method': 'hybrid',
        'min_width': min_width,
        'eta': eta,
        'trim': 0.025,
        'verbose': int(verbose),
    }
    if (undo_sd is not None) and (undo_sd > 0):
        segment_kwargs['undo_splits'] = 'sdundo'
        segment_kwargs['undo_SD'] = undo_sd
    else:
        segment_kwargs['undo_splits'] = 'none'
    if sbdry is None:
        sbdry = get_sbdry(eta=eta, nperm=nperm, alpha=alpha)
    segment_kwargs['sbdry'] = ro.IntVector(sbdry)
    if weights is not None:
        segment_kwargs['weights'] = ro.FloatVector(weights)

    # main
    arg_chrom = ro.StrVector(chromosomes)
    arg_pos = ro.IntVector(positions)
    arg_value = ro.FloatVector(values)

    cnaobj = DNACOPY.CNA(arg_value, arg_chrom, arg_pos, data_type='logratio')
    segresult = DNACOPY.segment(cnaobj, **segment_kwargs)

    # turn into pandas dataframe
    segdf = rdataframe_to_df(segresult.rx2['output'])
    # segdf columns: ID, chrom, loc.start, loc.end, num.mark, seg.mean

    segdf.drop('ID', axis=1, inplace=True)
    segdf.rename(
        columns={
            'chrom': 'Chromosome',
            'loc.start': 'Start',  # 0-based closed interval
            'loc.end': 'End',  # 0-based closed interval
            'num.mark': 'num_mark',
            'seg.mean': 'seg_mean',
        },
        inplace=True
    )
    segdf['End'] = segdf['End'] + 1  # to make into 0-based half-open system
    segdf['num_mark'] = segdf['num_mark'].astype(int)
    segdf.reset_index(drop=True, inplace=True)

    return segdf
