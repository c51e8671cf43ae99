import numpy as np

import cnrefine.logutils as logutils
import cnrefine.sources as sources
import cnrefine.params as libparams
import cnrefine.segmentation.germline as libgermline
import cnrefine.segmentation.refine as refine
from cnrefine.segmentation.segmenter import CBSSegmenter
from cnrefine.genomedf.genomedf import GenomeDataFrame


FINAL_SEGMENT_COLUMNS = [
    'seg_mean', 'num_mark', 'size', 'seg_weight', 'weight_flagged', 'cluster_id',
]


def load_targets(targets, chromhash=None):
    targets = sources.resolve(
        targets, (lambda x: GenomeDataFrame.read_tsv(x, chromhash=chromhash)), name='Targets',
    )
    if chromhash is not None:
        targets = GenomeDataFrame(targets.df, chromhash=chromhash)
    return targets


def load_germline(germline, sample):
    return sources.resolve(
        germline, (lambda x: libgermline.load_germline_vcf(x, sample=sample)), name='Germline VCF',
    )


def debug_segmentation(orig_seg, final_seg):
    """Logs final segments whose coordinates are not found in "orig_seg"."""
    orig_coords = set(zip(orig_seg.chroms, orig_seg.starts, orig_seg.ends))
    for row in final_seg.df.itertuples(index=False):
        if (row.Chromosome, row.Start, row.End) not in orig_coords:
            logutils.log('\t'.join(str(x) for x in row), level='debug')


def segmentation_cbs(
    targets,
    log_ratio,
    germline=None,
    params=None,
    chromhash=None,
    segmenter=None,
):
    """CBS segmentation of target log-ratios, refined with germline
    variant allele fractions when "germline" is given.

    Args:
        targets: GenomeDataFrame (or TSV path) sorted by position, with
            optional columns "weight" and "on_target"
        log_ratio: one value per target
        germline: GenomeDataFrame with alt_fraction and depth columns, or a
            VCF path (sample chosen by params.tumor_id_in_vcf)
        chromhash: chromosome order used by every table; derived from the
            targets when not given

    Returns:
        GenomeDataFrame with columns seg_mean, num_mark, size, seg_weight,
        weight_flagged, cluster_id
    """
    if params is None:
        params = libparams.SegmentationParams()
    params.validate()

    with logutils.verbosity(params.verbose):
        targets = load_targets(targets, chromhash=chromhash)
        chromhash = targets.chromhash
        targets.ensure_sorted('targets')
        log_ratio = np.asarray(log_ratio, dtype=float)
        if 'weight' in targets.columns:
            weights = targets['weight'].astype(float)
        else:
            weights = None

        if segmenter is None:
            segmenter = CBSSegmenter(params)
        seg = segmenter.segment(targets, log_ratio, weights=weights)
        orig_seg = seg

        if germline is not None:
            germline = load_germline(germline, params.tumor_id_in_vcf)
            germline, chromhash = libgermline.harmonize_germline(germline, chromhash)
            targets = GenomeDataFrame(targets.df, chromhash=chromhash)
            seg = GenomeDataFrame(seg.df, chromhash=chromhash)

            seg = refine.prune_by_vcf(
                seg, germline,
                min_size=params.prune_min_size,
                max_pval=params.prune_max_pval,
                iterations=params.prune_iterations,
            )
            seg = refine.find_cnnloh(
                seg, germline, targets,
                alpha=params.alpha,
                min_variants=params.cnnloh_min_variants,
                iterations=params.cnnloh_iterations,
            )
            seg = refine.prune_by_hclust(
                seg, germline,
                h=params.prune_hclust_h,
                method=params.prune_hclust_method,
                min_variants=params.hclust_min_variants,
                iterations=params.hclust_iterations,
            )
        if 'cluster_id' not in seg.columns:
            seg = seg.assign(cluster_id=np.full(seg.nrow, np.nan))

        seg = seg.filter(seg['num_mark'] > 1)
        seg = refine.add_average_weights(
            seg, targets, weights,
            weight_flag_pvalue=params.weight_flag_pvalue,
            perm=params.weight_perm,
            max_run=params.weight_max_run,
            rng=np.random.default_rng(params.seed),
        )
        seg = refine.fix_breakpoints_in_baits(seg, targets, log_ratio)
        debug_segmentation(orig_seg, seg)

        logutils.log(f'Segmentation finished with {seg.nrow} segments.', level='info')
        return seg.choose_annots(FINAL_SEGMENT_COLUMNS)
