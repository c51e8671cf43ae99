import numpy as np
import pysam

import cnrefine.logutils as logutils
import cnrefine.sources as sources
import cnrefine.params as libparams
import cnrefine.refgenome as refgenome
import cnrefine.mappingbias.mappingbias as mappingbias
from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.errors import UserInputError


def filter_bias_table(bias_gdf, max_bias=0.2, min_pon=2, triallelic=False):
    """Keeps sites with |bias - 1| <= max_bias and pon_count >= min_pon.
    Triallelic sites are dropped unless "triallelic" is True.
    """
    with np.errstate(invalid='ignore'):
        selector = (np.abs(bias_gdf['bias'] - 1) <= max_bias)
    selector &= (bias_gdf['pon_count'] >= min_pon)
    if not triallelic:
        selector &= (~bias_gdf['triallelic'].astype(bool))
    return bias_gdf.filter(selector)


def find_high_quality_snps(
    bias,
    max_bias=0.2,
    min_pon=2,
    triallelic=False,
    vcf_path=None,
    verbose=None,
):
    """Args:
        bias: MappingBiasDataFrame, a path of a saved one, or a tagged
            source (sources.InMemoryTable / sources.FilePath)
        vcf_path: optional bgzipped and tabix-indexed VCF (e.g. dbSNP)

    Returns:
        Without "vcf_path", the passing rows of the bias table. Otherwise
        a GenomeDataFrame (columns ID, REF, ALT) of the VCF records whose
        coordinates equal those of a passing site.
    """
    libparams.SelectorParams(
        max_bias=max_bias, min_pon=min_pon, triallelic=triallelic,
    ).validate()

    with logutils.verbosity(verbose):
        bias_gdf = sources.resolve(bias, mappingbias.load_mapping_bias, name='Mapping bias')
        passed = filter_bias_table(
            bias_gdf, max_bias=max_bias, min_pon=min_pon, triallelic=triallelic,
        )
        logutils.log(
            f'{passed.nrow} of {bias_gdf.nrow} sites pass the mapping bias filters.',
            level='info',
        )
        if vcf_path is None:
            return passed
        else:
            return intersect_vcf(passed, vcf_path)


####################
# VCF intersection #
####################

def harmonize_chrom_style(gdf, vcf_contigs):
    """Renames chromosomes of "gdf" to the naming style of the VCF contigs
    (tabix sequence names), when the two styles differ.
    """
    if gdf.is_empty or (len(vcf_contigs) == 0):
        return gdf

    gdf_style = refgenome.detect_chrom_style(gdf.chromhash.contigs)
    vcf_style = refgenome.detect_chrom_style(vcf_contigs)
    if gdf_style == vcf_style:
        return gdf

    logutils.log(
        f'Converting chromosome names of the mapping bias table from {gdf_style} to {vcf_style} style.',
        level='info',
    )
    new_chroms = [refgenome.convert_chrom_style(x, vcf_style) for x in gdf.chroms]
    return gdf.set_chroms(new_chroms, gdf.chromhash.converted(vcf_style))


def get_merged_regions(gdf):
    """(chrom, start0, end0) of runs of overlapping or adjacent sites"""
    # slack 1 makes bookended sites merge
    merged = gdf.merge(slack=1)
    return list(zip(merged.chroms, merged.starts.tolist(), merged.ends.tolist()))


def get_indexed_contigs(vcf_path):
    """Sequence names of the tabix index"""
    try:
        with pysam.TabixFile(vcf_path) as tabixfile:
            return list(tabixfile.contigs)
    except (OSError, ValueError) as exc:
        raise UserInputError(f'VCF must be bgzipped and tabix indexed: {vcf_path}') from exc


def fetch_vcf_records(vcf_path, regions, chromhash, indexed_contigs):
    """Records starting within the regions, as a GenomeDataFrame"""
    indexed_contigs = set(indexed_contigs)
    chroms = list()
    starts = list()
    ends = list()
    ids = list()
    refs = list()
    alts = list()
    with pysam.VariantFile(vcf_path) as in_vcf:
        for chrom, start0, end0 in regions:
            if chrom not in indexed_contigs:
                continue
            for vr in in_vcf.fetch(chrom, start0, end0):
                if not (start0 <= vr.start < end0):
                    continue
                chroms.append(vr.contig)
                starts.append(vr.start)
                ends.append(vr.stop)
                ids.append(vr.id)
                refs.append(vr.ref)
                alts.append(','.join(vr.alts or ()))

    if len(chroms) == 0:
        return GenomeDataFrame.init_empty(
            chromhash=chromhash, annot_cols=['ID', 'REF', 'ALT'],
        )
    return GenomeDataFrame.from_data(
        chroms, starts, ends, chromhash=chromhash.extended(chroms),
        ID=ids, REF=refs, ALT=alts,
    ).sort()


def intersect_vcf(passed, vcf_path):
    vcf_path = sources.resolve(vcf_path, (lambda x: x), name='VCF')
    if not isinstance(vcf_path, str):
        raise UserInputError(f'vcf_path ({vcf_path!r}) must be a file path.')
    indexed_contigs = get_indexed_contigs(vcf_path)

    passed = harmonize_chrom_style(passed, indexed_contigs)
    if passed.is_empty:
        return GenomeDataFrame.init_empty(
            chromhash=passed.chromhash, annot_cols=['ID', 'REF', 'ALT'],
        )

    regions = get_merged_regions(passed)
    records = fetch_vcf_records(vcf_path, regions, passed.chromhash, indexed_contigs)
    if records.is_empty:
        return records

    record_idxs, _ = records.equal_join(passed)
    result = records.take(np.unique(record_idxs))
    logutils.log(
        f'{result.nrow} VCF records match a passing site.',
        level='info',
    )
    return result
