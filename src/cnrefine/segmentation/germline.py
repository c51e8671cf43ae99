"""Germline variant allele fractions of the tumor sample"""

import numpy as np
import pysam

import cnrefine.refgenome as refgenome
from cnrefine.refgenome import ChromHash
from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.errors import UserInputError


def reflect(fractions):
    fractions = np.asarray(fractions, dtype=float)
    return np.where(fractions > 0.5, 1 - fractions, fractions)


def make_germline(chroms, start0s, end0s, alt_fractions, depths, chromhash=None):
    return GenomeDataFrame.from_data(
        chroms, start0s, end0s,
        chromhash=chromhash,
        alt_fraction=np.asarray(alt_fractions, dtype=float),
        depth=np.asarray(depths, dtype=float),
    ).sort()


def get_reflected(germline):
    return reflect(germline['alt_fraction'])


##############
# VCF loader #
##############

def get_sample_name(in_vcf, sample):
    samples = list(in_vcf.header.samples)
    if isinstance(sample, str):
        if sample not in samples:
            raise UserInputError(f'Sample {sample!r} is not included in the VCF samples: {samples}')
        return sample
    else:
        if not (0 <= sample < len(samples)):
            raise UserInputError(
                f'tumor_id_in_vcf ({sample}) is out of range for a VCF with {len(samples)} sample(s).'
            )
        return samples[sample]


def get_fraction_and_depth(vcf_sample):
    """FA and DP when present, otherwise derived from AD"""
    ad = (vcf_sample['AD'] if 'AD' in vcf_sample else None)
    if ad is not None and (None in ad):
        ad = None

    fa = (vcf_sample['FA'] if 'FA' in vcf_sample else None)
    if isinstance(fa, tuple):
        fa = fa[0]
    dp = (vcf_sample['DP'] if 'DP' in vcf_sample else None)

    if dp is None and ad is not None:
        dp = sum(ad)
    if fa is None and ad is not None:
        fa = (ad[1] / sum(ad) if sum(ad) > 0 else None)

    return (np.nan if fa is None else fa), (np.nan if dp is None else dp)


def load_germline_vcf(vcf_path, sample=0):
    """Reads the first alt allele fraction and depth of one sample"""
    chroms = list()
    starts = list()
    ends = list()
    fractions = list()
    depths = list()
    with pysam.VariantFile(vcf_path) as in_vcf:
        formats = set(in_vcf.header.formats)
        if not (('FA' in formats) or ('AD' in formats)):
            raise UserInputError(f'Germline VCF needs FA or AD FORMAT fields: {vcf_path}')
        sampleid = get_sample_name(in_vcf, sample)
        contigs = list(in_vcf.header.contigs)

        for vr in in_vcf:
            if not vr.alts:
                continue
            fa, dp = get_fraction_and_depth(vr.samples[sampleid])
            if np.isnan(fa):
                continue
            chroms.append(vr.contig)
            starts.append(vr.start)
            ends.append(vr.stop)
            fractions.append(fa)
            depths.append(dp)

    chromhash = (ChromHash(contigs) if contigs else ChromHash.from_chroms(chroms))
    if len(chroms) == 0:
        return GenomeDataFrame.init_empty(
            chromhash=chromhash, annot_cols=['alt_fraction', 'depth'],
        )
    return make_germline(chroms, starts, ends, fractions, depths, chromhash=chromhash)


def harmonize_germline(germline, chromhash):
    """Renames germline chromosomes to the naming style of "chromhash" and
    re-keys it with a chromosome order extending "chromhash".
    """
    if germline.is_empty:
        return GenomeDataFrame.init_empty(
            chromhash=chromhash, annot_cols=['alt_fraction', 'depth'],
        ), chromhash

    germline_style = refgenome.detect_chrom_style(germline.chromhash.contigs)
    target_style = refgenome.detect_chrom_style(chromhash.contigs)
    if germline_style == target_style:
        new_chroms = germline.chroms
    else:
        new_chroms = [refgenome.convert_chrom_style(x, target_style) for x in germline.chroms]

    new_chromhash = chromhash.extended(new_chroms)
    return germline.set_chroms(new_chroms, new_chromhash).sort(), new_chromhash
