"""Panel-of-normals allele counts (sites x samples)."""

import numpy as np
import pysam

import cnrefine.mappingbias.betabinom as betabinom
from cnrefine.refgenome import ChromHash
from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.errors import UserInputError, RuntimeInvariantError


DEFAULT_CHUNK_SIZE = 50000


####################
# SiteAlleleMatrix #
####################

class SiteAlleleMatrix:
    """Args:
        sites: GenomeDataFrame with REF and ALT columns, one row per
            (position, alt allele)
        ref, alt: float arrays of shape (nsite, nsample); NaN means the
            sample has no genotype at the site
    """

    def __init__(self, sites, ref, alt, samples=None):
        ref = np.asarray(ref, dtype=float)
        alt = np.asarray(alt, dtype=float)
        if ref.ndim != 2 or ref.shape != alt.shape:
            raise RuntimeInvariantError(
                f'ref and alt count matrices differ in shape: {ref.shape}, {alt.shape}'
            )
        if ref.shape[0] != sites.nrow:
            raise RuntimeInvariantError(
                f'Number of sites ({sites.nrow}) differs from the number of count matrix rows ({ref.shape[0]}).'
            )
        if samples is None:
            samples = [f'sample{idx}' for idx in range(ref.shape[1])]
        if len(samples) != ref.shape[1]:
            raise RuntimeInvariantError(f'Number of sample names differs from the number of count matrix columns.')

        missing = np.isnan(ref) | np.isnan(alt)
        ref[missing] = np.nan
        alt[missing] = np.nan

        self.sites = sites
        self.ref = ref
        self.alt = alt
        self.samples = list(samples)

    def __repr__(self):
        return f'<SiteAlleleMatrix (nsite={self.nsite}, nsample={self.nsample})>'

    @property
    def nsite(self):
        return self.ref.shape[0]

    @property
    def nsample(self):
        return self.ref.shape[1]

    @classmethod
    def from_ref_af(cls, sites, ref, af, samples=None):
        """Alt counts are derived from ref counts and alt allelic fractions:
        alt = round(ref / (1 - af) - ref)
        """
        ref = np.asarray(ref, dtype=float)
        af = np.asarray(af, dtype=float)
        with np.errstate(divide='ignore', invalid='ignore'):
            alt = np.round(ref / (1 - af) - ref)
        alt[~np.isfinite(alt)] = np.nan
        return cls(sites, ref, alt, samples=samples)

    def get_alt_fractions(self):
        return betabinom.get_alt_fractions(self.alt, self.ref)

    def get_informative_mask(self):
        return betabinom.get_informative_mask(self.alt, self.ref)

    def take(self, indexes):
        return self.__class__(
            self.sites.take(indexes),
            self.ref[indexes, :],
            self.alt[indexes, :],
            samples=self.samples,
        )


##############
# VCF reader #
##############

def get_vcf_samples(vcf_path):
    with pysam.VariantFile(vcf_path) as in_vcf:
        if 'AD' not in in_vcf.header.formats:
            raise UserInputError(f'Panel-of-normals VCF lacks the AD FORMAT field: {vcf_path}')
        samples = list(in_vcf.header.samples)
        contigs = list(in_vcf.header.contigs)
    if len(samples) < 2:
        raise UserInputError(
            f'The normal panel VCF contains only a single sample ({len(samples)} sample(s) in {vcf_path}).'
        )
    return samples, contigs


def iter_vcf_rows(in_vcf, samples):
    """Yields one row per (record, alt allele):
    (chrom, start0, end0, ref_allele, alt_allele, ref_counts, alt_counts)
    """
    for vr in in_vcf:
        if not vr.alts:
            continue

        ads = list()
        for sampleid in samples:
            try:
                ad = vr.samples[sampleid]['AD']
            except KeyError:
                ad = None
            ads.append(ad)

        ref_counts = np.array(
            [
                (np.nan if (ad is None or ad[0] is None) else ad[0])
                for ad in ads
            ],
            dtype=float,
        )
        for alt_idx, alt_allele in enumerate(vr.alts, start=1):
            alt_counts = np.array(
                [
                    (np.nan if (ad is None or len(ad) <= alt_idx or ad[alt_idx] is None) else ad[alt_idx])
                    for ad in ads
                ],
                dtype=float,
            )
            yield (vr.contig, vr.start, vr.stop, vr.ref, alt_allele, ref_counts, alt_counts)


def make_matrix(rows, samples, chromhash):
    chroms, starts, ends, refs, alts, ref_counts, alt_counts = zip(*rows)
    sites = GenomeDataFrame.from_data(
        chroms, starts, ends,
        chromhash=chromhash,
        REF=list(refs),
        ALT=list(alts),
    )
    return SiteAlleleMatrix(
        sites,
        ref=np.stack(ref_counts, axis=0),
        alt=np.stack(alt_counts, axis=0),
        samples=samples,
    )


def iter_pon_chunks(vcf_path, chunk_size=DEFAULT_CHUNK_SIZE):
    """Yields SiteAlleleMatrix objects of about "chunk_size" rows. A chunk
    is closed only between two distinct positions, so that all alt
    alleles of one position always belong to the same chunk.
    """
    samples, contigs = get_vcf_samples(vcf_path)
    chromhash = (ChromHash(contigs) if contigs else None)

    rows = list()
    last_pos = None
    with pysam.VariantFile(vcf_path) as in_vcf:
        for row in iter_vcf_rows(in_vcf, samples):
            pos = row[:2]
            if (len(rows) >= chunk_size) and (pos != last_pos):
                yield make_matrix(rows, samples, chromhash)
                rows = list()
            rows.append(row)
            last_pos = pos

    if rows:
        yield make_matrix(rows, samples, chromhash)


def read_pon_vcf(vcf_path):
    """Loads the whole panel at once."""
    chunks = list(iter_pon_chunks(vcf_path, chunk_size=np.inf))
    if len(chunks) == 0:
        raise UserInputError(f'Panel-of-normals VCF contains no variant records: {vcf_path}')
    return chunks[0]

