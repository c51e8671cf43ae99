import numpy as np
import pysam
import pytest

from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.refgenome import ChromHash


def dnacopy_available():
    try:
        from rpy2.robjects.packages import isinstalled
        return isinstalled('DNAcopy')
    except Exception:
        # rpy2 missing or R not found
        return False


requires_dnacopy = pytest.mark.skipif(
    not dnacopy_available(), reason='R package DNAcopy is not available',
)


def make_targets(chroms, spacing=1000, width=100, chromhash=None, **kwargs):
    """Evenly spaced targets; "chroms" gives the chromosome of each target."""
    chroms = np.asarray(chroms)
    starts = np.empty(len(chroms), dtype=int)
    for chrom in dict.fromkeys(chroms):
        selector = (chroms == chrom)
        starts[selector] = np.arange(selector.sum()) * spacing
    return GenomeDataFrame.from_data(
        chroms, starts, starts + width, chromhash=chromhash, **kwargs
    )


def write_pon_vcf(path, records, samples, contigs=('chr1', 'chr2')):
    """records: list of (chrom, pos0, alleles, ads); "ads" has one AD tuple
    (or None) per sample. Returns "path".
    """
    header = pysam.VariantHeader()
    for contig in contigs:
        header.contigs.add(contig, length=10_000_000)
    header.formats.add('AD', 'R', 'Integer', 'Allelic depths')
    for sample in samples:
        header.add_sample(sample)

    with pysam.VariantFile(str(path), 'w', header=header) as out_vcf:
        for chrom, pos0, alleles, ads in records:
            vr = out_vcf.new_record(
                contig=chrom, start=pos0, stop=(pos0 + len(alleles[0])), alleles=alleles,
            )
            for sample, ad in zip(samples, ads):
                if ad is not None:
                    vr.samples[sample]['AD'] = ad
            out_vcf.write(vr)

    return str(path)


def write_germline_vcf(path, chroms, pos0s, fractions, depths, sample='tumor'):
    header = pysam.VariantHeader()
    for contig in dict.fromkeys(chroms):
        header.contigs.add(contig, length=10_000_000)
    header.formats.add('FA', 'A', 'Float', 'Allele fractions')
    header.formats.add('DP', 1, 'Integer', 'Read depth')
    header.add_sample(sample)

    with pysam.VariantFile(str(path), 'w', header=header) as out_vcf:
        for chrom, pos0, fraction, depth in zip(chroms, pos0s, fractions, depths):
            vr = out_vcf.new_record(contig=chrom, start=int(pos0), stop=int(pos0) + 1, alleles=('A', 'G'))
            vr.samples[sample]['FA'] = (float(fraction),)
            vr.samples[sample]['DP'] = int(depth)
            out_vcf.write(vr)

    return str(path)


def write_indexed_vcf(path, records, contigs=('chr1',)):
    """records: list of (chrom, pos0, id, alleles). Writes a bgzipped,
    tabix indexed sites-only VCF.
    """
    header = pysam.VariantHeader()
    for contig in contigs:
        header.contigs.add(contig, length=10_000_000)

    with pysam.VariantFile(str(path), 'wz', header=header) as out_vcf:
        for chrom, pos0, vcf_id, alleles in records:
            vr = out_vcf.new_record(
                contig=chrom, start=pos0, stop=(pos0 + len(alleles[0])), alleles=alleles, id=vcf_id,
            )
            out_vcf.write(vr)

    pysam.tabix_index(str(path), preset='vcf', force=True)
    return str(path)


@pytest.fixture
def step_log_ratio():
    rng = np.random.default_rng(1)
    return np.concatenate([np.zeros(50), np.full(50, -1.0)]) + rng.normal(0, 0.05, 100)


@pytest.fixture
def chr1_targets():
    return make_targets(['chr1'] * 100, chromhash=ChromHash(['chr1', 'chr2']))
