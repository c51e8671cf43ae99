import numpy as np
import pysam
import pytest

import cnrefine.sources as sources
import cnrefine.mappingbias.selector as selector
import cnrefine.mappingbias.mappingbias as mappingbias
from cnrefine.mappingbias.mappingbias import MappingBiasDataFrame
from cnrefine.errors import UserInputError

from conftest import write_indexed_vcf


def make_bias_table(rows):
    """rows: (chrom, start0, bias, pon_count, triallelic)"""
    chroms, starts, biases, pon_counts, triallelic = zip(*rows)
    starts = np.array(starts)
    nrow = len(rows)
    return MappingBiasDataFrame.from_data(
        chroms, starts, starts + 1,
        REF=['A'] * nrow,
        ALT=['G'] * nrow,
        bias=np.array(biases, dtype=float),
        pon_count=np.array(pon_counts, dtype=int),
        mu=np.full(nrow, np.nan),
        rho=np.full(nrow, np.nan),
        clustered=np.zeros(nrow, dtype=bool),
        triallelic=np.array(triallelic, dtype=bool),
    )


def test_min_pon_threshold():
    bias_gdf = make_bias_table([('chr1', 99, 1.15, 3, False)])
    passed = selector.find_high_quality_snps(bias_gdf, max_bias=0.2, min_pon=2)
    assert passed.nrow == 1
    passed = selector.find_high_quality_snps(bias_gdf, max_bias=0.2, min_pon=5)
    assert passed.nrow == 0


def test_filters():
    bias_gdf = make_bias_table(
        [
            ('chr1', 99, 1.0, 4, False),
            ('chr1', 199, 1.3, 4, False),
            ('chr1', 299, np.nan, 4, False),
            ('chr1', 399, 0.95, 4, True),
            ('chr1', 499, 0.8, 4, False),
        ]
    )
    passed = selector.find_high_quality_snps(bias_gdf)
    assert passed.starts.tolist() == [99, 499]

    passed = selector.find_high_quality_snps(bias_gdf, triallelic=True)
    assert passed.starts.tolist() == [99, 399, 499]


def test_increasing_min_pon_narrows_selection():
    rng = np.random.default_rng(0)
    nrow = 200
    bias_gdf = make_bias_table(
        list(
            zip(
                ['chr1'] * nrow,
                np.arange(nrow) * 10,
                rng.normal(1, 0.15, nrow),
                rng.integers(0, 10, nrow),
                rng.random(nrow) < 0.1,
            )
        )
    )
    counts = [
        selector.find_high_quality_snps(bias_gdf, min_pon=min_pon).nrow
        for min_pon in range(12)
    ]
    assert all(x >= y for x, y in zip(counts, counts[1:]))
    assert counts[-1] == 0


def test_invalid_arguments():
    bias_gdf = make_bias_table([('chr1', 99, 1.0, 3, False)])
    with pytest.raises(UserInputError):
        selector.find_high_quality_snps(bias_gdf, max_bias=-0.1)
    with pytest.raises(UserInputError):
        selector.find_high_quality_snps(bias_gdf, min_pon=1.5)


def test_saved_table_as_input(tmp_path):
    bias_gdf = make_bias_table([('chr1', 99, 1.0, 3, False), ('chr1', 199, 2.0, 3, False)])
    path = tmp_path / 'bias.pickle'
    mappingbias.save_mapping_bias(bias_gdf, path)

    passed = selector.find_high_quality_snps(sources.FilePath(path))
    assert passed.starts.tolist() == [99]
    passed = selector.find_high_quality_snps(str(path))
    assert passed.starts.tolist() == [99]

    with pytest.raises(UserInputError):
        selector.find_high_quality_snps(str(tmp_path / 'absent.pickle'))


def test_merged_regions():
    bias_gdf = make_bias_table(
        [
            ('chr1', 10, 1.0, 3, False),
            ('chr1', 11, 1.0, 3, False),
            ('chr1', 50, 1.0, 3, False),
            ('chr2', 10, 1.0, 3, False),
        ]
    )
    assert selector.get_merged_regions(bias_gdf) == [
        ('chr1', 10, 12), ('chr1', 50, 51), ('chr2', 10, 11),
    ]


def test_vcf_intersection_with_other_chrom_style(tmp_path):
    vcf_path = write_indexed_vcf(
        tmp_path / 'dbsnp.vcf.gz',
        [
            ('chr1', 99, 'rs1', ('A', 'G')),
            ('chr1', 199, 'rs2', ('C', 'T')),
            ('chr1', 299, 'rs3', ('G', 'A')),
            ('chr1', 300, 'rs4', ('TA', 'T')),
        ],
    )
    bias_gdf = make_bias_table(
        [
            ('1', 99, 1.0, 3, False),
            ('1', 199, 1.5, 3, False),
            ('1', 299, 1.0, 3, False),
            ('1', 500, 1.0, 3, False),
        ]
    )
    result = selector.find_high_quality_snps(bias_gdf, vcf_path=vcf_path)

    assert result['ID'].tolist() == ['rs1', 'rs3']
    assert result.chroms.tolist() == ['chr1', 'chr1']
    assert result.columns == ['Chromosome', 'Start', 'End', 'ID', 'REF', 'ALT']


def test_vcf_without_contig_header(tmp_path):
    path = tmp_path / 'dbsnp.vcf'
    path.write_text(
        '##fileformat=VCFv4.2\n'
        '#CHROM\tPOS\tID\tREF\tALT\tQUAL\tFILTER\tINFO\n'
        'chr1\t100\trs1\tA\tG\t.\t.\t.\n'
        'chr1\t200\trs2\tC\tT\t.\t.\t.\n'
        'chr1\t300\trs3\tG\tA\t.\t.\t.\n'
    )
    vcf_path = pysam.tabix_index(str(path), preset='vcf', force=True)
    assert selector.get_indexed_contigs(vcf_path) == ['chr1']

    bias_gdf = make_bias_table(
        [
            ('1', 99, 1.0, 3, False),
            ('1', 199, 1.5, 3, False),
            ('1', 299, 1.0, 3, False),
        ]
    )
    result = selector.find_high_quality_snps(bias_gdf, vcf_path=vcf_path)
    assert result['ID'].tolist() == ['rs1', 'rs3']
    assert result.chroms.tolist() == ['chr1', 'chr1']
