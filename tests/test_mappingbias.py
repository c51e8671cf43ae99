import pickle

import numpy as np
import pandas as pd
import pytest

import cnrefine.params as libparams
import cnrefine.mappingbias.mappingbias as mappingbias
import cnrefine.mappingbias.ponvcf as ponvcf
from cnrefine.mappingbias.ponvcf import SiteAlleleMatrix
from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.errors import UserInputError

from conftest import write_pon_vcf


def make_sites(rows):
    chroms, starts, refs, alts = zip(*rows)
    starts = np.array(starts)
    return GenomeDataFrame.from_data(chroms, starts, starts + 1, REF=list(refs), ALT=list(alts))


def test_two_sample_site_uses_empirical_bayes():
    sites = make_sites([('chr1', 999, 'A', 'G')])
    matrix = SiteAlleleMatrix(sites, ref=[[20, 30]], alt=[[20, 30]])
    result = mappingbias.calculate_mapping_bias(matrix, libparams.MappingBiasParams(min_normals=1))

    assert result.nrow == 1
    assert result.pon_count.tolist() == [2]
    assert np.isnan(result['mu'][0])
    assert not result['clustered'][0]
    assert np.isclose(result.bias[0], 1.0)
    assert result.columns == ['Chromosome', 'Start', 'End'] + mappingbias.BIAS_COLUMNS


def test_from_ref_af():
    sites = make_sites([('chr1', 999, 'A', 'G')])
    matrix = SiteAlleleMatrix.from_ref_af(sites, ref=[[20, 30]], af=[[0.5, 0.5]])
    assert matrix.alt.tolist() == [[20, 30]]


def test_single_sample_panel_is_rejected():
    sites = make_sites([('chr1', 999, 'A', 'G')])
    matrix = SiteAlleleMatrix(sites, ref=[[20]], alt=[[20]])
    with pytest.raises(UserInputError, match='single sample'):
        mappingbias.calculate_mapping_bias(matrix)


def test_invalid_params_fail_before_work():
    sites = make_sites([('chr1', 999, 'A', 'G')])
    matrix = SiteAlleleMatrix(sites, ref=[[20, 30]], alt=[[20, 30]])
    with pytest.raises(UserInputError, match='min_normals'):
        mappingbias.calculate_mapping_bias(
            matrix, libparams.MappingBiasParams(min_normals=5, min_normals_assign_betafit=3),
        )


def test_triallelic_sites_and_order():
    sites = make_sites(
        [
            ('chr2', 99, 'A', 'G'),
            ('chr1', 499, 'C', 'T'),
            ('chr1', 499, 'C', 'A'),
        ]
    )
    ref = [[30, 30, 30], [30, 30, 30], [30, 30, np.nan]]
    alt = [[30, 30, 30], [25, 30, 28], [25, 30, np.nan]]
    result = mappingbias.calculate_mapping_bias(SiteAlleleMatrix(sites, ref=ref, alt=alt))

    assert result.chroms.tolist() == ['chr1', 'chr1', 'chr2']
    assert result['ALT'].tolist() == ['T', 'A', 'G']
    assert result.pon_count.tolist() == [3, 2, 3]
    assert result['triallelic'].tolist() == [True, True, False]


def test_empirical_bayes_fractions():
    ref_sums = np.array([50.0, 60.0, 80.0])
    alt_sums = np.array([50.0, 40.0, 20.0])
    counts = np.array([2, 2, 2])
    mean_fractions = np.array([0.5, 0.45, 0.2])
    fractions = mappingbias.get_empirical_bayes_fractions(ref_sums, alt_sums, counts, mean_fractions)

    # pseudo counts: ref 110 / 4, alt 90 / 4
    assert np.isclose(fractions[2], (20 + 22.5) / (100 + 50))
    assert fractions[2] > 0.2


def test_position_specific_fits():
    rng = np.random.default_rng(0)
    nsample = 12
    sites = make_sites([('chr1', 100 * idx, 'A', 'G') for idx in range(20)])
    depth = np.full((20, nsample), 80.0)
    alt = rng.binomial(80, 0.4, size=(20, nsample)).astype(float)
    matrix = SiteAlleleMatrix(sites, ref=(depth - alt), alt=alt)

    result = mappingbias.calculate_mapping_bias(matrix)
    assert (result.pon_count == nsample).all()
    has_mu = ~np.isnan(result['mu'])
    assert has_mu.sum() > 10
    assert np.allclose(result.bias[has_mu], result['mu'][has_mu] * 2)
    assert np.abs(result.bias - 0.8).max() < 0.1


def test_save_and_load(tmp_path):
    sites = make_sites([('chr1', 999, 'A', 'G'), ('chr1', 1999, 'T', 'C')])
    matrix = SiteAlleleMatrix(sites, ref=[[20, 30], [10, 10]], alt=[[20, 30], [5, 6]])
    result = mappingbias.calculate_mapping_bias(matrix)

    path = tmp_path / 'bias.pickle'
    mappingbias.save_mapping_bias(result, path)
    loaded = mappingbias.load_mapping_bias(path)

    pd.testing.assert_frame_equal(loaded.df, result.df)
    assert loaded.attrs == result.attrs
    assert loaded.chromhash.contigs == result.chromhash.contigs


def test_load_errors(tmp_path):
    with pytest.raises(UserInputError):
        mappingbias.load_mapping_bias(tmp_path / 'absent.pickle')

    path = tmp_path / 'garbage.pickle'
    path.write_bytes(b'\x00\x01garbage')
    with pytest.raises(UserInputError):
        mappingbias.load_mapping_bias(path)

    with open(path, 'wb') as outfile:
        pickle.dump([1, 2, 3], outfile)
    with pytest.raises(UserInputError):
        mappingbias.load_mapping_bias(path)


###############
# VCF reading #
###############

PON_RECORDS = [
    ('chr1', 99, ('A', 'G'), [(20, 20), (30, 30), (15, 10)]),
    ('chr1', 199, ('C', 'T', 'G'), [(20, 15, 5), (30, 25, 0), None]),
    ('chr1', 299, ('G', 'A'), [(40, 0), (10, 12), (25, 25)]),
    ('chr2', 49, ('T', 'C'), [(20, 22), (18, 20), (21, 19)]),
    ('chr2', 59, ('T', 'C'), [(20, 22), (18, 20), (21, 19)]),
]
SAMPLES = ['normal1', 'normal2', 'normal3']


def test_read_pon_vcf(tmp_path):
    vcf_path = write_pon_vcf(tmp_path / 'pon.vcf', PON_RECORDS, SAMPLES)
    matrix = ponvcf.read_pon_vcf(vcf_path)

    assert matrix.nsample == 3
    assert matrix.nsite == 6
    assert matrix.sites['ALT'].tolist() == ['G', 'T', 'G', 'A', 'C', 'C']
    assert matrix.ref[1].tolist()[:2] == [20, 30]
    assert np.isnan(matrix.ref[1, 2])
    assert matrix.alt[2].tolist()[:2] == [5, 0]


def test_pon_chunks_keep_positions_together(tmp_path):
    vcf_path = write_pon_vcf(tmp_path / 'pon.vcf', PON_RECORDS, SAMPLES)
    chunks = list(ponvcf.iter_pon_chunks(vcf_path, chunk_size=2))
    assert [x.nsite for x in chunks] == [3, 2, 1]


def test_calculate_mapping_bias_vcf(tmp_path):
    vcf_path = write_pon_vcf(tmp_path / 'pon.vcf', PON_RECORDS, SAMPLES)
    params = libparams.MappingBiasParams(yield_size=2)
    result = mappingbias.calculate_mapping_bias_vcf(vcf_path, params)

    assert result.nrow == 6
    assert result.chroms.tolist() == ['chr1'] * 4 + ['chr2'] * 2
    assert result['triallelic'].tolist() == [False, True, True, False, False, False]
    assert result.pon_count.tolist()[:4] == [3, 2, 1, 2]
    assert result.attrs['params']['yield_size'] == 2


def test_single_sample_vcf_is_rejected(tmp_path):
    records = [('chr1', 99, ('A', 'G'), [(20, 20)])]
    vcf_path = write_pon_vcf(tmp_path / 'pon.vcf', records, ['normal1'])
    with pytest.raises(UserInputError):
        mappingbias.calculate_mapping_bias_vcf(vcf_path)


def test_source_dispatch(tmp_path):
    vcf_path = write_pon_vcf(tmp_path / 'pon.vcf', PON_RECORDS, SAMPLES)
    from_path = mappingbias.calculate_mapping_bias_source(vcf_path)
    from_matrix = mappingbias.calculate_mapping_bias_source(ponvcf.read_pon_vcf(vcf_path))

    assert from_path.nrow == from_matrix.nrow == 6
    assert from_path.pon_count.tolist() == from_matrix.pon_count.tolist()
