import pickle
import dataclasses

import numpy as np
import pandas as pd

import cnrefine.logutils as logutils
import cnrefine.sources as sources
import cnrefine.params as libparams
import cnrefine.mappingbias.betabinom as betabinom
import cnrefine.mappingbias.mixture as mixture
import cnrefine.mappingbias.ponvcf as ponvcf
import cnrefine.genomedf.genomedf_utils as genomedf_utils
from cnrefine.refgenome import ChromHash
from cnrefine.genomedf.genomedf import GenomeDataFrame
from cnrefine.errors import UserInputError


CLEAN_SITE_MIN_FRACTION = 0.4
BIAS_COLUMNS = ['REF', 'ALT', 'bias', 'pon_count', 'mu', 'rho', 'clustered', 'triallelic']
LOG_CHUNK_INTERVAL = 5


class MappingBiasDataFrame(GenomeDataFrame):
    """One row per (position, alt allele). "attrs" keeps the parameters
    the table was made with.
    """

    def __init__(self, frame, chromhash=None, attrs=None):
        super().__init__(frame, chromhash=chromhash)
        self.attrs = (dict() if attrs is None else dict(attrs))

    def spawn(self, frame):
        return self.__class__(frame, chromhash=self.chromhash, attrs=self.attrs)

    @classmethod
    def concat(cls, gdf_iterator):
        gdf_list = list(gdf_iterator)
        result = super().concat(gdf_list)
        result.attrs = dict(gdf_list[0].attrs)
        return result

    @property
    def bias(self):
        return self['bias']

    @property
    def pon_count(self):
        return self['pon_count']


#########################
# empirical-Bayes prior #
#########################

def get_site_summaries(matrix, min_normals):
    """Per site (ref sum, alt sum, informative count, mean alt fraction)
    over informative samples. Sites below "min_normals" get zeros.
    """
    mask = matrix.get_informative_mask()
    fractions = matrix.get_alt_fractions()
    counts = mask.sum(axis=1)

    ref_sums = np.where(mask, matrix.ref, 0).sum(axis=1)
    alt_sums = np.where(mask, matrix.alt, 0).sum(axis=1)
    with np.errstate(invalid='ignore', divide='ignore'):
        mean_fractions = np.where(mask, fractions, 0).sum(axis=1) / counts

    insufficient = (counts < min_normals)
    ref_sums[insufficient] = 0
    alt_sums[insufficient] = 0
    mean_fractions[insufficient] = 0

    return ref_sums, alt_sums, counts, mean_fractions


def get_empirical_bayes_fractions(ref_sums, alt_sums, counts, mean_fractions):
    """Pseudo counts are the average ref and alt read counts per sample of
    sites whose mean alt fraction exceeds 0.4. With fewer than 2 such
    sites the pseudo counts are zero.
    """
    clean = (mean_fractions > CLEAN_SITE_MIN_FRACTION)
    if clean.sum() < 2:
        logutils.log(
            f'All SNPs in the database have significant mapping bias! Check your database.',
            level='warning',
        )
        ref_prior = 0
        alt_prior = 0
    else:
        ref_prior = ref_sums[clean].sum() / counts[clean].sum()
        alt_prior = alt_sums[clean].sum() / counts[clean].sum()

    adj_ref = ref_sums + ref_prior
    adj_alt = alt_sums + alt_prior
    with np.errstate(invalid='ignore', divide='ignore'):
        return adj_alt / (adj_ref + adj_alt)


########
# main #
########

def calculate_mapping_bias(matrix, params=None):
    """Returns a MappingBiasDataFrame from a SiteAlleleMatrix."""
    if params is None:
        params = libparams.MappingBiasParams()
    params.validate()

    with logutils.verbosity(params.verbose):
        return _calculate_mapping_bias(matrix, params)


def _calculate_mapping_bias(matrix, params):
    if matrix.nsample < 2:
        raise UserInputError(
            f'The normal panel contains only a single sample (nsample={matrix.nsample}).'
        )

    position_specific = True
    min_normals_betafit = params.min_normals_betafit
    if matrix.nsample < params.min_normals_position_specific_fit:
        position_specific = False
        logutils.log(
            f'Not enough normal samples ({matrix.nsample}) for position-specific beta-binomial fits.',
            level='info',
        )
        if matrix.nsample > params.min_normals_assign_betafit:
            min_normals_betafit = params.min_normals_assign_betafit
            logutils.log(
                (
                    f'Lowering min_normals_betafit to min_normals_assign_betafit '
                    f'({min_normals_betafit}) to seed clustering with sufficient fits.'
                ),
                level='info',
            )

    # per-site summaries and fits
    ref_sums, alt_sums, counts, mean_fractions = get_site_summaries(
        matrix, params.min_normals,
    )
    logutils.log(f'Fitting beta-binomial distributions. Might take a while...', level='info')
    sites = matrix.sites
    fits = list()
    for idx in range(matrix.nsite):
        if counts[idx] < params.min_normals:
            fits.append(None)
            continue
        label = f'{sites.chroms[idx]}:{sites.starts[idx] + 1}'
        fits.append(
            betabinom.fit_site(
                matrix.alt[idx, :],
                matrix.ref[idx, :],
                params,
                min_normals_betafit=min_normals_betafit,
                label=label,
            )
        )

    eb_fractions = get_empirical_bayes_fractions(
        ref_sums, alt_sums, counts, mean_fractions,
    )

    # clustering
    mus, rhos, clustered = mixture.cluster_and_assign(
        fits,
        matrix.alt,
        matrix.ref,
        eb_fractions,
        params,
        position_specific=position_specific,
    )

    bias = eb_fractions * 2
    has_mu = ~np.isnan(mus)
    bias[has_mu] = mus[has_mu] * 2

    result = MappingBiasDataFrame(
        sites.df.assign(
            bias=bias,
            pon_count=counts.astype(int),
            mu=mus,
            rho=rhos,
            clustered=clustered,
        ),
        chromhash=sites.chromhash,
        attrs={'params': dataclasses.asdict(params)},
    )
    result = sort_bias_table(result)
    result = result.assign(
        triallelic=genomedf_utils.get_duplicate_coords_selector(result.df, keep=False),
    )
    return result.choose_annots(BIAS_COLUMNS)


def sort_bias_table(bias_gdf):
    """(chromosome rank, Start, End), ties by decreasing pon_count"""
    sortkey = np.lexsort(
        [
            -bias_gdf['pon_count'],
            bias_gdf.ends,
            bias_gdf.starts,
            bias_gdf.chrom_ranks,
        ]
    )
    return bias_gdf.take(sortkey)


def calculate_mapping_bias_vcf(vcf_path, params=None):
    """Streams a multi-sample panel-of-normals VCF (FORMAT/AD) in chunks of
    about "yield_size" records. Each chunk is processed independently and
    results are concatenated in file order.
    """
    if params is None:
        params = libparams.MappingBiasParams()
    params.validate()

    with logutils.verbosity(params.verbose):
        results = list()
        for chunk_idx, matrix in enumerate(
            ponvcf.iter_pon_chunks(vcf_path, chunk_size=params.yield_size)
        ):
            if chunk_idx % LOG_CHUNK_INTERVAL == 0:
                logutils.log(
                    f'Processing chunk {chunk_idx + 1} ({matrix.sites.chroms[0]}:{matrix.sites.starts[0] + 1})',
                    level='info',
                )
            results.append(_calculate_mapping_bias(matrix, params))

    if len(results) == 0:
        raise UserInputError(f'Panel-of-normals VCF contains no variant records: {vcf_path}')

    return MappingBiasDataFrame.concat(results)


def calculate_mapping_bias_source(source, params=None):
    """"source" is a SiteAlleleMatrix (in memory) or a VCF path."""
    source = sources.tag(source)
    if isinstance(source, sources.FilePath):
        return calculate_mapping_bias_vcf(source.path, params=params)
    else:
        return calculate_mapping_bias(source.value, params=params)


###############
# persistence #
###############

def save_mapping_bias(bias_gdf, path):
    data = {
        'df': bias_gdf.df,
        'contigs': bias_gdf.chromhash.contigs,
        'attrs': bias_gdf.attrs,
    }
    with open(path, 'wb') as outfile:
        pickle.dump(data, outfile)


def load_mapping_bias(path):
    try:
        with open(path, 'rb') as infile:
            data = pickle.load(infile)
    except FileNotFoundError as exc:
        raise UserInputError(f'Mapping bias file does not exist: {path}') from exc
    except (pickle.UnpicklingError, EOFError) as exc:
        raise UserInputError(f'Mapping bias file is not readable: {path}') from exc

    if (not isinstance(data, dict)) or (set(data.keys()) != {'df', 'contigs', 'attrs'}):
        raise UserInputError(f'File is not a mapping bias table: {path}')
    if not set(BIAS_COLUMNS).issubset(data['df'].columns):
        raise UserInputError(f'Mapping bias table lacks columns: {path}')

    return MappingBiasDataFrame(
        pd.DataFrame(data['df']),
        chromhash=ChromHash(data['contigs']),
        attrs=data['attrs'],
    )
