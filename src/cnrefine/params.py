"""Parameter objects for the mapping-bias, segmentation and SNP selection
entry points. Defaults are part of the observable behavior.
"""

import dataclasses

import yaml

from cnrefine.errors import UserInputError, check_fraction


HCLUST_METHODS = ('single', 'complete', 'average', 'weighted', 'centroid', 'median', 'ward')
CBS_BACKENDS = ('dnacopy', 'python')


def _check_int(value, name, minval=None):
    if isinstance(value, bool) or not isinstance(value, int):
        raise UserInputError(f'{name} ({value!r}) must be an integer.')
    if (minval is not None) and (value < minval):
        raise UserInputError(f'{name} ({value}) must be >= {minval}.')


def _check_number(value, name, allow_none=False):
    if value is None:
        if allow_none:
            return
        raise UserInputError(f'{name} is required.')
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise UserInputError(f'{name} ({value!r}) must be numeric.')


@dataclasses.dataclass(frozen=True)
class MappingBiasParams:
    min_normals: int = 1
    min_normals_betafit: int = 7
    min_normals_assign_betafit: int = 3
    min_normals_position_specific_fit: int = 10
    min_median_coverage_betafit: float = 5
    num_betafit_clusters: int = 9
    min_betafit_rho: float = 1e-4
    max_betafit_rho: float = 0.2
    yield_size: int = 50000
    seed: int = 0
    verbose: bool = None

    def validate(self):
        _check_int(self.min_normals, 'min_normals', minval=1)
        _check_int(self.min_normals_betafit, 'min_normals_betafit')
        _check_int(self.min_normals_assign_betafit, 'min_normals_assign_betafit')
        _check_int(self.min_normals_position_specific_fit, 'min_normals_position_specific_fit')
        _check_int(self.num_betafit_clusters, 'num_betafit_clusters', minval=1)
        _check_int(self.yield_size, 'yield_size', minval=1)
        _check_number(self.min_median_coverage_betafit, 'min_median_coverage_betafit')

        if self.min_normals > self.min_normals_assign_betafit:
            raise UserInputError(
                f'min_normals ({self.min_normals}) cannot be larger than '
                f'min_normals_assign_betafit ({self.min_normals_assign_betafit}).'
            )
        if self.min_normals_assign_betafit > self.min_normals_betafit:
            raise UserInputError(
                f'min_normals_assign_betafit ({self.min_normals_assign_betafit}) '
                f'cannot be larger than min_normals_betafit ({self.min_normals_betafit}).'
            )
        if self.min_normals_betafit > self.min_normals_position_specific_fit:
            raise UserInputError(
                f'min_normals_betafit ({self.min_normals_betafit}) cannot be larger than '
                f'min_normals_position_specific_fit ({self.min_normals_position_specific_fit}).'
            )

        _check_number(self.min_betafit_rho, 'min_betafit_rho')
        _check_number(self.max_betafit_rho, 'max_betafit_rho')
        check_fraction(self.min_betafit_rho, 'min_betafit_rho')
        check_fraction(self.max_betafit_rho, 'max_betafit_rho')
        if self.min_betafit_rho > self.max_betafit_rho:
            raise UserInputError(
                f'min_betafit_rho ({round(self.min_betafit_rho, 3)}) cannot be larger '
                f'than max_betafit_rho ({round(self.max_betafit_rho, 3)}).'
            )
        return self


@dataclasses.dataclass(frozen=True)
class SegmentationParams:
    # CBS
    alpha: float = 0.005
    undo_sd: float = None
    max_segments: int = None
    max_retries: int = 2
    min_logr_sdev: float = 0.15
    nperm: int = 10000
    eta: float = 0.05
    min_width: int = 2
    backend: str = 'dnacopy'
    sbdry: tuple = None

    # VAF-guided refinement
    tumor_id_in_vcf: int = 0
    prune_min_size: int = 5
    prune_max_pval: float = 1e-5
    prune_iterations: int = 3
    cnnloh_min_variants: int = 7
    cnnloh_iterations: int = 2
    prune_hclust_h: float = None
    prune_hclust_method: str = 'ward'
    hclust_min_variants: int = 5
    hclust_iterations: int = 2

    # segment weights
    weight_flag_pvalue: float = 0.01
    weight_perm: int = 2000
    weight_max_run: int = 25

    seed: int = 0
    verbose: bool = None

    def validate(self):
        _check_number(self.alpha, 'alpha')
        check_fraction(self.alpha, 'alpha')
        _check_number(self.undo_sd, 'undo_sd', allow_none=True)
        if (self.undo_sd is not None) and (self.undo_sd < 0):
            raise UserInputError(f'undo_sd ({self.undo_sd}) must be >= 0.')
        if self.max_segments is not None:
            _check_int(self.max_segments, 'max_segments', minval=1)
        _check_int(self.max_retries, 'max_retries', minval=0)
        _check_number(self.min_logr_sdev, 'min_logr_sdev')
        _check_int(self.nperm, 'nperm', minval=1)
        _check_int(self.min_width, 'min_width', minval=1)
        if self.backend not in CBS_BACKENDS:
            raise UserInputError(f'backend ({self.backend!r}) must be one of {CBS_BACKENDS}.')

        _check_int(self.prune_min_size, 'prune_min_size', minval=1)
        check_fraction(self.prune_max_pval, 'prune_max_pval')
        _check_int(self.prune_iterations, 'prune_iterations', minval=0)
        _check_int(self.cnnloh_min_variants, 'cnnloh_min_variants', minval=2)
        _check_int(self.cnnloh_iterations, 'cnnloh_iterations', minval=0)
        _check_number(self.prune_hclust_h, 'prune_hclust_h', allow_none=True)
        if self.prune_hclust_method not in HCLUST_METHODS:
            raise UserInputError(
                f'prune_hclust_method ({self.prune_hclust_method!r}) must be one of {HCLUST_METHODS}.'
            )
        _check_int(self.hclust_min_variants, 'hclust_min_variants', minval=1)
        _check_int(self.hclust_iterations, 'hclust_iterations', minval=0)

        check_fraction(self.weight_flag_pvalue, 'weight_flag_pvalue')
        _check_int(self.weight_perm, 'weight_perm', minval=1)
        _check_int(self.weight_max_run, 'weight_max_run', minval=1)
        return self


@dataclasses.dataclass(frozen=True)
class SelectorParams:
    max_bias: float = 0.2
    min_pon: int = 2
    triallelic: bool = False

    def validate(self):
        _check_number(self.max_bias, 'max_bias')
        if self.max_bias < 0:
            raise UserInputError(f'max_bias ({self.max_bias}) must be >= 0.')
        _check_int(self.min_pon, 'min_pon', minval=0)
        if not isinstance(self.triallelic, bool):
            raise UserInputError(f'triallelic ({self.triallelic!r}) must be a boolean.')
        return self


###############
# yaml config #
###############

SECTIONS = {
    'mapping_bias': MappingBiasParams,
    'segmentation': SegmentationParams,
    'selector': SelectorParams,
}


def make_params(cls, data):
    if data is None:
        data = dict()
    if not isinstance(data, dict):
        raise UserInputError(f'Parameter section for {cls.__name__} must be a mapping.')

    valid_keys = set(x.name for x in dataclasses.fields(cls))
    unknown = set(data.keys()).difference(valid_keys)
    if unknown:
        raise UserInputError(
            f'Unknown parameter(s) for {cls.__name__}: {sorted(unknown)}'
        )
    if ('sbdry' in data) and (data['sbdry'] is not None):
        data = dict(data, sbdry=tuple(data['sbdry']))

    return cls(**data).validate()


def load_params(path):
    """Returns a dict {'mapping_bias': MappingBiasParams, 'segmentation':
    SegmentationParams, 'selector': SelectorParams}. Missing sections get
    default values.
    """
    try:
        with open(path) as f:
            config = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise UserInputError(f'Config file {path} does not exist.') from exc
    except yaml.YAMLError as exc:
        raise UserInputError(f'Config file {path} is not valid YAML: {exc}') from exc

    if config is None:
        config = dict()
    if not isinstance(config, dict):
        raise UserInputError(f'Config file {path} must contain a mapping.')

    unknown = set(config.keys()).difference(SECTIONS.keys())
    if unknown:
        raise UserInputError(f'Unknown config section(s) in {path}: {sorted(unknown)}')

    return {
        key: make_params(cls, config.get(key))
        for key, cls in SECTIONS.items()
    }
