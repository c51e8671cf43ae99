import textwrap

import pytest

import cnrefine.params as libparams
from cnrefine.errors import UserInputError


def test_defaults_are_valid():
    libparams.MappingBiasParams().validate()
    libparams.SegmentationParams().validate()
    libparams.SelectorParams().validate()


@pytest.mark.parametrize(
    'kwargs',
    [
        {'min_normals': 0},
        {'min_normals': 4},
        {'min_normals_assign_betafit': 8},
        {'min_normals_betafit': 11},
        {'min_betafit_rho': 0.3},
        {'max_betafit_rho': 1.5},
    ],
)
def test_invalid_mapping_bias_params(kwargs):
    with pytest.raises(UserInputError):
        libparams.MappingBiasParams(**kwargs).validate()


def test_error_message_names_parameter():
    with pytest.raises(UserInputError, match='min_betafit_rho'):
        libparams.MappingBiasParams(min_betafit_rho=0.5).validate()


@pytest.mark.parametrize(
    'kwargs',
    [
        {'alpha': 2},
        {'undo_sd': -1},
        {'backend': 'unknown'},
        {'prune_hclust_method': 'ward.D'},
        {'max_segments': 0},
    ],
)
def test_invalid_segmentation_params(kwargs):
    with pytest.raises(UserInputError):
        libparams.SegmentationParams(**kwargs).validate()


def test_load_params(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        textwrap.dedent(
            """\
            segmentation:
              alpha: 0.01
              max_segments: 500
            selector:
              min_pon: 5
            """
        )
    )
    params = libparams.load_params(path)
    assert params['segmentation'].alpha == 0.01
    assert params['segmentation'].max_segments == 500
    assert params['selector'].min_pon == 5
    assert params['mapping_bias'] == libparams.MappingBiasParams()


def test_load_params_errors(tmp_path):
    with pytest.raises(UserInputError):
        libparams.load_params(tmp_path / 'absent.yaml')

    path = tmp_path / 'config.yaml'
    path.write_text('segmentation:\n  not_a_parameter: 1\n')
    with pytest.raises(UserInputError, match='not_a_parameter'):
        libparams.load_params(path)

    path.write_text('unknown_section: {}\n')
    with pytest.raises(UserInputError):
        libparams.load_params(path)

    path.write_text('segmentation:\n  backend: fortran\n')
    with pytest.raises(UserInputError):
        libparams.load_params(path)
