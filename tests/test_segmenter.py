import numpy as np
import pytest

import cnrefine.params as libparams
import cnrefine.segmentation.segmenter as segmenter
from cnrefine.segmentation.segmenter import CBSSegmenter
from cnrefine.errors import InvalidOrder, RuntimeInvariantError

from conftest import make_targets, requires_dnacopy


PYTHON_PARAMS = libparams.SegmentationParams(backend='python')


def test_fake_log_ratio():
    assert segmenter.is_fake_log_ratio(np.repeat([0.0, -1.0, 0.5], 50))
    noise = np.random.default_rng(0).normal(0, 0.1, 150)
    assert not segmenter.is_fake_log_ratio(noise)


def test_dispersion_band():
    assert segmenter.get_dispersion_band(np.linspace(0, 0.4, 100), 0.1) == 0
    assert segmenter.get_dispersion_band(np.linspace(0, 1, 100), 0.1) == 1
    assert segmenter.get_dispersion_band(np.linspace(0, 3, 100), 0.1) == 3


def test_sd_undo():
    assert segmenter.get_sd_undo(np.repeat([0.0, -1.0], 50)) == 0

    clean = np.random.default_rng(0).normal(0, 0.05, 500)
    assert segmenter.get_sd_undo(clean) == pytest.approx(1.0)

    noisy = np.random.default_rng(0).normal(0, 0.3, 500)
    assert segmenter.get_sd_undo(noisy) == pytest.approx(0.75)


def test_breakpoint_pval():
    assert np.isnan(segmenter.get_breakpoint_pval(np.array([1.0]), np.array([0.0, 1.0])))
    assert segmenter.get_breakpoint_pval(np.zeros(3), np.ones(3)) == 0
    assert segmenter.get_breakpoint_pval(np.array([0.0, 0.1, 0.2]), np.array([5.0, 5.1, 5.2])) < 0.001


def test_single_breakpoint(chr1_targets, step_log_ratio):
    seg = CBSSegmenter(PYTHON_PARAMS).segment(chr1_targets, step_log_ratio)

    assert seg.nrow == 2
    assert seg.ends[0] == chr1_targets.ends[49]
    assert seg.starts[1] == chr1_targets.starts[50]
    assert seg['num_mark'].tolist() == [50, 50]
    assert seg['size'].tolist() == (seg.ends - seg.starts).tolist()
    assert seg['pval'][0] < 1e-5
    assert np.isnan(seg['pval'][1])
    assert abs(seg['seg_mean'][1] + 1) < 0.05


def test_segments_per_chromosome():
    rng = np.random.default_rng(5)
    targets = make_targets(['chr1'] * 40 + ['chr2'] * 40)
    log_ratio = np.concatenate([np.zeros(40), np.full(40, 0.8)]) + rng.normal(0, 0.05, 80)
    log_ratio[3] = np.nan

    seg = CBSSegmenter(libparams.SegmentationParams(backend='python', nperm=2000)).segment(targets, log_ratio)
    assert seg.chroms.tolist() == ['chr1', 'chr2']
    assert seg['num_mark'].tolist() == [39, 40]
    assert seg.ends[0] == targets.ends[39]


def test_input_checks(chr1_targets, step_log_ratio):
    segmenter_obj = CBSSegmenter(PYTHON_PARAMS)
    with pytest.raises(RuntimeInvariantError):
        segmenter_obj.segment(chr1_targets, step_log_ratio[:-1])
    with pytest.raises(RuntimeInvariantError):
        segmenter_obj.segment(chr1_targets, step_log_ratio, weights=np.ones(3))

    unsorted = chr1_targets.take(np.arange(100)[::-1])
    with pytest.raises(InvalidOrder):
        segmenter_obj.segment(unsorted, step_log_ratio)


class CountingSegmenter(CBSSegmenter):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.undo_sds = list()

    def segment_once(self, targets, log_ratio, weights, undo_sd):
        self.undo_sds.append(undo_sd)
        return super().segment_once(targets, log_ratio, weights, undo_sd)


def test_retry_on_too_many_segments(chr1_targets, step_log_ratio):
    params = libparams.SegmentationParams(backend='python', undo_sd=0.5, max_segments=1, nperm=2000)
    segmenter_obj = CountingSegmenter(params)
    seg = segmenter_obj.segment(chr1_targets, step_log_ratio)

    assert seg.nrow == 2
    assert segmenter_obj.undo_sds == pytest.approx([0.5, 0.75, 1.125])


def test_no_retry_when_undo_sd_is_zero(chr1_targets, step_log_ratio):
    params = libparams.SegmentationParams(backend='python', undo_sd=0, max_segments=1, nperm=2000)
    segmenter_obj = CountingSegmenter(params)
    segmenter_obj.segment(chr1_targets, step_log_ratio)
    assert segmenter_obj.undo_sds == [0]


def test_deterministic_with_seed(chr1_targets, step_log_ratio):
    params = libparams.SegmentationParams(backend='python', nperm=2000, seed=7)
    seg1 = CBSSegmenter(params).segment(chr1_targets, step_log_ratio)
    seg2 = CBSSegmenter(params).segment(chr1_targets, step_log_ratio)
    assert seg1.df.equals(seg2.df)


def test_default_backend_is_dnacopy():
    assert libparams.SegmentationParams().backend == 'dnacopy'


@requires_dnacopy
def test_dnacopy_finds_focal_gain():
    rng = np.random.default_rng(11)
    log_ratio = rng.normal(0, 0.2, 3000)
    log_ratio[1500:1506] += 1.5
    targets = make_targets(['chr1'] * 3000)

    seg = CBSSegmenter().segment(targets, log_ratio)
    bounds = np.cumsum(seg['num_mark']).tolist()
    assert 1500 in bounds
    assert 1506 in bounds
    assert bounds[-1] == 3000
