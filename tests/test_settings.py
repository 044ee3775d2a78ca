import logging

import pytest

from config.config_loader import load_config
from nmr_peaks.core.settings import CWTParams, PeakDetectionSettings


def test_default_config_file_has_detection_section():
    cfg = load_config()
    section = cfg['wavelet_peaks']
    assert section['window_width'] == 'small'
    assert section['baseline_thresh'] == 1000
    assert 'cwt' in section


def test_missing_config_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / 'nope.yaml'))


def test_settings_from_config_file(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        "wavelet_peaks:\n"
        "  window_width: large\n"
        "  window_split: 16\n"
        "  baseline_thresh: 250\n"
        "  cwt:\n"
        "    ridge_length: 12\n",
        encoding='utf-8',
    )
    settings = PeakDetectionSettings.from_config(load_config(str(path)), n_jobs=1)
    assert settings.window_size == 1024
    assert settings.window_split == (16,)
    assert settings.baseline_thresh == 250.0
    assert settings.cwt.ridge_length == 12
    assert settings.n_jobs == 1


def test_overrides_take_precedence_and_none_is_ignored():
    cfg = {'wavelet_peaks': {'baseline_thresh': 500, 'include_nearby_peaks': True}}
    settings = PeakDetectionSettings.from_config(cfg, baseline_thresh=2000, include_nearby_peaks=None,
                                                 cwt={'gap_threshold': 5})
    assert settings.baseline_thresh == 2000.0
    assert settings.include_nearby_peaks is True
    assert settings.cwt.gap_threshold == 5


def test_unknown_option_is_rejected():
    with pytest.raises(TypeError):
        PeakDetectionSettings.from_config({}, window_lenght=512)


def test_snr_threshold_sentinel_uses_scale_ladder():
    assert PeakDetectionSettings(scales=range(1, 17)).snr_threshold == pytest.approx(0.8)
    assert PeakDetectionSettings(scales=[1, 2, 40], snr_threshold=-5).snr_threshold == pytest.approx(2.0)
    assert PeakDetectionSettings(snr_threshold=3).snr_threshold == 3.0


def test_invalid_window_split_falls_back_to_four(caplog):
    with caplog.at_level(logging.WARNING):
        settings = PeakDetectionSettings(window_split=[3, 16])
    assert settings.window_split == (4, 16)
    assert "set to the default: 4" in caplog.text


@pytest.mark.parametrize("width, size", [('small', 512), ('large', 1024), ('LARGE', 1024), (1024, 1024)])
def test_window_width(width, size):
    assert PeakDetectionSettings(window_width=width).window_size == size


def test_ambiguous_window_width_defaults_to_small(caplog):
    with caplog.at_level(logging.WARNING):
        settings = PeakDetectionSettings(window_width='medium')
    assert settings.window_size == 512
    assert "ambiguously" in caplog.text


def test_scales_are_validated():
    with pytest.raises(ValueError):
        PeakDetectionSettings(scales=[])
    with pytest.raises(ValueError):
        PeakDetectionSettings(scales=[0, 1, 2])
    assert PeakDetectionSettings(scales=[4, 1, 2]).scales == (1.0, 2.0, 4.0)


def test_large_multiplier_warns(caplog):
    with caplog.at_level(logging.WARNING):
        settings = PeakDetectionSettings(duplicate_detection_multiplier=20)
    assert settings.duplicate_tolerance == pytest.approx(0.1)
    assert "recommended maximum" in caplog.text


def test_worker_count_is_bounded_by_tasks():
    assert PeakDetectionSettings(n_jobs=8).resolve_n_jobs(3) == 3
    assert PeakDetectionSettings(n_jobs=2).resolve_n_jobs(10) == 2
    auto = PeakDetectionSettings(n_jobs=-1).resolve_n_jobs(1000)
    assert auto >= 1


def test_cwt_params_from_dict_ignores_unknown_keys(caplog):
    with caplog.at_level(logging.WARNING):
        params = CWTParams.from_dict({'ridge_length': 10, 'bogus': 1})
    assert params.ridge_length == 10
    assert "bogus" in caplog.text
