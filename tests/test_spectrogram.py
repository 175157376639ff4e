import numpy as np
import pytest

from terrainscopelib.models import PCMBuffer
from terrainscopelib.spectrogram import (
    N_BINS, N_FRAMES, WINDOW_SIZE,
    SpectrogramEngine, analyze, compress_magnitudes, compute_spectrogram,
    dft_magnitudes, downsample_bins, extract_frames, fft_magnitudes,
    frame_offsets, hann_window, moving_average, row_to_frame,
)

from conftest import SR, make_sine


class TestFraming:
    def test_frame_offsets_floor(self):
        offs = frame_offsets(1000, 128)
        assert offs[0] == 0
        assert offs[1] == 7          # floor(1000 / 128)
        assert offs[127] == 992      # floor(127 * 1000 / 128)

    def test_frames_zero_padded_past_end(self):
        samples = np.ones(100)
        frames = extract_frames(samples, 4, 64)
        assert frames.shape == (4, 64)
        # frame 3 starts at 75: 25 real samples, then zeros
        assert np.all(frames[3, :25] == 1.0)
        assert np.all(frames[3, 25:] == 0.0)

    def test_hann_is_symmetric_with_zero_ends(self):
        w = hann_window(WINDOW_SIZE)
        assert w[0] == pytest.approx(0.0)
        assert w[-1] == pytest.approx(0.0)
        np.testing.assert_allclose(w, w[::-1])
        n = np.arange(8)
        np.testing.assert_allclose(
            hann_window(8), 0.5 * (1 - np.cos(2 * np.pi * n / 7)), atol=1e-12)


class TestTransforms:
    def test_fft_matches_dft(self):
        rng = np.random.default_rng(0)
        frames = rng.standard_normal((3, 256))
        np.testing.assert_allclose(
            fft_magnitudes(frames), dft_magnitudes(frames), rtol=1e-7, atol=1e-7)

    def test_half_spectrum_width(self):
        frames = np.zeros((2, WINDOW_SIZE))
        assert fft_magnitudes(frames).shape == (2, WINDOW_SIZE // 2)

    def test_compression_curve_and_ceiling(self):
        out = compress_magnitudes(np.array([0.0, 9.0, 1e12]))
        np.testing.assert_allclose(out, [0.0, 40.0, 255.0])

    def test_downsample_averages_groups(self):
        raw = np.arange(16, dtype=float).reshape(1, 16)
        np.testing.assert_allclose(downsample_bins(raw, 4), [[1.5, 5.5, 9.5, 13.5]])

    def test_downsample_rejects_too_few_bins(self):
        with pytest.raises(ValueError):
            downsample_bins(np.zeros((1, 4)), 8)


class TestSmoothing:
    def test_boundary_uses_in_range_neighbors(self):
        values = np.arange(20, dtype=float)[:, None] * np.ones((1, 3))
        out = moving_average(values, 6, axis=0)
        assert out[0, 0] == pytest.approx(np.mean(np.arange(7)))
        assert out[19, 0] == pytest.approx(np.mean(np.arange(13, 20)))
        assert out[10, 0] == pytest.approx(np.mean(np.arange(4, 17)))

    def test_frequency_axis(self):
        values = np.zeros((2, 12))
        values[:, 0] = 6.0
        out = moving_average(values, 5, axis=1)
        assert out[0, 0] == pytest.approx(1.0)   # 6 / 6 in-range cells
        assert out[0, 5] == pytest.approx(6.0 / 11)
        assert out[0, 6] == pytest.approx(0.0)

    def test_constant_is_unchanged(self):
        values = np.full((10, 10), 3.0)
        np.testing.assert_allclose(moving_average(values, 6, axis=0), values)


class TestEngine:
    def test_fixed_output_shape(self, sine_pcm, short_pcm):
        for pcm in (sine_pcm, short_pcm):
            assert analyze(pcm).shape == (N_FRAMES, N_BINS)

    def test_silence_is_all_zero(self, silent_pcm):
        matrix = analyze(silent_pcm)
        assert np.all(matrix.values == 0.0)
        assert matrix.max_amplitude == 0.0

    def test_values_in_range(self, sine_pcm):
        values = analyze(sine_pcm).values
        assert values.min() >= 0.0
        assert values.max() <= 255.0

    def test_sine_peak_lands_in_expected_bin(self):
        freq = 2000.0
        pcm = PCMBuffer(make_sine(freq, seconds=2.0), SR)
        values = analyze(pcm).values
        peak_bin = int(np.argmax(values.mean(axis=0)))
        expected = freq / (SR / 2) * N_BINS
        # frequency smoothing spreads a pure tone over +/- 5 bins
        assert abs(peak_bin - expected) <= 6

    def test_rows_run_end_first(self):
        # tone in the first half, silence in the second
        samples = np.concatenate([make_sine(1000.0, seconds=1.0), np.zeros(SR)])
        values = analyze(PCMBuffer(samples, SR)).values
        assert np.all(values[:50] == 0.0)
        assert values[-50:].max() > 10.0
        assert row_to_frame(0) == N_FRAMES - 1

    def test_deterministic(self, sine_pcm):
        a = analyze(sine_pcm).values
        b = analyze(sine_pcm).values
        np.testing.assert_array_equal(a, b)

    def test_dft_engine_agrees_with_fft(self):
        samples = make_sine(1000.0, seconds=0.2)
        fast = compute_spectrogram(samples)
        slow = compute_spectrogram(samples, transform=dft_magnitudes)
        np.testing.assert_allclose(fast, slow, atol=1e-6)

    def test_matrix_is_read_only(self, sine_pcm):
        matrix = SpectrogramEngine().analyze(sine_pcm)
        with pytest.raises(ValueError):
            matrix.values[0, 0] = 1.0
        assert matrix.source == "sine.wav"
