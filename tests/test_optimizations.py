import os

import numpy as np
import pytest

from lightgpt.optimizations import (
    MemoryPool,
    QuantizationParams,
    dequantize_int8,
    gelu,
    gemm,
    optimized_gemm,
    parallel_for,
    performance_info,
    quantize_int8,
)


def test_gemm_identity_returns_input():
    rng = np.random.default_rng(0)
    a = rng.standard_normal((3, 5)).astype(np.float32)
    result = gemm(a, np.eye(5, dtype=np.float32))
    assert result.shape == (3, 5)
    np.testing.assert_allclose(result, a, rtol=1e-6)


def test_gemm_known_values():
    result = gemm([[1.0, 2.0], [3.0, 4.0]], [[5.0, 6.0], [7.0, 8.0]])
    assert result[0, 0] == pytest.approx(19.0)
    assert result[1, 1] == pytest.approx(50.0)


def test_gemm_shape_mismatch_raises():
    with pytest.raises(ValueError):
        gemm(np.ones((2, 3)), np.ones((2, 3)))


def test_gemm_requires_matrices():
    with pytest.raises(ValueError):
        gemm(np.ones(3), np.ones((3, 1)))


def test_gelu_zero_and_limits():
    out = gelu([0.0, 10.0, -10.0])
    assert out[0] == 0.0
    assert out[1] == pytest.approx(10.0, abs=1e-4)
    assert out[2] == pytest.approx(0.0, abs=1e-4)


def test_gelu_does_not_modify_input_and_keeps_shape():
    data = np.linspace(-3, 3, 13, dtype=np.float32).reshape(1, 13)
    copy = data.copy()
    out = gelu(data)
    assert out.shape == data.shape
    np.testing.assert_array_equal(data, copy)
    assert np.all(np.diff(out[0, 6:]) > 0)


def test_quantize_round_trip_within_one_step():
    rng = np.random.default_rng(1)
    data = rng.standard_normal(257).astype(np.float32)
    codes, params = quantize_int8(data)
    assert codes.dtype == np.int8
    assert codes.shape == data.shape
    restored = dequantize_int8(codes, params)
    assert np.max(np.abs(restored - data)) <= params.scale * 2.0001


def test_quantize_scale_from_range():
    data = np.array([-1.0, 0.0, 1.0, 0.5], dtype=np.float32)
    _, params = quantize_int8(data)
    assert params.scale == pytest.approx(2.0 / 255.0, rel=1e-6)
    assert params.qmin == -128
    assert params.qmax == 127


def test_quantize_constant_data_uses_unit_scale():
    codes, params = quantize_int8(np.full(9, 3.0, dtype=np.float32))
    assert params.scale == 1.0
    assert len(set(codes.tolist())) == 1


def test_quantize_codes_stay_in_int8_range():
    data = np.array([-1000.0, 5.0, 1000.0], dtype=np.float32)
    codes, _ = quantize_int8(data)
    assert codes.min() >= -128
    assert codes.max() <= 127
    assert codes[0] <= codes[1] <= codes[2]


def test_quantize_empty_raises():
    with pytest.raises(ValueError):
        quantize_int8([])


def test_dequantize_with_explicit_params():
    params = QuantizationParams(scale=0.5, zero_point=2)
    out = dequantize_int8(np.array([2, 4], dtype=np.int8), params)
    np.testing.assert_allclose(out, [0.0, 1.0])


def test_memory_pool_alignment_and_usage():
    pool = MemoryPool(1024, alignment=32)
    first = pool.allocate(3, 4)
    assert len(first) == 12
    assert pool.used == 12
    second = pool.allocate(2, 4)
    assert len(second) == 8
    assert pool.used == 40
    assert pool.capacity == 1024


def test_memory_pool_exhaustion_and_reset():
    pool = MemoryPool(64, alignment=32)
    pool.allocate(16, 4)
    with pytest.raises(MemoryError):
        pool.allocate(1, 1)
    pool.reset()
    assert pool.used == 0
    assert len(pool.allocate(16, 4)) == 64


def test_memory_pool_rejects_bad_alignment():
    with pytest.raises(ValueError):
        MemoryPool(64, alignment=3)


def test_parallel_for_visits_each_index_once():
    seen = []
    parallel_for(5, 105, seen.append)
    assert sorted(seen) == list(range(5, 105))


def test_parallel_for_empty_range_calls_nothing():
    calls = []
    parallel_for(3, 3, calls.append)
    assert calls == []


def test_parallel_for_propagates_errors():
    def fail(i):
        if i == 7:
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        parallel_for(0, 10, fail)


def test_optimized_gemm_large_matches_gemm():
    rng = np.random.default_rng(2)
    a = rng.standard_normal((120, 100)).astype(np.float32)
    b = rng.standard_normal((100, 110)).astype(np.float32)
    np.testing.assert_allclose(optimized_gemm(a, b), gemm(a, b), rtol=1e-4, atol=1e-4)


def test_optimized_gemm_small_matches_gemm():
    a = np.arange(6, dtype=np.float32).reshape(2, 3)
    b = np.arange(12, dtype=np.float32).reshape(3, 4)
    np.testing.assert_array_equal(optimized_gemm(a, b), gemm(a, b))


def test_optimized_gemm_shape_mismatch_raises():
    with pytest.raises(ValueError):
        optimized_gemm(np.ones((2, 3)), np.ones((4, 2)))


def test_performance_info_mentions_cores():
    info = performance_info()
    assert info.startswith("LightGPT Optimizations Active:")
    assert f"Threading: {os.cpu_count() or 1} cores" in info