import struct

import pytest

from lightgpt.gguf import (
    GGUFError,
    TensorInfo,
    analyze_tensor_infos,
    count_matching,
    load_specific_weights,
    load_tensor_infos,
    main,
)


def _string(text):
    data = text.encode()
    return struct.pack("<Q", len(data)) + data


def _header(n_tensors, n_kv, version=3):
    return b"GGUF" + struct.pack("<IQQ", version, n_tensors, n_kv)


def _kv(key, value_type, payload):
    return _string(key) + struct.pack("<I", value_type) + payload


def _tensor(name, dims, tensor_type, offset):
    out = _string(name) + struct.pack("<I", len(dims))
    out += b"".join(struct.pack("<Q", d) for d in dims)
    return out + struct.pack("<IQ", tensor_type, offset)


def _write(tmp_path, data, name="model.gguf"):
    path = tmp_path / name
    path.write_bytes(data)
    return path


@pytest.fixture
def model_file(tmp_path):
    metadata = [
        _kv("general.architecture", 6, _string("llama")),
        _kv("general.file_type", 4, struct.pack("<I", 1)),
        _kv("llama.offset", 5, struct.pack("<i", -3)),
        _kv("llama.eps", 7, struct.pack("<f", 0.5)),
        _kv("tokenizer.tokens", 8,
            struct.pack("<IQ", 6, 2) + _string("<s>") + _string("</s>")),
        _kv("opaque", 42, b"\x01" * 8),
    ]
    tensors = [
        _tensor("token_embd.weight", [4, 3], 0, 0),
        _tensor("blk.0.attn_q.weight", [2, 2], 1, 64),
    ]
    data = _header(len(tensors), len(metadata)) + b"".join(metadata) + b"".join(tensors)
    return _write(tmp_path, data)


def test_load_tensor_infos_reads_all_definitions(model_file):
    tensors = load_tensor_infos(model_file)
    assert [t.name for t in tensors] == ["token_embd.weight", "blk.0.attn_q.weight"]
    assert tensors[0].dimensions == (4, 3)
    assert tensors[0].type == 0
    assert tensors[1].type == 1
    assert tensors[1].offset == 64


def test_size_bytes_depends_on_type(model_file):
    f32, f16 = load_tensor_infos(model_file)
    assert f32.size_bytes == f32.param_count() * 4
    assert f16.size_bytes == f16.param_count() * 2


def test_param_count_is_product_of_dimensions():
    info = TensorInfo("x", 0, (2, 5, 7), 0)
    assert info.param_count() == 2 * 5 * 7


def test_param_count_of_scalar_is_one():
    assert TensorInfo("s", 0, (), 0).param_count() == 1


def test_count_matching(model_file):
    tensors = load_tensor_infos(model_file)
    assert count_matching(tensors, "attn") == 1
    assert count_matching(tensors, "weight") == 2
    assert count_matching(tensors, "ffn") == 0


def test_missing_file_raises(tmp_path):
    with pytest.raises(GGUFError):
        load_tensor_infos(tmp_path / "absent.gguf")


def test_truncated_file_raises(tmp_path, model_file):
    data = model_file.read_bytes()
    path = _write(tmp_path, data[:-5], "short.gguf")
    with pytest.raises(GGUFError):
        load_tensor_infos(path)


def test_analyze_respects_limit(tmp_path):
    tensors = [_tensor(f"blk.{i}.ffn.weight", [2], 0, 0) for i in range(12)]
    path = _write(tmp_path, _header(12, 0) + b"".join(tensors))
    assert len(analyze_tensor_infos(path)) == 10
    assert len(analyze_tensor_infos(path, 3)) == 3
    assert analyze_tensor_infos(path, 3)[2].name == "blk.2.ffn.weight"


def test_analyze_skips_unknown_metadata_as_fixed_block(tmp_path):
    metadata = _kv("x", 99, b"\x00" * 64) + _kv("name", 6, _string("llama"))
    data = _header(1, 2) + metadata + _tensor("output_norm.weight", [8], 0, 16)
    infos = analyze_tensor_infos(_write(tmp_path, data), 10)
    assert infos == [TensorInfo("output_norm.weight", 0, (8,), 16)]


def test_analyze_stops_at_truncated_tensor(tmp_path):
    data = _header(3, 0) + _tensor("a", [1], 0, 0) + _tensor("b", [1], 0, 0)[:-3]
    infos = analyze_tensor_infos(_write(tmp_path, data), 10)
    assert [t.name for t in infos] == ["a"]


def test_load_specific_weights_reads_values(tmp_path):
    values = [0.5, -1.25, 2.0, 3.5]
    header = _header(2, 0) + _tensor("w", [4], 0, 8) + _tensor("big", [100], 0, 32)
    body = header.ljust(512 + 8, b"\0") + struct.pack("<4f", *values)
    body = body.ljust(512 + 32, b"\0") + struct.pack("<12f", *range(12))
    path = _write(tmp_path, body)
    tensors = load_tensor_infos(path)
    weights = load_specific_weights(path, tensors, ["w", "big", "missing"])
    assert weights["w"] == values
    assert weights["big"] == [float(i) for i in range(10)]
    assert "missing" not in weights


def test_load_specific_weights_pads_past_end_with_zeros(tmp_path):
    header = _header(1, 0) + _tensor("w", [3], 0, 0)
    body = header.ljust(512, b"\0") + struct.pack("<f", 1.5)
    path = _write(tmp_path, body)
    weights = load_specific_weights(path, load_tensor_infos(path), ["w"])
    assert weights["w"] == [1.5, 0.0, 0.0]


def test_main_without_arguments_returns_one(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().out


def test_main_with_missing_file_returns_one(tmp_path):
    assert main([str(tmp_path / "absent.gguf")]) == 1


def test_main_reports_tensors(model_file, capsys):
    assert main([str(model_file)]) == 0
    out = capsys.readouterr().out
    assert "Found 2 tensors in GGUF" in out
    assert "Tensor not found: output.weight" in out
    assert "Loaded token_embd.weight" in out