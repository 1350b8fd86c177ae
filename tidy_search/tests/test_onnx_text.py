"""Tests for the ONNX text encoder used by text search."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from onnx_text import OnnxTextEncoder, TextEncoderError, load_text_encoder


def _encoder_with_output(output, dim: int) -> OnnxTextEncoder:
    enc = OnnxTextEncoder(Path("/fake.onnx"), "ViT-B-32", dim=dim)
    session = MagicMock()
    session.run.return_value = [output]
    enc._session = session

    tok = MagicMock()
    tok.return_value = MagicMock(
        numpy=MagicMock(return_value=np.array([[1, 2, 3]], dtype=np.int64))
    )
    enc._tokenizer = tok
    return enc


# -- OnnxTextEncoder --


def test_loaded_false_before_load():
    enc = OnnxTextEncoder(Path("/fake.onnx"), "ViT-B-32")
    assert not enc.loaded


def test_encode_text_normalizes():
    # unnormalized [3, 4] has norm 5
    enc = _encoder_with_output(np.array([[3.0, 4.0]], dtype=np.float32), dim=2)

    vec = enc.encode_text("a dog on a beach")
    assert vec.shape == (2,)
    assert vec.dtype == np.float32
    assert abs(np.linalg.norm(vec) - 1.0) < 1e-5
    assert abs(vec[0] - 0.6) < 1e-5
    assert abs(vec[1] - 0.8) < 1e-5

    feed = enc._session.run.call_args.args[1]
    assert feed["input_ids"].dtype == np.int64


def test_encode_text_zero_vector():
    """Zero vector stays zero instead of dividing by zero."""
    enc = _encoder_with_output(np.zeros((1, 4), dtype=np.float32), dim=4)
    assert np.allclose(enc.encode_text("test"), 0.0)


def test_encode_text_wrong_dimension():
    enc = _encoder_with_output(np.ones((1, 3), dtype=np.float32), dim=4)
    with pytest.raises(TextEncoderError):
        enc.encode_text("test")


def test_encode_text_wraps_runtime_failure():
    enc = _encoder_with_output(None, dim=4)
    enc._session.run.side_effect = RuntimeError("bad graph")
    with pytest.raises(TextEncoderError):
        enc.encode_text("test")


def test_corrupt_model_file_raises_and_stays_unloaded(tmp_path):
    model = tmp_path / "textual.onnx"
    model.write_bytes(b"not an onnx graph")
    enc = OnnxTextEncoder(model, "ViT-B-32", dim=4)
    with pytest.raises(TextEncoderError):
        enc.encode_text("test")
    assert not enc.loaded


# -- load_text_encoder --


def test_load_missing_model(tmp_path):
    assert load_text_encoder(tmp_path / "textual.onnx") is None


def test_load_without_sidecar_uses_default_tokenizer(tmp_path):
    model = tmp_path / "textual.onnx"
    model.write_bytes(b"fake")
    enc = load_text_encoder(model, dim=4)
    assert enc is not None
    assert not enc.loaded
    assert enc.dim == 4
    assert enc._tokenizer_model == "ViT-B-32"


def test_load_with_sidecar(tmp_path):
    model = tmp_path / "textual.onnx"
    model.write_bytes(b"fake")
    (tmp_path / "textual.json").write_text(json.dumps({"tokenizer_model": "ViT-B-16"}))

    enc = load_text_encoder(model)
    assert enc is not None
    assert enc._tokenizer_model == "ViT-B-16"


def test_load_corrupt_sidecar(tmp_path):
    model = tmp_path / "textual.onnx"
    model.write_bytes(b"fake")
    (tmp_path / "textual.json").write_text("not json{{{")
    assert load_text_encoder(model) is None


def test_load_sidecar_missing_key(tmp_path):
    model = tmp_path / "textual.onnx"
    model.write_bytes(b"fake")
    (tmp_path / "textual.json").write_text(json.dumps({"other": 1}))
    assert load_text_encoder(model) is None
