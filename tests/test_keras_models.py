# tests/test_keras_models.py
import numpy as np
import pytest

from kyc.domain.errors import ExtractionError, ModelError
from kyc.infrastructure.ml import keras_models
from kyc.infrastructure.ml.keras_models import (
    KerasAudioEmbeddingExtractor, KerasImageEmbeddingExtractor, KerasProbabilityClassifier, get_model,
)


@pytest.fixture
def predictions(monkeypatch):
    """Reemplaza la inferencia: registra el batch recibido y devuelve la salida configurada."""
    state = {"output": None, "batches": []}

    def fake_predict(path, batch):
        state["batches"].append(batch)
        return np.asarray(state["output"], dtype=np.float32)

    monkeypatch.setattr(keras_models, "_predict", fake_predict)
    return state


def test_missing_model_file_is_a_model_error(tmp_path):
    with pytest.raises(ModelError):
        get_model(str(tmp_path / "missing.keras"))


def test_image_extractor_preprocesses_to_model_input(predictions):
    predictions["output"] = np.ones((1, 4))
    emb = KerasImageEmbeddingExtractor("face.keras", embedding_dim=4).extract(
        np.zeros((100, 80, 3), dtype=np.uint8))
    assert emb.tolist() == [1.0, 1.0, 1.0, 1.0]
    assert predictions["batches"][0].shape == (1, 224, 224, 3)


def test_image_extractor_rejects_bad_shapes(predictions):
    extractor = KerasImageEmbeddingExtractor("face.keras", embedding_dim=4)
    with pytest.raises(ExtractionError):
        extractor.extract(np.zeros((10, 10), dtype=np.uint8))
    predictions["output"] = np.ones((1, 3))
    with pytest.raises(ExtractionError):
        extractor.extract(np.zeros((10, 10, 3), dtype=np.uint8))


def test_audio_extractor_pads_and_trims(predictions):
    predictions["output"] = np.ones((1, 2))
    extractor = KerasAudioEmbeddingExtractor("voice.keras", embedding_dim=2, num_samples=100)
    extractor.extract(np.ones(30, dtype=np.float32))
    extractor.extract(np.ones(300, dtype=np.float32))
    assert [b.shape for b in predictions["batches"]] == [(1, 100), (1, 100)]
    assert predictions["batches"][0][0, 30:].sum() == 0.0

    with pytest.raises(ExtractionError):
        extractor.extract(np.array([np.nan], dtype=np.float32))
    with pytest.raises(ExtractionError):
        extractor.extract(np.zeros(0, dtype=np.float32))


def test_classifier_with_two_outputs(predictions):
    predictions["output"] = [[0.9, 0.1]]
    verdict = KerasProbabilityClassifier("live.keras", threshold=0.75).classify(np.ones(4))
    assert verdict.is_real
    assert verdict.real_prob == pytest.approx(0.9)


def test_classifier_with_scalar_output_and_real_index(predictions):
    predictions["output"] = [[0.8]]
    # salida escalar = probabilidad de la clase 1
    assert KerasProbabilityClassifier("clone.keras", real_index=1).classify(np.ones(4)).is_real
    assert not KerasProbabilityClassifier("clone.keras", real_index=0).classify(np.ones(4)).is_real


def test_classifier_validates_input_and_output(predictions):
    predictions["output"] = [[0.2, 0.3, 0.5]]
    with pytest.raises(ModelError):
        KerasProbabilityClassifier("live.keras").classify(np.ones(4))
    with pytest.raises(ModelError):
        KerasProbabilityClassifier("live.keras", input_dim=8).classify(np.ones(4))
