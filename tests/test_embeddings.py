import pytest

from reunite.domain.errors import EmbeddingUnavailable
from reunite.services.embeddings import HashEmbeddingService, ModelEmbeddingService
from reunite.services.vector_similarity import cosine


@pytest.fixture
def hashed():
    return HashEmbeddingService(text_dim=128, image_dim=64)


def test_hash_text_is_deterministic_and_normalized(hashed):
    a = hashed.embed_text("Black iPhone with blue case")
    assert a == hashed.embed_text("black iphone, with BLUE case")
    assert len(a) == 128
    assert sum(x * x for x in a) == pytest.approx(1.0, abs=1e-5)


def test_hash_text_shared_words_raise_similarity(hashed):
    base = hashed.embed_text("black leather wallet with cards")
    close = hashed.embed_text("black leather wallet")
    far = hashed.embed_text("green umbrella")
    assert cosine(base, close) > cosine(base, far)


def test_hash_rejects_empty_input(hashed):
    with pytest.raises(EmbeddingUnavailable):
        hashed.embed_text("  ...  ")
    with pytest.raises(EmbeddingUnavailable):
        hashed.embed_image(b"")


def test_hash_image_identical_bytes(hashed):
    img = b"\x89PNG\r\n fake"
    assert cosine(hashed.embed_image(img), hashed.embed_image(img)) == pytest.approx(1.0)
    assert len(hashed.embed_image(img)) == 64


def test_model_service_reports_unreadable_image():
    service = ModelEmbeddingService(text_model="minilm", image_model="clip-vit-b32")
    assert service.image_model_name == "clip-ViT-B-32"
    with pytest.raises(EmbeddingUnavailable):
        service.embed_image(b"not an image")
