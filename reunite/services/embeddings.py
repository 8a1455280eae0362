from __future__ import annotations

import abc
import hashlib
import io
import re
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import List, Optional

import numpy as np
from PIL import Image

from config import settings
from reunite.domain.errors import EmbeddingUnavailable
from reunite.scripts.logging_config import get_logger

logger = get_logger("embeddings")

# short alias -> sentence-transformers model name
_ALIAS = {
    "clip-vit-b32": "clip-ViT-B-32",
    "clip-vit-b16": "clip-ViT-B-16",
    "clip-vit-l14": "clip-ViT-L-14",
    "minilm": "all-MiniLM-L6-v2",
}

_TOKEN_RE = re.compile(r"[a-z0-9]+")


# ------------------------------------------------------------------------------
# utils
# ------------------------------------------------------------------------------
def _l2_normalize(vec: np.ndarray) -> np.ndarray:
    return vec / (np.linalg.norm(vec) + 1e-9)


def _project(vec: np.ndarray, target_dim: int) -> np.ndarray:
    d = vec.shape[-1]
    if d == target_dim:
        return vec
    if d > target_dim:
        return vec[:target_dim]
    out = np.zeros(target_dim, dtype=vec.dtype)
    out[:d] = vec
    return out


def _resolve_model_name(name: str) -> str:
    return _ALIAS.get(name.lower(), name)


# ------------------------------------------------------------------------------
# providers
# ------------------------------------------------------------------------------
class EmbeddingService(abc.ABC):
    name: str = "embedding"

    @abc.abstractmethod
    def embed_text(self, text: str) -> List[float]:
        ...

    @abc.abstractmethod
    def embed_image(self, image_bytes: bytes) -> List[float]:
        ...


class HashEmbeddingService(EmbeddingService):
    """Deterministic offline embeddings.

    Text uses signed feature hashing over lowercase tokens, so shared words
    raise cosine similarity. Images hash the raw bytes (identical image ->
    identical vector, unrelated images ~0).
    """
    name = "hash"

    def __init__(self, text_dim: Optional[int] = None, image_dim: Optional[int] = None):
        self.text_dim = text_dim or settings.EMBEDDING_DIM_TEXT
        self.image_dim = image_dim or settings.EMBEDDING_DIM_IMAGE

    def embed_text(self, text: str) -> List[float]:
        tokens = _TOKEN_RE.findall((text or "").lower())
        if not tokens:
            raise EmbeddingUnavailable("no tokens to embed")
        vec = np.zeros(self.text_dim, dtype="float32")
        for tok in tokens:
            h = hashlib.sha256(tok.encode("utf-8")).digest()
            idx = int.from_bytes(h[:4], "little") % self.text_dim
            sign = 1.0 if h[4] & 1 else -1.0
            vec[idx] += sign
        return _l2_normalize(vec).tolist()

    def embed_image(self, image_bytes: bytes) -> List[float]:
        if not image_bytes:
            raise EmbeddingUnavailable("empty image")
        h = hashlib.sha256(image_bytes).digest()
        raw = (h * ((self.image_dim // len(h)) + 1))[:self.image_dim]
        arr = np.frombuffer(bytes(raw), dtype=np.uint8).astype("float32") - 127.5
        return _l2_normalize(arr).tolist()


class ModelEmbeddingService(EmbeddingService):
    """sentence-transformers text model + CLIP image model, lazily loaded."""
    name = "model"

    def __init__(self, text_model: Optional[str] = None, image_model: Optional[str] = None,
                 device: Optional[str] = None, timeout_s: Optional[float] = None):
        self.text_model_name = _resolve_model_name(text_model or settings.EMBEDDING_TEXT_MODEL)
        self.image_model_name = _resolve_model_name(image_model or settings.EMBEDDING_IMAGE_MODEL)
        self.device = device or settings.EMBEDDING_DEVICE
        self.timeout_s = timeout_s if timeout_s is not None else settings.EMBEDDING_TIMEOUT_S
        self._models = {}
        self._load_lock = threading.RLock()
        self._pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="embed")

    def _load(self, model_name: str):
        model = self._models.get(model_name)
        if model is not None:
            return model
        with self._load_lock:
            model = self._models.get(model_name)
            if model is not None:
                return model
            try:
                from sentence_transformers import SentenceTransformer  # heavy import

                kw = {"device": self.device} if self.device else {}
                model = SentenceTransformer(model_name, **kw)
            except Exception as e:
                logger.error("embedding model load failed (%s): %s", model_name, e)
                raise EmbeddingUnavailable(f"model load failed: {model_name}") from e
            self._models[model_name] = model
            logger.info("embedding model loaded: %s", model_name)
            return model

    def _encode(self, model_name: str, payload, target_dim: Optional[int]) -> List[float]:
        model = self._load(model_name)
        future = self._pool.submit(model.encode, [payload], convert_to_numpy=True, normalize_embeddings=True)
        try:
            vec = future.result(timeout=self.timeout_s)
        except FutureTimeout:
            raise EmbeddingUnavailable(f"embedding timed out after {self.timeout_s}s") from None
        except Exception as e:
            raise EmbeddingUnavailable(f"encode error: {type(e).__name__}") from e
        emb = np.asarray(vec[0], dtype="float32")
        if target_dim and emb.shape[-1] != target_dim:
            emb = _project(emb, target_dim)
        return _l2_normalize(emb).tolist()

    def embed_text(self, text: str) -> List[float]:
        if not (text or "").strip():
            raise EmbeddingUnavailable("empty text")
        return self._encode(self.text_model_name, text, settings.EMBEDDING_DIM_TEXT)

    def embed_image(self, image_bytes: bytes) -> List[float]:
        try:
            with Image.open(io.BytesIO(image_bytes)) as im:
                im = im.convert("RGB")
        except Exception as e:
            raise EmbeddingUnavailable(f"unreadable image: {e}") from e
        return self._encode(self.image_model_name, im, settings.EMBEDDING_DIM_IMAGE)


_singleton: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    global _singleton
    if _singleton:
        return _singleton
    provider = settings.EMBEDDING_PROVIDER.lower()
    if provider == "hash":
        _singleton = HashEmbeddingService()
    else:
        _singleton = ModelEmbeddingService()
    logger.info("embedding provider: %s", _singleton.name)
    return _singleton
