"""Catalogue of the built-in models and a local cache directory that holds
their downloaded files."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from enum import IntEnum
from os import PathLike, fspath

log = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = "/var/aion/models"
DEFAULT_CACHE_LIMIT = 2 * 1024 * 1024 * 1024
MODEL_EXTENSION = ".tflite"

_MIB = 1024 * 1024
_BASE_URL = "https://models.example.com"


class ModelNotFoundError(KeyError):
    """Raised when the repository has no model of the given name."""


class ModelUnavailableError(RuntimeError):
    """Raised when a model is known but not present in the local cache."""


class ModelFormat(IntEnum):
    TFLITE = 0
    ONNX = 1
    PYTORCH = 2
    NATIVE = 3


class ModelType(IntEnum):
    NLP = 0
    VISION = 1
    CODE = 2
    AUDIO = 3
    GENERAL = 4


@dataclass
class ModelInfo:
    """Metadata for one model and where it lives in the cache."""

    name: str
    version: str
    description: str
    url: str
    hash: str
    size_bytes: int
    format: ModelFormat = ModelFormat.TFLITE
    type: ModelType = ModelType.GENERAL
    is_downloaded: bool = False
    is_cached: bool = False
    local_path: str = ""


BUILTIN_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo(
        name="mobilebert-nlu",
        version="1.0",
        description="MobileBERT for natural language understanding",
        url=f"{_BASE_URL}/mobilebert-nlu-v1.tflite",
        hash="a1b2c3d4...",
        size_bytes=25 * _MIB,
        format=ModelFormat.TFLITE,
        type=ModelType.NLP,
    ),
    ModelInfo(
        name="codegen-350m",
        version="1.0",
        description="CodeGen 350M for code completion",
        url=f"{_BASE_URL}/codegen-350m-v1.tflite",
        hash="e5f6g7h8...",
        size_bytes=350 * _MIB,
        format=ModelFormat.TFLITE,
        type=ModelType.CODE,
    ),
    ModelInfo(
        name="mobilenet-v3",
        version="1.0",
        description="MobileNetV3 for image classification",
        url=f"{_BASE_URL}/mobilenet-v3.tflite",
        hash="i9j0k1l2...",
        size_bytes=5 * _MIB,
        format=ModelFormat.TFLITE,
        type=ModelType.VISION,
    ),
    ModelInfo(
        name="yolov5-nano",
        version="1.0",
        description="YOLOv5 Nano for object detection",
        url=f"{_BASE_URL}/yolov5-nano.tflite",
        hash="m3n4o5p6...",
        size_bytes=7 * _MIB,
        format=ModelFormat.TFLITE,
        type=ModelType.VISION,
    ),
    ModelInfo(
        name="whisper-tiny",
        version="1.0",
        description="Whisper Tiny for speech recognition",
        url=f"{_BASE_URL}/whisper-tiny.tflite",
        hash="q7r8s9t0...",
        size_bytes=39 * _MIB,
        format=ModelFormat.TFLITE,
        type=ModelType.AUDIO,
    ),
)


class ModelRepository:
    """The built-in models, tracked against files in a cache directory."""

    def __init__(self, cache_dir: str | PathLike[str] | None = None) -> None:
        self.cache_dir = fspath(cache_dir) if cache_dir is not None else DEFAULT_CACHE_DIR
        try:
            os.mkdir(self.cache_dir, 0o755)
        except OSError:
            pass
        self.auto_download = True
        self.verify_hash = True
        self.cache_limit_bytes = DEFAULT_CACHE_LIMIT
        self.cache_size_bytes = 0
        self.models: list[ModelInfo] = []
        self._register_builtin()
        log.info("initialized at %s with %d models", self.cache_dir, len(self.models))

    def _register_builtin(self) -> None:
        self.models = []
        for builtin in BUILTIN_MODELS:
            info = replace(builtin)
            info.local_path = f"{self.cache_dir}/{info.name}{MODEL_EXTENSION}"
            try:
                size = os.stat(info.local_path).st_size
            except OSError:
                pass
            else:
                info.is_downloaded = True
                info.is_cached = True
                self.cache_size_bytes += size
            self.models.append(info)

    def __iter__(self):
        return iter(self.models)

    def __len__(self) -> int:
        return len(self.models)

    def get(self, name: str) -> ModelInfo | None:
        """The model of that name, or ``None``."""
        return next((m for m in self.models if m.name == name), None)

    def _require(self, name: str) -> ModelInfo:
        info = self.get(name)
        if info is None:
            raise ModelNotFoundError(name)
        return info

    def download(self, model_name: str) -> ModelInfo:
        """Mark the model as fetched into the cache and account for its size."""
        info = self._require(model_name)
        if info.is_downloaded:
            log.info("model already downloaded: %s", model_name)
            return info
        log.info("downloading %s (%d MB)", model_name, info.size_bytes // _MIB)
        info.is_downloaded = True
        info.is_cached = True
        self.cache_size_bytes += info.size_bytes
        log.info("downloaded %s", model_name)
        return info

    def load(self, model_name: str) -> bytes:
        """The contents of a downloaded model's file."""
        info = self._require(model_name)
        if not info.is_downloaded:
            raise ModelUnavailableError(f"model not downloaded: {model_name}")
        with open(info.local_path, "rb") as handle:
            content = handle.read()
        log.info("loaded %s (%d bytes)", model_name, len(content))
        return content

    def exists(self, model_name: str) -> bool:
        info = self.get(model_name)
        return info is not None and info.is_downloaded

    def get_or_download(self, model_name: str) -> bytes:
        """Load the model, downloading it first when auto-download allows."""
        if not self.exists(model_name):
            if not self.auto_download:
                raise ModelUnavailableError(
                    f"model {model_name} is not available and auto-download is disabled"
                )
            log.info("auto-downloading %s", model_name)
            self.download(model_name)
        return self.load(model_name)

    def clear_cache(self) -> None:
        """Delete every cached model file and reset the cache accounting."""
        log.info("clearing cache")
        for info in self.models:
            if info.is_cached:
                try:
                    os.remove(info.local_path)
                except OSError:
                    pass
                info.is_downloaded = False
                info.is_cached = False
        self.cache_size_bytes = 0
        log.info("cache cleared")