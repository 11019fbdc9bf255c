"""Text recognition for equipment labels using an OpenVINO model."""

from __future__ import annotations

import logging
import os
import shutil
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

import numpy as np

from .exceptions import RecognitionError
from .models import RecognizedText

try:  # pragma: no cover - optional dependency
    import openvino as ov  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    ov = None  # type: ignore

try:  # pragma: no cover - optional dependency
    from PIL import Image  # type: ignore
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Image = None  # type: ignore

logger = logging.getLogger(__name__)

_DEFAULT_ALPHABET = os.getenv(
    "FIELDSCAN_OCR_ALPHABET",
    "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ" " ,.:-_/\\()[]{}@#%&+*=;!?\"'",
)
_DEFAULT_BLANK_ID = int(os.getenv("FIELDSCAN_OCR_BLANK_ID", "0"))

_DEFAULT_MODEL_URLS = {
    "xml": os.getenv(
        "FIELDSCAN_OCR_MODEL_XML_URL",
        "https://storage.openvinotoolkit.org/repositories/open_model_zoo/2023.2/models_bin/1/"
        "text-recognition-0014/FP16/text-recognition-0014.xml",
    ),
    "bin": os.getenv(
        "FIELDSCAN_OCR_MODEL_BIN_URL",
        "https://storage.openvinotoolkit.org/repositories/open_model_zoo/2023.2/models_bin/1/"
        "text-recognition-0014/FP16/text-recognition-0014.bin",
    ),
}


class TextRecognizer(Protocol):
    def recognize(self, image) -> List[RecognizedText]:
        ...


@dataclass(slots=True)
class OpenVinoOCRConfig:
    """Configuration for the OpenVINO label recognizer."""

    recognition_model: Optional[Path]
    device: str = os.getenv("FIELDSCAN_OCR_DEVICE", "CPU")
    alphabet: str = _DEFAULT_ALPHABET
    blank_id: int = _DEFAULT_BLANK_ID

    @classmethod
    def from_env(cls) -> "OpenVinoOCRConfig":
        model_path = os.getenv("FIELDSCAN_OCR_RECOGNITION_MODEL")
        if model_path:
            recognition_model = Path(model_path).expanduser()
        else:
            default_root = Path(os.getenv("FIELDSCAN_MODEL_DIR", "models")).expanduser()
            recognition_model = default_root / "ocr" / "text-recognition-0014.xml"
        return cls(recognition_model=recognition_model)


def ctc_decode(logits: np.ndarray, alphabet: str, blank_id: int = 0) -> tuple[str, float]:
    """Greedy CTC decode returning the text and its mean character probability."""

    if logits.ndim == 3:
        logits = logits[:, 0, :] if logits.shape[1] == 1 else logits[0]
    elif logits.ndim != 2:
        raise ValueError(f"Unsupported logits shape: {logits.shape}")
    shifted = logits - logits.max(axis=1, keepdims=True)
    probs = np.exp(shifted)
    probs /= probs.sum(axis=1, keepdims=True)
    token_ids = probs.argmax(axis=1)
    chars: list[str] = []
    scores: list[float] = []
    prev = None
    for step, idx in enumerate(token_ids):
        idx = int(idx)
        if idx == blank_id:
            prev = None
            continue
        if idx == prev:
            continue
        prev = idx
        if 0 <= idx < len(alphabet):
            chars.append(alphabet[idx])
            scores.append(float(probs[step, idx]))
        else:
            logger.debug("Token id %s is outside of alphabet range", idx)
    if not chars:
        return "", 0.0
    return "".join(chars), float(np.mean(scores))


class OpenVINOTextRecognizer:
    """Thin wrapper around an OpenVINO text recognition network."""

    def __init__(self, config: OpenVinoOCRConfig) -> None:
        if ov is None:
            raise RecognitionError("OpenVINO runtime is not installed")
        if Image is None:
            raise RecognitionError("Pillow is required for OpenVINO OCR support")
        if not config.recognition_model:
            raise RecognitionError("Recognition model path is not configured. Set FIELDSCAN_OCR_RECOGNITION_MODEL")
        _ensure_model_files(config.recognition_model)
        self._alphabet = config.alphabet
        self._blank_id = config.blank_id
        core = ov.Core()
        model = core.read_model(str(config.recognition_model))
        self._compiled = core.compile_model(model, config.device)
        self._input = self._compiled.input(0)
        self._output = self._compiled.output(0)
        input_shape = list(self._input.shape)  # type: ignore[call-arg]
        if len(input_shape) != 4:
            raise RecognitionError(f"Unsupported recognition model input shape: {input_shape}")
        self._channels = input_shape[1]
        self._target_height = input_shape[2]
        self._target_width = input_shape[3]

    def recognize(self, image) -> List[RecognizedText]:
        """Recognize the single text line in ``image``.

        Label crops are expected; the result is one candidate at most.
        """

        try:
            pil_image = image if isinstance(image, Image.Image) else Image.fromarray(np.asarray(image))
        except (TypeError, ValueError) as exc:
            raise RecognitionError(f"Invalid image: {exc}") from exc
        outputs = self._compiled({self._input: self._prepare_input(pil_image)})
        text, confidence = ctc_decode(np.asarray(outputs[self._output]), self._alphabet, self._blank_id)
        text = text.strip()
        if not text:
            return []
        return [RecognizedText(text=text, confidence=confidence)]

    def _prepare_input(self, image: "Image.Image") -> np.ndarray:
        image = image.convert("L") if self._channels == 1 else image.convert("RGB")
        resized = image.resize((self._target_width, self._target_height))
        array = np.asarray(resized, dtype=np.float32)
        if self._channels == 1:
            array = array[np.newaxis, :, :]
        else:
            array = np.transpose(array, (2, 0, 1))  # HWC -> CHW
        return (array / 255.0)[np.newaxis, ...]


def _ensure_model_files(model_path: Path) -> None:
    bin_path = model_path.with_suffix(".bin")
    if model_path.exists() and bin_path.exists():
        return
    model_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        if not model_path.exists():
            _download_file(_DEFAULT_MODEL_URLS["xml"], model_path)
        if not bin_path.exists():
            _download_file(_DEFAULT_MODEL_URLS["bin"], bin_path)
    except (OSError, RuntimeError) as exc:
        logger.warning("Failed to download OpenVINO OCR model: %s", exc)
        for path in (model_path, bin_path):
            if path.exists():
                path.unlink()
        raise RecognitionError(f"OCR model unavailable: {exc}") from exc


def _download_file(url: str, destination: Path) -> None:
    logger.info("Downloading OpenVINO OCR model from %s", url)
    tmp_path = destination.with_suffix(destination.suffix + ".part")
    with urllib.request.urlopen(url) as response, open(tmp_path, "wb") as handle:
        status = getattr(response, "status", 200)
        if status != 200:
            raise RuntimeError(f"Download failed with status {status}: {url}")
        shutil.copyfileobj(response, handle)
    if tmp_path.stat().st_size == 0:
        tmp_path.unlink()
        raise RuntimeError(f"Downloaded file is empty: {url}")
    if destination.suffix.lower() == ".xml" and not tmp_path.read_bytes().lstrip()[:5] == b"<?xml":
        tmp_path.unlink()
        raise RuntimeError("Downloaded XML does not appear to be valid IR")
    tmp_path.replace(destination)


def load_default_recognizer() -> Optional[OpenVINOTextRecognizer]:
    """Build the recognizer from the environment, or ``None`` if unavailable."""

    config = OpenVinoOCRConfig.from_env()
    try:
        recognizer = OpenVINOTextRecognizer(config)
    except RecognitionError as exc:
        logger.warning("OpenVINO OCR disabled: %s", exc)
        return None
    logger.info("Loaded OpenVINO OCR model from %s", config.recognition_model)
    return recognizer
