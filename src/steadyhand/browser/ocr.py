"""OCR engine adapter used by the CAPTCHA solver.

Recognition itself is Tesseract's job; this module only prepares the image,
builds the engine options and reports ``(text, confidence)``.  Tesseract
calls block, so they run in worker threads behind a semaphore that is
created on first use.

An exhaustive request sweeps every preprocess variant against several page
segmentation modes and keeps the best reading: text of the expected length
first, then the highest confidence.
"""

from __future__ import annotations

import asyncio
import logging
import string
from dataclasses import dataclass
from io import BytesIO
from typing import Protocol, runtime_checkable

import pytesseract
from PIL import Image, ImageFilter, ImageOps

logger = logging.getLogger(__name__)

DEFAULT_WHITELIST = string.ascii_letters + string.digits

# 7: single line, 8: single word, 13: raw line, 6: uniform block
PSM_MODES = (7, 8, 13, 6)


@dataclass(frozen=True)
class PreprocessVariant:
    """One binarization recipe for a CAPTCHA image."""

    name: str
    threshold: int = 128
    invert: bool = False
    remove_lines: bool = True


STANDARD = PreprocessVariant("standard")

PREPROCESS_VARIANTS = (
    STANDARD,
    PreprocessVariant("high-contrast", threshold=100),
    PreprocessVariant("low-contrast", threshold=160),
    PreprocessVariant("inverted", invert=True),
    PreprocessVariant("no-line-removal", remove_lines=False),
)


@dataclass
class OcrOptions:
    """Per-request recognition hints."""

    lang: str = "eng"
    expected_length: int | None = None
    allowed_chars: str | None = None
    min_confidence: float = 75.0
    turbo: bool = False
    exhaustive: bool = False


@dataclass
class OcrResult:
    text: str
    confidence: float
    variant: str = STANDARD.name
    psm: int | None = None


@runtime_checkable
class OcrEngine(Protocol):
    """Anything that can read a CAPTCHA image."""

    async def recognize(self, image_png: bytes, options: OcrOptions) -> OcrResult:
        """Return the recognized text and a 0-100 confidence."""
        ...


def preprocess(image: Image.Image, *, turbo: bool = False, variant: PreprocessVariant = STANDARD) -> Image.Image:
    """Grayscale, upscale small images, despeckle and binarize unless *turbo* is set."""
    gray = ImageOps.grayscale(image)
    if turbo:
        return gray
    if gray.width < 200:
        scale = max(2, 200 // max(gray.width, 1))
        gray = gray.resize((gray.width * scale, gray.height * scale), Image.LANCZOS)
    gray = ImageOps.autocontrast(gray)
    if variant.remove_lines:
        # Thin strike-through lines and isolated specks
        gray = gray.filter(ImageFilter.MedianFilter(3))
    threshold = variant.threshold
    if variant.invert:
        return gray.point(lambda px: 0 if px > threshold else 255)
    return gray.point(lambda px: 255 if px > threshold else 0)


def build_config(options: OcrOptions, psm: int | None = None) -> str:
    """Build the Tesseract command-line config for *options*."""
    whitelist = options.allowed_chars or DEFAULT_WHITELIST
    if psm is None:
        psm = 8 if options.expected_length and options.expected_length <= 8 else 7
    oem = 1 if options.turbo else 3
    return f"--psm {psm} --oem {oem} -c tessedit_char_whitelist={whitelist}"


def is_better(candidate: OcrResult, best: OcrResult | None, expected_length: int | None = None) -> bool:
    """Return ``True`` when *candidate* should replace *best*.

    Empty readings never win.  With an expected length, a reading of that
    length beats one that is not; otherwise the higher confidence wins.
    """
    if not candidate.text:
        return False
    if best is None or not best.text:
        return True
    if expected_length:
        candidate_fits = len(candidate.text) == expected_length
        best_fits = len(best.text) == expected_length
        if candidate_fits != best_fits:
            return candidate_fits
    return candidate.confidence > best.confidence


def is_acceptable(result: OcrResult, options: OcrOptions) -> bool:
    """Whether *result* is good enough to stop sweeping."""
    if not result.text or result.confidence < options.min_confidence:
        return False
    return not options.expected_length or len(result.text) == options.expected_length


def read_words(data: dict) -> tuple[str, float]:
    """Join the words of a ``image_to_data`` dict and average their confidence."""
    words: list[str] = []
    confidences: list[float] = []
    for word, conf in zip(data.get("text", []), data.get("conf", [])):
        word = str(word).strip()
        conf = float(conf)
        if not word or conf < 0:
            continue
        words.append(word)
        confidences.append(conf)

    confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return "".join(words), round(confidence, 2)


class TesseractOcrEngine:
    """``OcrEngine`` backed by pytesseract and Pillow.

    Args:
        workers: Maximum concurrent Tesseract processes.
        tesseract_cmd: Explicit path to the ``tesseract`` binary.
    """

    def __init__(self, workers: int = 2, tesseract_cmd: str = "") -> None:
        self._workers = max(1, workers)
        self._tesseract_cmd = tesseract_cmd
        self._semaphore: asyncio.Semaphore | None = None
        self._version: str | None = None

    @property
    def initialized(self) -> bool:
        return self._semaphore is not None

    async def _ensure_started(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            if self._tesseract_cmd:
                pytesseract.pytesseract.tesseract_cmd = self._tesseract_cmd
            version = await asyncio.to_thread(pytesseract.get_tesseract_version)
            self._version = str(version)
            self._semaphore = asyncio.Semaphore(self._workers)
            logger.info("Tesseract %s ready (%d workers)", self._version, self._workers)
        return self._semaphore

    async def recognize(self, image_png: bytes, options: OcrOptions) -> OcrResult:
        semaphore = await self._ensure_started()
        async with semaphore:
            return await asyncio.to_thread(self._recognize_sync, image_png, options)

    @classmethod
    def _recognize_sync(cls, image_png: bytes, options: OcrOptions) -> OcrResult:
        with Image.open(BytesIO(image_png)) as img:
            img.load()
            if not options.exhaustive or options.turbo:
                return cls._read(preprocess(img, turbo=options.turbo), options, STANDARD, None)
            return cls._sweep(img, options)

    @classmethod
    def _sweep(cls, img: Image.Image, options: OcrOptions) -> OcrResult:
        best: OcrResult | None = None
        for variant in PREPROCESS_VARIANTS:
            prepared = preprocess(img, variant=variant)
            for psm in PSM_MODES:
                try:
                    result = cls._read(prepared, options, variant, psm)
                except pytesseract.TesseractError as exc:
                    logger.debug("OCR pass %s/psm %d failed: %s", variant.name, psm, exc)
                    continue
                if is_better(result, best, options.expected_length):
                    best = result
                if is_acceptable(result, options):
                    return result
            if best is not None and best.confidence >= options.min_confidence:
                break
        return best or OcrResult(text="", confidence=0.0)

    @staticmethod
    def _read(prepared: Image.Image, options: OcrOptions, variant: PreprocessVariant, psm: int | None) -> OcrResult:
        data = pytesseract.image_to_data(
            prepared,
            lang=options.lang,
            config=build_config(options, psm),
            output_type=pytesseract.Output.DICT,
        )
        text, confidence = read_words(data)
        logger.debug("OCR %s/psm %s read %r (confidence %.1f)", variant.name, psm or "auto", text, confidence)
        return OcrResult(text=text, confidence=confidence, variant=variant.name, psm=psm)
