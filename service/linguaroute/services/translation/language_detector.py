"""Best-effort source language detection.

Detection providers are consulted first, in order. The first one that returns
a language wins and its answer is merged with local candidates. Without a
provider answer the local detector combines script hints, the langdetect
model and Latin-alphabet heuristics.
"""

import asyncio
import logging
import re
from typing import TYPE_CHECKING, ClassVar, Dict, List, Optional, Sequence, Tuple

from langdetect import DetectorFactory, detect_langs
from linguaroute.metrics.translation_metrics import (
    language_detection_confidence,
    language_detection_total,
)
from linguaroute.models.translation import DetectionResult

if TYPE_CHECKING:
    from linguaroute.services.translation.providers import TranslationProvider

logger = logging.getLogger(__name__)

# Deterministic langdetect results
DetectorFactory.seed = 0

SUPPORTED_LANGUAGES = {
    "en": "English",
    "ja": "Japanese",
    "zh": "Chinese",
    "ko": "Korean",
    "de": "German",
    "es": "Spanish",
    "fr": "French",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "pl": "Polish",
    "cs": "Czech",
    "sv": "Swedish",
    "da": "Danish",
    "fi": "Finnish",
    "no": "Norwegian",
    "ru": "Russian",
    "uk": "Ukrainian",
    "ar": "Arabic",
    "fa": "Persian",
    "he": "Hebrew",
    "hi": "Hindi",
    "mr": "Marathi",
    "th": "Thai",
    "vi": "Vietnamese",
    "id": "Indonesian",
    "ms": "Malay",
    "tr": "Turkish",
    "el": "Greek",
}

MAX_CANDIDATES = 6
MAX_CONFIDENCE = 0.99


def _clamp(value: float) -> float:
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(MAX_CONFIDENCE, float(value)))


class LanguageDetector:
    """Detect the source language of a text."""

    ENGLISH_MARKERS: ClassVar[List[str]] = [
        "the ",
        "is ",
        "are ",
        "how ",
        "what ",
        "can ",
        "this ",
        "that ",
        "with ",
        "for ",
        "please ",
        " to ",
        " of ",
        " and ",
    ]

    # (pattern, language, confidence, [(alternative, delta), ...])
    SCRIPT_HINTS: ClassVar[List[Tuple["re.Pattern[str]", str, float, List[Tuple[str, float]]]]] = [
        (re.compile(r"[\u3040-\u30ff]"), "ja", 0.96, [("zh", -0.25), ("ko", -0.3)]),
        (re.compile(r"[\u4e00-\u9fff]"), "zh", 0.88, [("ja", -0.18), ("ko", -0.25)]),
        (re.compile(r"[\uac00-\ud7af]"), "ko", 0.94, [("ja", -0.22), ("zh", -0.28)]),
        (re.compile(r"[\u0400-\u04ff]"), "ru", 0.9, [("uk", -0.1)]),
        (re.compile(r"[\u0600-\u06ff]"), "ar", 0.9, [("fa", -0.08)]),
        (re.compile(r"[\u0900-\u097f]"), "hi", 0.9, [("mr", -0.08)]),
        (re.compile(r"[\u0e00-\u0e7f]"), "th", 0.92, []),
        (re.compile(r"[\u0370-\u03ff]"), "el", 0.94, []),
        (re.compile(r"[\u0590-\u05ff]"), "he", 0.94, []),
    ]

    DIACRITIC_HINTS: ClassVar[List[Tuple["re.Pattern[str]", str, float, List[Tuple[str, float]]]]] = [
        (re.compile(r"[ñ¿¡]", re.IGNORECASE), "es", 0.84, [("pt", -0.12)]),
        (re.compile(r"[ãõç]", re.IGNORECASE), "pt", 0.82, [("es", -0.1)]),
        (re.compile(r"[àâèêëîïôûùÿœæ]", re.IGNORECASE), "fr", 0.82, [("it", -0.12)]),
        (re.compile(r"[äöüß]", re.IGNORECASE), "de", 0.82, [("sv", -0.14)]),
        (re.compile(r"[ąćęłńśźż]", re.IGNORECASE), "pl", 0.82, []),
        (re.compile(r"[čďěňřšťů]", re.IGNORECASE), "cs", 0.8, []),
    ]

    def __init__(
        self,
        providers: Optional[Sequence["TranslationProvider"]] = None,
        local_backend: str = "langdetect",
    ):
        self.providers = list(providers or [])
        self.local_backend = (local_backend or "none").strip().lower()

    @staticmethod
    def normalize_language_code(code: str) -> Optional[str]:
        normalized = (code or "").strip().lower()
        if not normalized:
            return None
        base = normalized.split("-", 1)[0]
        if base in SUPPORTED_LANGUAGES:
            return base
        return base if 2 <= len(base) <= 3 and base.isalpha() else None

    async def detect(self, text: str) -> DetectionResult:
        """Detect the language of text.

        Args:
            text: Text to inspect

        Returns:
            DetectionResult with at most six candidates, confidences in [0, 0.99]
        """
        text = (text or "").strip()
        for provider in self.providers:
            try:
                result = await provider.detect(text)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.debug(
                    f"Language detection via provider {provider.id} failed", exc_info=True
                )
                continue
            if result is not None and result.language:
                merged = self._merge(result, await self._detect_local(text))
                self._emit_metrics(merged)
                return merged

        local = await self._detect_local(text)
        self._emit_metrics(local)
        return local

    def _merge(self, primary: DetectionResult, local: DetectionResult) -> DetectionResult:
        registry: Dict[str, float] = {}
        self._register(registry, primary.language, primary.confidence)
        for language, confidence in primary.candidates:
            self._register(registry, language, confidence)
        for language, confidence in local.candidates:
            self._register(registry, language, confidence)
        candidates = self._ordered(registry)
        return DetectionResult(
            language=candidates[0][0],
            confidence=candidates[0][1],
            candidates=candidates,
            backend=primary.backend or "provider",
        )

    async def _detect_local(self, text: str) -> DetectionResult:
        registry: Dict[str, float] = {}
        backend = "heuristic"

        script_hit = False
        for pattern, language, confidence, alternatives in self.SCRIPT_HINTS:
            if pattern.search(text):
                script_hit = True
                self._register_with_alternatives(registry, language, confidence, alternatives)

        if text and not script_hit:
            model_candidates = await self._detect_with_local_model(text)
            if model_candidates:
                backend = "local_model"
                for language, confidence in model_candidates:
                    self._register(registry, language, confidence)

            for pattern, language, confidence, alternatives in self.DIACRITIC_HINTS:
                if pattern.search(text):
                    self._register_with_alternatives(
                        registry, language, confidence, alternatives
                    )

            letters = [ch for ch in text if ch.isalpha()]
            if letters:
                ascii_ratio = sum(1 for ch in letters if ch.isascii()) / len(letters)
                base = 0.74 if ascii_ratio >= 0.95 else 0.68 if ascii_ratio >= 0.75 else 0.58
                if self._is_likely_english(text):
                    base = max(base, 0.8)
                self._register_with_alternatives(
                    registry, "en", base, [("de", -0.16), ("fr", -0.16), ("es", -0.18)]
                )
        elif script_hit:
            backend = "script_hint"

        if not registry:
            self._register(registry, "en", 0.5)
            backend = "default_fallback"

        candidates = self._ordered(registry)
        return DetectionResult(
            language=candidates[0][0],
            confidence=candidates[0][1],
            candidates=candidates,
            backend=backend,
        )

    async def _detect_with_local_model(self, text: str) -> List[Tuple[str, float]]:
        if self.local_backend != "langdetect":
            return []
        try:
            raw = await asyncio.to_thread(detect_langs, text[:2000])
        except Exception:
            # langdetect raises on text without features (digits, punctuation)
            logger.debug("Local LID model failed", exc_info=True)
            return []

        parsed: List[Tuple[str, float]] = []
        for item in raw or []:
            language = self.normalize_language_code(getattr(item, "lang", ""))
            if language is not None:
                parsed.append((language, float(getattr(item, "prob", 0.0))))
        return parsed

    def _is_likely_english(self, text: str) -> bool:
        text_lower = f" {text.lower()} "
        return sum(1 for marker in self.ENGLISH_MARKERS if marker in text_lower) >= 2

    @staticmethod
    def _register(registry: Dict[str, float], language: Optional[str], score: float) -> None:
        if not language:
            return
        clamped = _clamp(score)
        if registry.get(language, -1.0) < clamped:
            registry[language] = clamped

    def _register_with_alternatives(
        self,
        registry: Dict[str, float],
        language: str,
        confidence: float,
        alternatives: List[Tuple[str, float]],
    ) -> None:
        self._register(registry, language, confidence)
        for alternative, delta in alternatives:
            self._register(registry, alternative, max(0.1, confidence + delta))

    @staticmethod
    def _ordered(registry: Dict[str, float]) -> List[Tuple[str, float]]:
        ordered = sorted(
            ((language, round(confidence, 2)) for language, confidence in registry.items()),
            key=lambda item: (-item[1], item[0]),
        )
        return ordered[:MAX_CANDIDATES]

    @staticmethod
    def _emit_metrics(result: DetectionResult) -> None:
        language_detection_total.labels(
            backend=result.backend, result=result.language
        ).inc()
        language_detection_confidence.labels(backend=result.backend).observe(
            result.confidence
        )
