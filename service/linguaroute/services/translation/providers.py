"""Translation provider backends.

Every provider exposes the same async interface so the router can walk a
fixed failover chain without knowing which backend sits behind each entry.
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from linguaroute.core.config import Settings
from linguaroute.core.exceptions import ProviderTransientError
from linguaroute.models.translation import (
    DetectionResult,
    ProviderRequest,
    ProviderTranslation,
)
from linguaroute.services.translation.language_detector import SUPPORTED_LANGUAGES
from linguaroute.services.translation.tone import ToneTemplateService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderProfile:
    """Static description of a provider: cost, latency target and compliance tags."""

    id: str
    cost_per_char_usd: float = 0.0
    latency_target_ms: int = 2000
    reliability: float = 0.9
    regions: Optional[Tuple[str, ...]] = ("global",)
    certifications: Tuple[str, ...] = ()
    kind: str = "llm"
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderProfile":
        known = {
            "id",
            "cost_per_char_usd",
            "latency_target_ms",
            "reliability",
            "regions",
            "certifications",
            "kind",
        }
        return cls(
            id=str(data["id"]),
            cost_per_char_usd=float(data.get("cost_per_char_usd", 0.0)),
            latency_target_ms=int(data.get("latency_target_ms", 2000)),
            reliability=float(data.get("reliability", 0.9)),
            regions=tuple(data["regions"]) if data.get("regions") is not None else ("global",),
            certifications=tuple(data.get("certifications") or ()),
            kind=str(data.get("kind", "llm")),
            extra={k: v for k, v in data.items() if k not in known},
        )


class TranslationProvider(ABC):
    """Interface implemented by every translation backend."""

    def __init__(self, profile: ProviderProfile):
        self.profile = profile

    @property
    def id(self) -> str:
        return self.profile.id

    @abstractmethod
    async def translate(self, request: ProviderRequest) -> ProviderTranslation:
        """Translate text. Raises on failure."""

    @abstractmethod
    async def rewrite(self, text: str, tone: str) -> str:
        """Restate text in the requested tone."""

    async def detect(self, text: str) -> Optional[DetectionResult]:
        """Optional language detection; None means the provider cannot tell."""
        return None


class LLMTranslationProvider(TranslationProvider):
    """Provider backed by a chat model client.

    The client may expose an async `generate(prompt)` or a sync `invoke(prompt)`;
    responses with a `content` attribute are unwrapped.
    """

    TRANSLATION_PROMPT = """{tone_prefix}
Translate the following text from {source_lang} to {target_lang}.
Maintain the original meaning and technical accuracy. Return only the translation.

Text to translate:
{text}

Translation:"""

    REWRITE_PROMPT = """Rewrite the following text in a {tone} tone without changing its meaning.
Return only the rewritten text.

Text:
{text}

Rewritten text:"""

    def __init__(
        self,
        profile: ProviderProfile,
        llm: Any,
        tone_service: Optional[ToneTemplateService] = None,
    ):
        super().__init__(profile)
        self.llm = llm
        self.tones = tone_service or ToneTemplateService()

    async def _llm_text(self, prompt: str) -> str:
        if hasattr(self.llm, "generate"):
            result = self.llm.generate(prompt)
            if inspect.isawaitable(result):
                result = await result
        elif hasattr(self.llm, "invoke"):
            result = await asyncio.to_thread(self.llm.invoke, prompt)
        else:
            raise AttributeError("LLM client must expose generate() or invoke()")

        if hasattr(result, "content"):
            return str(result.content).strip()
        return str(result).strip()

    async def translate(self, request: ProviderRequest) -> ProviderTranslation:
        source_name = (
            SUPPORTED_LANGUAGES.get(request.source_language, request.source_language)
            if request.source_language
            else "the detected source language"
        )
        prompt = self.TRANSLATION_PROMPT.format(
            tone_prefix=self.tones.get_prompt_prefix(request.tone),
            source_lang=source_name,
            target_lang=SUPPORTED_LANGUAGES.get(
                request.target_language, request.target_language
            ),
            text=request.text,
        )

        start = time.perf_counter()
        try:
            text = await self._llm_text(prompt)
        except Exception as e:
            raise ProviderTransientError(
                self.id, f"Model {self.id} failed to translate: {e}"
            ) from e
        latency_ms = int((time.perf_counter() - start) * 1000)

        if not text:
            raise ProviderTransientError(
                self.id, f"Model {self.id} returned an empty translation"
            )
        return ProviderTranslation(
            text=text,
            detected_language=request.source_language,
            latency_ms=latency_ms,
            confidence=self.profile.reliability,
            model_id=self.id,
        )

    async def rewrite(self, text: str, tone: str) -> str:
        prompt = self.REWRITE_PROMPT.format(tone=self.tones.normalize(tone), text=text)
        try:
            rewritten = await self._llm_text(prompt)
        except Exception as e:
            raise ProviderTransientError(
                self.id, f"Model {self.id} failed to rewrite: {e}"
            ) from e
        if not rewritten:
            raise ProviderTransientError(self.id, f"Model {self.id} returned an empty rewrite")
        return rewritten


class MockModelProvider(TranslationProvider):
    """Deterministic provider for tests and local development.

    Fails its first `failures` calls with a transient error, optionally sleeps
    `latency_ms` per call, and echoes the text behind a prefix.
    """

    def __init__(
        self,
        profile: ProviderProfile,
        failures: int = 0,
        error_code: str = "MODEL_FAILURE",
        error: Optional[Exception] = None,
        latency_ms: Optional[int] = None,
        prefix: Optional[str] = None,
        detected_language: Optional[str] = None,
        detection_confidence: float = 0.9,
        confidence: Optional[float] = None,
    ):
        super().__init__(profile)
        self.remaining_failures = failures
        self.error_code = error_code
        self.error = error
        self.latency_ms = latency_ms
        self.prefix = prefix if prefix is not None else f"[{profile.id}]"
        self.detected_language = detected_language
        self.detection_confidence = detection_confidence
        self.confidence = confidence
        self.calls = 0
        self.requests: List[ProviderRequest] = []

    async def _simulate(self) -> None:
        self.calls += 1
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000)
        if self.error is not None:
            raise self.error
        if self.remaining_failures > 0:
            self.remaining_failures -= 1
            raise ProviderTransientError(
                self.id, f"Simulated failure of model {self.id}", error_code=self.error_code
            )

    async def translate(self, request: ProviderRequest) -> ProviderTranslation:
        self.requests.append(request)
        start = time.perf_counter()
        await self._simulate()
        text = f"{self.prefix} {request.text}".strip() if self.prefix else request.text
        return ProviderTranslation(
            text=text,
            detected_language=self.detected_language or request.source_language,
            latency_ms=int((time.perf_counter() - start) * 1000),
            confidence=self.confidence if self.confidence is not None else self.profile.reliability,
            model_id=self.id,
        )

    async def rewrite(self, text: str, tone: str) -> str:
        await self._simulate()
        return f"{text} [{tone}]"

    async def detect(self, text: str) -> Optional[DetectionResult]:
        if not self.detected_language:
            return None
        return DetectionResult(
            language=self.detected_language,
            confidence=self.detection_confidence,
            candidates=[(self.detected_language, self.detection_confidence)],
            backend=self.id,
        )


class ProviderFactory:
    """Builds the failover chain from Settings.MODEL_ALLOW_LIST."""

    @staticmethod
    def create(
        settings: Settings,
        llm_clients: Optional[Mapping[str, Any]] = None,
        tone_service: Optional[ToneTemplateService] = None,
    ) -> List[TranslationProvider]:
        """Create providers in allow-list order.

        Args:
            settings: Settings holding MODEL_ALLOW_LIST
            llm_clients: Model clients keyed by provider id
            tone_service: Shared tone templates

        Returns:
            Providers in declaration order (a single mock provider if the list is empty)
        """
        llm_clients = llm_clients or {}
        providers: List[TranslationProvider] = []
        for entry in settings.MODEL_ALLOW_LIST:
            profile = ProviderProfile.from_dict(entry)
            client = llm_clients.get(profile.id)
            if client is not None:
                providers.append(LLMTranslationProvider(profile, client, tone_service))
                continue
            if profile.kind != "mock":
                logger.warning(
                    f"No model client configured for provider {profile.id}, using mock backend"
                )
            providers.append(MockModelProvider(profile))

        if not providers:
            logger.warning("MODEL_ALLOW_LIST is empty, using a single mock provider")
            providers.append(
                MockModelProvider(ProviderProfile(id="mock-primary", kind="mock"), prefix="[Mock]")
            )
        logger.info(f"Configured {len(providers)} translation provider(s)")
        return providers
