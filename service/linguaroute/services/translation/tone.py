"""Tone templates used as prompt prefixes for translation and rewrite."""

from typing import Dict, Optional


class ToneTemplateService:
    POLITE = "polite"
    CASUAL = "casual"
    BUSINESS = "business"
    TECHNICAL = "technical"
    DEFAULT_TONE = POLITE

    TEMPLATES: Dict[str, str] = {
        POLITE: "Translate the following content using a polite, formal tone.",
        CASUAL: "Translate the following content using a relaxed, casual tone.",
        BUSINESS: "Translate the following content using a formal tone suited to business communication.",
        TECHNICAL: "Translate the following content using the precise tone of technical documentation.",
    }

    def get_prompt_prefix(self, tone: Optional[str]) -> str:
        """Return the prompt prefix for a tone, falling back to the default tone."""
        key = (tone or "").strip().lower()
        return self.TEMPLATES.get(key, self.TEMPLATES[self.DEFAULT_TONE])

    def normalize(self, tone: Optional[str]) -> str:
        key = (tone or "").strip().lower()
        return key if key in self.TEMPLATES else self.DEFAULT_TONE

    def available_tones(self) -> Dict[str, str]:
        return dict(self.TEMPLATES)
