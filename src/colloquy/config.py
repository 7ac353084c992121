from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = """You are a genius personal assistant. You have the following guidelines:
1. NEVER TRUNCATE CODE!!
2. Include links to github whenever mentioning software, and include links to websites whenever mentioning websites.
3. Always attempt to rewrite code in other languages. Give it your best effort."""


def get_settings() -> Settings:
    return Settings()


class Settings(BaseSettings):
    """Orchestrator configuration, overridable with ``COLLOQUY_*`` env vars."""

    model: str = "gpt-4o-mini"
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    temperature: float = 0.0
    max_chain_length: int = 10
    publish_interval: float = 0.05
    speak_answers: bool = False
    abbreviations: list[str] = []

    model_config = SettingsConfigDict(
        env_prefix="colloquy_", case_sensitive=False, frozen=True,
    )
