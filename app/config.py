from __future__ import annotations

from dataclasses import dataclass

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM endpoints (OpenAI-compatible; OpenRouter by default)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "google/gemini-2.5-flash"
    fallback_model: str = "openai/gpt-4o-mini"  # second rung of the LLM ladder
    llm_max_tokens: int = 2048

    # Search providers, tried in this order
    tavily_api_key: str = ""
    brave_api_key: str = ""
    search_provider_order: str = "tavily,brave,site_discovery"
    search_max_results: int = 15

    # Extraction providers
    jina_api_key: str = ""
    jina_reader_base_url: str = "https://r.jina.ai"
    extract_provider_order: str = "direct,jina_reader"
    extractor_max_page_chars: int = 20000
    max_html_bytes: int = 1_500_000

    # Timeouts (seconds)
    provider_timeout: float = 30.0
    llm_timeout: float = 60.0
    probe_timeout: float = 8.0
    sitemap_timeout: float = 8.0
    robots_timeout: float = 5.0
    page_fetch_timeout: float = 12.0

    # Fan-out ceilings
    max_parallel_extract: int = 4
    max_parallel_probes: int = 5
    max_parallel_summaries: int = 3

    # Pipeline limits
    max_query_length: int = 2000
    min_limit: int = 1
    max_limit: int = 20
    default_limit: int = 12
    extract_top_k: int = 8
    min_usable_content_chars: int = 200
    summarize_sources: bool = True
    summary_max_chars: int = 500
    job_registry_size: int = 200

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


def _split_order(value: str) -> tuple[str, ...]:
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


@dataclass(frozen=True, slots=True)
class LLMEndpoint:
    name: str
    base_url: str
    api_key: str
    model: str


@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Explicit provider wiring handed to the ToolAdapter.

    Built once at the API/CLI boundary. Components below that boundary never
    read `settings` to choose providers.
    """

    llm_endpoints: tuple[LLMEndpoint, ...] = ()
    tavily_api_key: str = ""
    brave_api_key: str = ""
    jina_api_key: str = ""
    jina_reader_base_url: str = "https://r.jina.ai"
    search_order: tuple[str, ...] = ("tavily", "brave", "site_discovery")
    extract_order: tuple[str, ...] = ("direct", "jina_reader")
    provider_timeout: float = 30.0
    llm_timeout: float = 60.0
    llm_max_tokens: int = 2048
    page_fetch_timeout: float = 12.0
    max_html_bytes: int = 1_500_000
    max_page_chars: int = 20000

    @classmethod
    def from_settings(cls, source: Settings) -> "ProviderConfig":
        endpoints: list[LLMEndpoint] = []
        if source.openrouter_api_key:
            models = [source.default_model]
            if source.fallback_model and source.fallback_model != source.default_model:
                models.append(source.fallback_model)
            for idx, model in enumerate(models):
                endpoints.append(
                    LLMEndpoint(
                        name="openrouter" if idx == 0 else f"openrouter_fallback_{idx}",
                        base_url=source.openrouter_base_url.strip()
                        or "https://openrouter.ai/api/v1",
                        api_key=source.openrouter_api_key,
                        model=model,
                    )
                )
        return cls(
            llm_endpoints=tuple(endpoints),
            tavily_api_key=source.tavily_api_key,
            brave_api_key=source.brave_api_key,
            jina_api_key=source.jina_api_key,
            jina_reader_base_url=source.jina_reader_base_url,
            search_order=_split_order(source.search_provider_order),
            extract_order=_split_order(source.extract_provider_order),
            provider_timeout=float(source.provider_timeout),
            llm_timeout=float(source.llm_timeout),
            llm_max_tokens=int(source.llm_max_tokens),
            page_fetch_timeout=float(source.page_fetch_timeout),
            max_html_bytes=int(source.max_html_bytes),
            max_page_chars=int(source.extractor_max_page_chars),
        )


settings = Settings()
