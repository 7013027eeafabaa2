from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    reasoning_model: str = "google/gemini-2.5-flash"
    tool_model: str = "google/gemini-2.5-flash"
    allowed_tool_models: str = ""  # comma separated, empty = any
    allow_tool_plan_fallback: bool = True

    # Gateway retry/backoff
    llm_max_retries: int = 3
    llm_retry_base_delay: float = 0.5
    llm_rate_limit_base_delay: float = 4.0

    # Per-phase timeouts (seconds)
    timeout_plan_s: float = 60.0
    timeout_conversation_s: float = 60.0
    timeout_facet_s: float = 90.0
    timeout_synthesis_s: float = 180.0
    timeout_screen_s: float = 120.0
    timeout_insight_pack_s: float = 300.0
    timeout_answer_s: float = 180.0
    timeout_extract_s: float = 90.0
    timeout_follow_up_s: float = 60.0

    # Search provider
    search_provider: str = "tavily"  # tavily | brave
    tavily_api_key: str = ""
    brave_api_key: str = ""
    search_fallback_to_tavily: bool = True
    search_max_results: int = 10

    # Wolfram|Alpha
    wolfram_enabled: bool = False
    wolfram_app_id: str = ""

    # Ingest
    ingest_proxy_url: str = "https://api.allorigins.win/raw"
    ingest_timeout_s: float = 30.0
    ingest_max_chars: int = 120000

    # Pipeline
    screen_batch_size: int = 10
    facet_max_turns: int = 6

    # Storage
    job_store_dir: str = ".cache/jobs"

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    @property
    def allowed_tool_model_list(self) -> list[str]:
        return [m.strip() for m in self.allowed_tool_models.split(",") if m.strip()]


settings = Settings()
