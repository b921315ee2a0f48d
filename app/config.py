from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter (text completion)
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "meta-llama/llama-3-8b-instruct"
    openrouter_model: str = ""  # optional override of default_model
    completion_max_tokens: int = 2048
    completion_timeout_seconds: float = 60.0

    # Image resolution
    image_provider: str = "auto"  # playwright | brave | html | auto
    brave_api_key: str = ""
    image_search_url: str = "https://www.bing.com/images/search?q={query}"
    image_timeout_seconds: float = 30.0
    image_min_dimension: int = 100
    placeholder_image_url: str = "https://placehold.co/600x400?text={title}"

    # Pipeline
    research_artwork_count: int = 5
    annotation_max_parallel: int = 3

    # Result cache
    result_cache_enabled: bool = True
    result_cache_dir: str = ".cache/results"
    result_cache_ttl_days: int = 30
    cache_key_normalize: bool = True

    # Query state
    state_persist_dir: str = ""  # empty keeps session state in memory only

    # App
    service_name: str = "Christian Art History AI Agent"
    agent_name: str = "christian-art-agent"
    cors_origins: str = "http://localhost:5173"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"
    log_retention_days: int = 7

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


settings = Settings()
