from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite+aiosqlite:///./tripdesk.db"
    database_echo: bool = False
    auto_create_tables: bool = True

    # Normalizer
    normalizer_budget_ms: float = 50.0
    max_query_chars: int = 500

    # Weighted matcher
    weighted_min_confidence: float = 0.5
    weighted_top_n: int = 5
    max_query_terms: int = 8
    max_candidate_trips: int = 500

    # Semantic component index
    semantic_min_confidence: float = 0.6
    semantic_top_n: int = 5
    max_query_components: int = 12

    # Slugs
    slug_max_suffix: int = 1000
    slug_assign_retries: int = 3

    # Fact cache
    facts_default_batch: int = 50
    facts_max_batch: int = 500
    facts_time_budget_ms: float = 5000.0

    # Resolver
    max_suggestions: int = 3
    search_logging_enabled: bool = True

    # Scheduler (optional periodic jobs)
    scheduler_enabled: bool = False
    facts_refresh_interval_minutes: int = 5
    reconcile_audit_hour: int = 3
    reconcile_audit_batch: int = 200

    # CORS
    cors_origins: str = "http://localhost:3080"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "TRIPDESK_", "extra": "ignore"}


settings = Settings()
