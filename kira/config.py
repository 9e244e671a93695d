from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    APP_NAME: str = "KIRA Activity"
    DEBUG: bool = False

    # Result cache
    CACHE_TTL_SECONDS: int = 3600
    CACHE_SWEEP_SECONDS: int = 120

    # Sources
    HTTP_TIMEOUT_SECONDS: float = 20.0
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TOKEN: str = ""
    GITHUB_EVENT_PAGES: int = 3
    GITHUB_REPO_LIMIT: int = 20
    GITHUB_COMMIT_DAYS: int = 365
    HATENA_BASE_URL: str = "https://b.hatena.ne.jp"
    HATENA_BOOKMARK_LIMIT: int = 200

    # Rendering — settle values are per step (1..4), in milliseconds
    RENDER_SETTLE_MS: list[int] = [3000, 2000, 2000, 5000]
    RENDER_TIMEOUT_MS: int = 30000
    RENDER_CONCURRENCY: int = 8
    BROWSER_ARGS: list[str] = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
    ]
    POOL_WATCHDOG_SECONDS: int = 60

    # Output encoding
    FRAME_DELAYS_MS: list[int] = [1500, 1500, 1500, 3000]
    WEBP_QUALITY_FRAME: int = 90
    WEBP_QUALITY_ANIMATED: int = 80

    ADMIN_ACTIONS_ENABLED: bool = False


settings = Settings()
