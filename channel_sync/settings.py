from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


CONFLICT_POLICIES = ("MANUAL_REVIEW", "LAST_WRITER_WINS")


class Settings(BaseSettings):
    # database_url: str = "postgresql+psycopg://pim@/channel_sync?host=/var/run/postgresql&port=5432"
    database_url: str = "sqlite:///./channel_sync.db"
    database_echo: bool = False

    # 외부 카탈로그 서비스 (상품 스냅샷 조회)
    catalog_api_base_url: str = "http://127.0.0.1:8080"
    catalog_api_token: str = ""
    catalog_api_timeout_seconds: float = 10.0
    catalog_api_retry_count: int = 3  # tenacity 재시도 횟수

    # 어댑터 호출 제한
    adapter_timeout_seconds: float = 30.0  # 마켓 API 호출 하드 타임아웃
    account_rate_limit_per_second: float = 2.0  # 계정별 초당 호출 수 (토큰 버킷)
    account_rate_limit_burst: int = 5
    account_max_concurrency: int = 4  # 계정별 동시 호출 수

    # 재시도 정책
    sync_max_retry_attempts: int = 3
    sync_retry_initial_delay_seconds: float = 30.0
    sync_retry_multiplier: float = 2.0
    sync_retry_max_delay_seconds: float = 1800.0
    sync_retry_jitter_seconds: float = 10.0
    retry_worker_interval_seconds: float = 60.0
    retry_worker_batch_size: int = 100

    # 배치 동기화
    batch_sync_concurrency: int = 20

    # 충돌 처리 정책 (MANUAL_REVIEW, LAST_WRITER_WINS)
    sync_conflict_policy: str = "MANUAL_REVIEW"

    # 규칙 캐시 TTL (초)
    rule_cache_ttl_seconds: int = 300

    # 웹훅
    webhook_auto_sync: bool = True  # False이면 관측만 기록하고 동기화는 스케줄러에 위임

    @field_validator("database_url")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if v and not v.startswith(("postgresql", "sqlite")):
            raise ValueError("DB URL은 'postgresql' 또는 'sqlite'로 시작해야 합니다.")
        return v

    @field_validator("catalog_api_base_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL은 'http://' 또는 'https://'로 시작해야 합니다.")
        return v

    @field_validator(
        "adapter_timeout_seconds",
        "sync_retry_initial_delay_seconds",
        "sync_retry_max_delay_seconds",
        "sync_retry_jitter_seconds",
        "retry_worker_interval_seconds",
        "catalog_api_timeout_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("대기 시간은 0 이상이어야 합니다.")
        return v

    @field_validator("sync_max_retry_attempts")
    @classmethod
    def validate_retry_attempts(cls, v: int) -> int:
        if not 1 <= v <= 20:
            raise ValueError("sync_max_retry_attempts는 1에서 20 사이여야 합니다.")
        return v

    @field_validator("account_rate_limit_per_second")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("account_rate_limit_per_second는 0보다 커야 합니다.")
        return v

    @field_validator("account_rate_limit_burst", "account_max_concurrency", "batch_sync_concurrency")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError("값은 1 이상이어야 합니다.")
        return v

    @field_validator("sync_conflict_policy")
    @classmethod
    def validate_conflict_policy(cls, v: str) -> str:
        value = v.strip().upper()
        if value not in CONFLICT_POLICIES:
            raise ValueError(f"sync_conflict_policy는 {', '.join(CONFLICT_POLICIES)} 중 하나여야 합니다.")
        return value

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


settings = Settings()
