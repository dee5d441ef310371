from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()  # .env file


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "room-chat-core"
    version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["http://localhost:3000"]
    debug: bool = False

    # Durable store / cache store
    database_url: str = "sqlite:///./chat.db"
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 20
    redis_socket_timeout: float = 2.0
    redis_retry_on_timeout: bool = True
    cache_backend: str = "redis"  # redis | memory

    # Logging
    log_dir: str = "logs"
    log_to_file: bool = True

    # Messages
    message_min_length: int = 1
    message_max_length: int = 1000
    message_rate_limit: int = 10
    message_rate_window_seconds: int = 60

    # Rooms
    room_name_min_length: int = 2
    room_name_max_length: int = 20
    room_description_max_length: int = 500

    # Presence
    presence_timeout_minutes: int = 5
    heartbeat_interval_seconds: int = 30

    # Moderation
    moderator_roles: List[str] = ["admin", "moderator"]
    mute_max_minutes: int = 10080  # 1 week
    ban_max_minutes: int = 525600  # 1 year
    reason_max_length: int = 500
    review_notes_max_length: int = 1000
    auto_moderation_report_threshold: int = 3
    spam_auto_mute_minutes: int = 10
    review_default_mute_minutes: int = 60

    # Spam heuristics
    spam_message_limit: int = 5
    spam_frequency_window_seconds: int = 60
    spam_duplicate_limit: int = 3
    spam_duplicate_window_minutes: int = 5
    spam_caps_threshold: float = 0.7
    spam_caps_min_letters: int = 10
    spam_repetition_threshold: float = 0.5
    spam_repetition_min_length: int = 10
    spam_repetition_run: int = 4
    spam_url_limit: int = 2
    word_policy_path: Optional[str] = None

    # Cache TTLs (seconds)
    cache_room_list_ttl: int = 300
    cache_room_stats_ttl: int = 600
    cache_online_users_ttl: int = 60
    cache_message_history_ttl: int = 1800
    cache_presence_ttl: int = 120
    activity_buffer_size: int = 1000

    # Pagination
    default_page_size: int = 50
    max_page_size: int = 100
    search_default_page_size: int = 20
    search_max_page_size: int = 50
    search_query_max_length: int = 100
    full_text_search_enabled: bool = False  # MATCH ... AGAINST, MySQL only


settings = Settings()
