from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    content_model: str = "gemini-2.5-flash"
    # CORS origins — set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    debug: bool = False
    log_level: str = "INFO"

    # Room
    room_capacity: int = 8
    map_margin: float = 60.0  # screen units trimmed from each viewport edge

    # Round pacing (milliseconds). The schedule shortens to raise time pressure;
    # its length is the number of rounds in a game.
    first_join_delay_ms: int = 3000
    round_durations_ms: List[int] = [30000, 25000, 20000, 15000]
    inter_round_delay_ms: int = 10000

    # Content generation timeouts (seconds)
    scenario_timeout_s: float = 15.0
    axes_timeout_s: float = 15.0
    ideal_timeout_s: float = 15.0
    feedback_timeout_s: float = 10.0

    response_max_chars: int = 200
    chat_max_chars: int = 500
    initial_gauge: float = 50.0

    # Pydantic v2 style (replaces deprecated inner class Config)
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )

    @property
    def total_rounds(self) -> int:
        return len(self.round_durations_ms)


settings = Settings()
