import json
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Reel Render API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 3001

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        v = self.cors_origins_raw
        # Try JSON first
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        if "|" in v:
            return [origin.strip() for origin in v.split("|") if origin.strip()]
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Local working storage. Everything under here is disposable cache.
    storage_root: str = "/tmp/reel-render"

    @property
    def uploads_dir(self) -> Path:
        return Path(self.storage_root) / "uploads"

    @property
    def outputs_dir(self) -> Path:
        return Path(self.storage_root) / "outputs"

    @property
    def exports_dir(self) -> Path:
        return Path(self.storage_root) / "exports"

    # File Upload
    max_upload_files: int = 50
    image_extensions: list[str] = ["jpg", "jpeg", "png", "webp", "bmp", "gif"]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render settings (vertical 9:16 output)
    render_width: int = 1080
    render_height: int = 1920
    render_fps: int = 30
    render_audio_sample_rate: int = 48000
    render_audio_bitrate: str = "320k"
    # amix duration policy when music tracks are mixed onto the master audio
    render_amix_duration: Literal["shortest", "first", "longest"] = "shortest"
    # Still images are looped a little past the clip end so trim never runs dry
    image_loop_padding_s: float = 0.5

    # Jobs
    progress_poll_interval_s: float = 0.5
    # Seconds to wait after SIGTERM before killing a cancelled encoder
    encoder_terminate_grace_s: float = 5.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
