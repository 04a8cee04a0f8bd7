from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Scene Composer"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Shared bearer secret for POST /compose. Empty disables the check (dev only).
    api_secret: str = ""

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Per-job scratch directories are created under this root
    scratch_root: str = "/tmp"

    # Encode settings
    render_video_codec: str = "libx264"
    render_preset: str = "fast"
    render_crf: int = 23
    render_audio_codec: str = "aac"
    render_audio_bitrate: str = "192k"
    render_audio_sample_rate: int = 44100
    render_audio_channel_layout: str = "stereo"
    render_pixel_format: str = "yuv420p"
    # 0 = no timeout; the encode runs until ffmpeg exits or the job is cancelled
    encode_timeout_seconds: int = 0

    # Fades
    default_fade_duration_ms: int = 500

    # Thumbnail
    thumbnail_width: int = 640
    thumbnail_seek_ms: int = 1000

    # HTTP
    download_timeout_seconds: float = 300.0
    webhook_timeout_seconds: float = 30.0

    # Storage
    use_local_storage: bool = True  # Set to False in production
    local_storage_path: str = "/tmp/scene-composer-storage"
    local_storage_base_url: str = "http://localhost:8000/files"
    gcs_bucket_name: str = "scene-composer-media"
    gcs_project_id: str = ""
    # CDN prefix that replaces the backend's own public URL when set
    public_base_url: str = ""

    # Job intake
    max_concurrent_jobs: int = 2
    job_ttl_seconds: int = 3600


@lru_cache
def get_settings() -> Settings:
    return Settings()
