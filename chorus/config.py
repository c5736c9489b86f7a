"""CHORUS global configuration."""

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    env: str = "development"

    # Reset gate — empty disables POST /api/reset
    reset_secret: str = ""

    # Paths
    clips_dir: Path = Path("./clips")

    # Media engine — empty means the binary shipped with imageio-ffmpeg
    ffmpeg_binary: str = ""

    # "read_time" composes from many clips per request,
    # "write_time" crossfades every upload into one master.
    composition_mode: str = "read_time"

    # Ingestion
    min_clip_bytes: int = 400
    min_clip_duration_s: float = 0.25  # shorter trimmed output is degenerate too
    silence_threshold: float = 0.02  # fraction of full scale
    silence_min_duration_s: float = 1.0

    # Canonical output, applied to every encode
    output_codec: str = "libmp3lame"
    output_bitrate: str = "128k"
    output_sample_rate: int = 44100
    output_channels: int = 2
    output_container: str = "mp3"
    output_extension: str = ".mp3"
    output_media_type: str = "audio/mpeg"

    # Composition
    crossfade_s: float = 2.0
    max_mix_inputs: int = 24
    probe_concurrency: int = 8
    probe_timeout_s: float = 30.0
    composition_timeout_s: float = 600.0
    chunk_size: int = 64 * 1024

    model_config = {"env_prefix": "CHORUS_"}


settings = Settings()
