from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings
import os

APP_DIR = Path(__file__).resolve().parent
BASE_DIR = APP_DIR.parent


class Settings(BaseSettings):
    app_name: str = "Video Clipper"
    port: int = 3001
    log_level: str = "INFO"
    uploads_dir: str = str(BASE_DIR / "uploads")
    cookies_file: str = str(APP_DIR / "cookies.txt")  # Netscape cookie jar, optional
    min_cookies_size: int = 10  # anything shorter is almost certainly not a real jar
    ytdlp_command: str = "yt-dlp"
    referer: str = "youtube.com"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    extractor_retries: int = 3
    process_timeout: Optional[float] = None  # seconds; None waits for yt-dlp forever
    download_filename: str = "clip.mp4"
    cors_origins: List[str] = ["*"]

    class Config:
        env_file = ".env"


settings = Settings()
os.makedirs(settings.uploads_dir, exist_ok=True)
