# booth_compositor/config/settings.py
from pathlib import Path
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional

_CONFIG_DIR = Path(__file__).resolve().parent

class Settings(BaseSettings):
    # API
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Booth Compositor"

    # CORS
    ALLOWED_HOSTS: List[str] = ["*"]

    # Region map & frame artwork
    REGION_MAP_PATH: str = str(_CONFIG_DIR / "region_map.json")
    FRAMES_DIR: str = "assets/frames"
    # themeId -> enabled; themes not listed are enabled
    FRAME_SETTINGS: Dict[str, bool] = {}

    # Asset loading
    ASSET_LOAD_TIMEOUT: float = 8.0
    REQUEST_TIMEOUT: int = 30
    ENDPOINT_TIMEOUT_SECONDS: int = 55
    PHOTO_MAX_SIDE: int = 2400

    # Compositing
    REGION_OVERSCALE: float = 1.02
    PREVIEW_WIDTH: int = 501
    PREVIEW_HEIGHT: int = 752

    # Capture tiers (multiples of the base unit)
    BASE_UNIT_WIDTH: float = 250.5
    BASE_UNIT_HEIGHT: float = 376.0
    ARCHIVE_SCALES: List[float] = [8.0, 6.0, 4.0]
    DELIVERY_SCALES: List[float] = [3.0, 2.0]
    DELIVERY_JPEG_QUALITY: int = 60
    MAX_CAPTURE_PIXELS: int = 40_000_000

    # Env
    ENVIRONMENT: str = "development"
    DEBUG: bool = True

    # Cloudinary (either use CLOUDINARY_URL or the 3 fields below)
    CLOUDINARY_URL: Optional[str] = None
    CLOUDINARY_CLOUD_NAME: Optional[str] = None
    CLOUDINARY_API_KEY: Optional[str] = None
    CLOUDINARY_API_SECRET: Optional[str] = None
    CLOUDINARY_FOLDER: str = "hub_photo_booth"

    # Delivery
    QR_LANDING_URL: str = "https://hubworship.ing/hub4cut"
    LOCAL_SERVER_URL: str = "http://192.168.0.15:5001"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
