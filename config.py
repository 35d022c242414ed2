import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        timezone: str,
        upload_dir: Path,
        max_upload_bytes: int,
        frontend_origins: Optional[list[str]],
        savings_goal_percent: int,
        cloudinary_cloud_name: Optional[str],
        cloudinary_api_key: Optional[str],
        cloudinary_api_secret: Optional[str],
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.timezone = timezone
        self.upload_dir = upload_dir
        self.max_upload_bytes = max_upload_bytes
        self.frontend_origins = frontend_origins
        self.savings_goal_percent = savings_goal_percent
        self.cloudinary_cloud_name = cloudinary_cloud_name
        self.cloudinary_api_key = cloudinary_api_key
        self.cloudinary_api_secret = cloudinary_api_secret

    @property
    def use_cloudinary(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINCONTROL_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_origins(raw: Optional[str]) -> Optional[list[str]]:
    if not raw:
        return None
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fincontrol.db"
    database_url = os.getenv("FINCONTROL_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINCONTROL_TIMEZONE", "America/Sao_Paulo")
    upload_dir = Path(
        os.getenv("FINCONTROL_UPLOAD_DIR", str(data_dir / "uploads"))
    ).resolve()
    max_upload_bytes = int(os.getenv("FINCONTROL_MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
    frontend_origins = _parse_origins(os.getenv("FINCONTROL_FRONTEND_URL"))
    savings_goal_percent = int(os.getenv("FINCONTROL_SAVINGS_GOAL_PERCENT", "20"))
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        timezone=timezone,
        upload_dir=upload_dir,
        max_upload_bytes=max_upload_bytes,
        frontend_origins=frontend_origins,
        savings_goal_percent=savings_goal_percent,
        cloudinary_cloud_name=os.getenv("FINCONTROL_CLOUDINARY_CLOUD_NAME"),
        cloudinary_api_key=os.getenv("FINCONTROL_CLOUDINARY_API_KEY"),
        cloudinary_api_secret=os.getenv("FINCONTROL_CLOUDINARY_API_SECRET"),
    )
