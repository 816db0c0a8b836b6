"""Upgrade session model."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def parse_image_name(filename: str) -> tuple[str, str]:
    """Split ``<image-name>.<softwareSet>.<runningMode>.<ext>``.

    Args:
        filename: Firmware file name (directories are ignored)

    Returns:
        (software_set, running_mode), both empty unless the name has
        exactly four dot-separated parts
    """
    parts = Path(filename).name.split(".")
    if len(parts) == 4:
        return parts[1], parts[2]
    return "", ""


class UpgradeSession(BaseModel):
    """One upgrade attempt.

    Immutable once started; ``status_message`` is kept outside the model by
    the orchestrator, see ``StateManager``.
    """

    model_config = ConfigDict(frozen=True)

    file_path: Path = Field(..., description="Local path of the .swu image")
    file_name: str = Field("", description="Base name sent to the device")
    file_size: int = Field(0, ge=0, description="Image size in bytes")
    clear_user_data: bool = Field(False, description="Erase user data on install")
    dry_run: bool = Field(False, description="Simulate install and reboot")
    software_set: str = Field("", description="Parsed from the file name")
    running_mode: str = Field("", description="Parsed from the file name")

    @field_validator("file_path", mode="before")
    @classmethod
    def coerce_path(cls, v):
        """Accept plain strings for the image path."""
        if isinstance(v, str):
            return Path(v)
        return v

    @model_validator(mode="before")
    @classmethod
    def derive_names(cls, data):
        """Fill file name and software set / running mode from the path."""
        if not isinstance(data, dict) or "file_path" not in data:
            return data
        data = dict(data)
        name = Path(data["file_path"]).name
        data.setdefault("file_name", name)
        software_set, running_mode = parse_image_name(data["file_name"])
        data.setdefault("software_set", software_set)
        data.setdefault("running_mode", running_mode)
        return data

    @classmethod
    def from_file(
        cls,
        file_path: Path,
        clear_user_data: bool = False,
        dry_run: bool = False,
        file_size: Optional[int] = None,
    ) -> "UpgradeSession":
        """Build a session for an image on disk.

        Raises:
            FileNotFoundError: If the image does not exist
            ValueError: If the image is empty
        """
        file_path = Path(file_path)
        if file_size is None:
            file_size = file_path.stat().st_size
        if file_size <= 0:
            raise ValueError(f"Firmware file is empty: {file_path}")
        return cls(
            file_path=file_path,
            file_size=file_size,
            clear_user_data=clear_user_data,
            dry_run=dry_run,
        )
