"""Building the list of block devices attached to a microVM."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

ROOT_DRIVE_NAME = "root_drive"


@dataclass
class Drive:
    """A block device as sent to the VMM."""

    drive_id: Optional[str] = None
    path_on_host: Optional[str] = None
    is_root_device: Optional[bool] = None
    is_read_only: Optional[bool] = None
    partuuid: str = ""
    rate_limiter: Any = None


DriveOpt = Callable[[Drive], None]


@dataclass(frozen=True)
class DrivesBuilder:
    """Immutable builder of drives; added drives get ids "0", "1", ..."""

    root_drive: Drive = field(default_factory=Drive)
    drives: tuple[Drive, ...] = ()

    def with_root_drive(self, root_drive_path: str, *opts: DriveOpt) -> "DrivesBuilder":
        """Set the root drive; it is read-write unless an option says otherwise."""
        drive = Drive(
            drive_id=ROOT_DRIVE_NAME,
            path_on_host=root_drive_path,
            is_root_device=True,
            is_read_only=False,
        )
        for opt in opts:
            opt(drive)
        return dataclasses.replace(self, root_drive=drive)

    def add_drive(self, path: str, read_only: bool, *opts: DriveOpt) -> "DrivesBuilder":
        drive = Drive(
            drive_id=str(len(self.drives)),
            path_on_host=path,
            is_root_device=False,
            is_read_only=read_only,
        )
        for opt in opts:
            opt(drive)
        return dataclasses.replace(self, drives=self.drives + (drive,))

    def build(self) -> list[Drive]:
        """All drives, with the root drive last."""
        return [dataclasses.replace(d) for d in (*self.drives, self.root_drive)]


def new_drives_builder(root_drive_path: str) -> DrivesBuilder:
    return DrivesBuilder().with_root_drive(root_drive_path)


def with_drive_id(drive_id: str) -> DriveOpt:
    def opt(drive: Drive) -> None:
        drive.drive_id = drive_id

    return opt


def with_read_only(flag: bool) -> DriveOpt:
    def opt(drive: Drive) -> None:
        drive.is_read_only = flag

    return opt


def with_partuuid(uuid: str) -> DriveOpt:
    def opt(drive: Drive) -> None:
        drive.partuuid = uuid

    return opt


def with_rate_limiter(limiter: Any) -> DriveOpt:
    def opt(drive: Drive) -> None:
        drive.rate_limiter = limiter

    return opt