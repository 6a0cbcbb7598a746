"""
Hierarchical archive on Drive: <root>/<category>/<entity>/<MM - Month>/<file>.

Folders are resolved with get-or-create. Idempotency depends on Drive's
exact-name search: two scans running at the same time can both miss a
folder and both create it. Within one store instance folder creation is
serialized per (parent, name) and results are cached.
"""

import asyncio
from collections import defaultdict
from datetime import date, datetime, UTC

from loguru import logger

from ..core.errors import ConfigurationError
from ..models.invoice import ArchivalLocation, ArchiveFolder, RoutingResult

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


def period_folder_name(issue_date: date | None, now: datetime | None = None) -> str:
    """'01 - January' style; falls back to the current month without a date"""
    when = issue_date or (now or datetime.now(UTC)).date()
    return f"{when.month:02d} - {MONTH_NAMES[when.month - 1]}"


class ArchivalStore:
    def __init__(self, drive, root_folder_id: str | None):
        self.drive = drive
        self.root_folder_id = root_folder_id
        self._folder_cache: dict[tuple[str, str], str] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    async def get_or_create_folder(self, name: str, parent_id: str) -> str:
        key = (parent_id, name)
        async with self._locks[key]:
            if key in self._folder_cache:
                return self._folder_cache[key]

            folder_id = await self.drive.find_folder(name, parent_id)
            if folder_id is None:
                folder_id = await self.drive.create_folder(name, parent_id)
                logger.info("Created Drive folder", name=name, parent_id=parent_id, folder_id=folder_id)

            self._folder_cache[key] = folder_id
            return folder_id

    async def list_folders(self, parent_id: str | None = None) -> list[ArchiveFolder]:
        """Child folders of `parent_id`, or of the archive root when omitted."""
        parent_id = parent_id or self.root_folder_id
        if not parent_id:
            raise ConfigurationError("GOOGLE_DRIVE_ROOT_FOLDER_ID is not set")
        return [ArchiveFolder.model_validate(f) for f in await self.drive.list_folders(parent_id)]

    async def archive(self, data: bytes, filename: str, routing: RoutingResult,
                      issue_date: date | None) -> ArchivalLocation:
        """
        Upload one file under its three-level folder chain.

        Raises:
            ConfigurationError: root folder not configured (checked first)
        """
        if not self.root_folder_id:
            raise ConfigurationError("GOOGLE_DRIVE_ROOT_FOLDER_ID is not set")

        chain = [routing.category.value, routing.entity_folder_name, period_folder_name(issue_date)]
        parent_id = self.root_folder_id
        for name in chain:
            parent_id = await self.get_or_create_folder(name, parent_id)

        uploaded = await self.drive.upload_file(filename, parent_id, data, "application/pdf")
        location = ArchivalLocation(
            file_id=uploaded["id"],
            web_view_link=uploaded.get("webViewLink", ""),
            folder_path="/".join([*chain, filename]),
            terminal_folder_id=parent_id,
        )
        logger.info("Invoice archived", file_id=location.file_id, folder_path=location.folder_path)
        return location
