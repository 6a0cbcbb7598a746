"""
Read-only view of the Drive archive.

GET /archive/folders             child folders of the archive root
GET /archive/folders?parentId=X  child folders of folder X
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from loguru import logger

from ...core.errors import AuthError, ConfigurationError
from ...services.intake import IntakeBrowser
from ..deps import get_browser

router = APIRouter(prefix="/archive", tags=["archive"])


@router.get("/folders")
async def folders(parent_id: str | None = Query(default=None, alias="parentId"),
                  browser: IntakeBrowser = Depends(get_browser)):
    try:
        found = await browser.list_archive_folders(parent_id)
    except (ConfigurationError, AuthError):
        raise
    except Exception as e:
        logger.exception("Archive folder listing failed", parent_id=parent_id)
        return JSONResponse(status_code=502, content={"success": False, "error": str(e) or type(e).__name__})
    return {"folders": [folder.model_dump() for folder in found]}
