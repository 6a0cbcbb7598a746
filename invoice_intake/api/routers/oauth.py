"""
Connection status for the Google account.

The consent flow that first stores a credential is handled elsewhere;
this router only reports and revokes what is stored.
"""

from fastapi import APIRouter, Depends
from loguru import logger

from ...services.google_auth import PROVIDER, GoogleAuthProvider
from ..deps import get_auth_provider

router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.get("/status")
async def status(auth: GoogleAuthProvider = Depends(get_auth_provider)):
    return {"connected": auth.is_connected()}


@router.post("/revoke")
async def revoke(auth: GoogleAuthProvider = Depends(get_auth_provider)):
    """Forget the stored credential. The next scan fails with 401 until the account is reconnected."""
    removed = auth.store.delete(PROVIDER)
    logger.info("Google credential revoked", removed=removed)
    return {"success": True, "removed": removed}
