from __future__ import annotations
from fastapi import APIRouter, Depends, HTTPException
from minio.error import S3Error
import structlog
from stepleague.auth_deps import get_current_user
from stepleague.runtime import get_storage
from stepleague.schemas.submission import SignUploadRequest, SignUploadResponse
from stepleague.services.media import ALLOWED_MIME
from stepleague.services.storage import ProofStorage

router = APIRouter(prefix="/proofs", tags=["proofs"])
log = structlog.get_logger()

@router.post("/sign-upload", response_model=SignUploadResponse)
async def sign_upload(
    payload: SignUploadRequest,
    storage: ProofStorage = Depends(get_storage),
    user=Depends(get_current_user),
):
    if payload.content_type not in ALLOWED_MIME:
        raise HTTPException(status_code=400, detail=f"Unsupported content type: {payload.content_type}")
    try:
        url, path = storage.sign_upload(str(user.id), payload.content_type)
    except S3Error as e:
        log.error("sign_upload_failed", user_id=str(user.id), code=e.code)
        raise HTTPException(status_code=502, detail="Storage unavailable")
    return SignUploadResponse(upload_url=url, path=path)
