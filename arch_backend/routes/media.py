"""
Presigned media URLs scoped to an arch's storage folder.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import get_current_user, get_db_client, get_storage_client
from arch_backend.errors import Forbidden
from arch_backend.membership import load_member_arch
from arch_backend.records import UserRecord
from arch_backend.schemas import SignUrlResponse, UploadUrlRequest, UploadUrlResponse
from arch_backend.storage import StorageClient, arch_id_from_path, media_path

router = APIRouter()


@router.post("/upload-url", response_model=UploadUrlResponse)
def upload_url(
    payload: UploadUrlRequest,
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    load_member_arch(db, payload.arch_id, user.user_id)
    path = media_path(payload.arch_id, payload.filename)
    return UploadUrlResponse(
        upload_url=storage.presign_put(path, content_type=payload.content_type),
        path=path,
        download_url=storage.presign_get(path),
    )


@router.get("/sign-url", response_model=SignUrlResponse)
def sign_url(
    path: str = Query(..., description="Object path in storage"),
    expires_in: int = Query(3600, ge=60, le=86400, alias="expiresIn"),
    user: UserRecord = Depends(get_current_user),
    db: PostgresDbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
):
    arch_id = arch_id_from_path(path)
    if arch_id is None:
        raise Forbidden("Access denied")
    load_member_arch(db, arch_id, user.user_id)
    return SignUrlResponse(url=storage.presign_get(path, expires_in=expires_in), path=path)
