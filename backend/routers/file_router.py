"""
File Router - 檔案管理相關 API
"""

from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from backend.dependencies import get_current_user, get_session_store, get_upload_service
from backend.models.business_models import AppUser
from backend.models.response_models import create_success_response
from backend.services.ingestion_service import RawUpload
from backend.services.session_store import SessionStore
from backend.services.upload_service import UploadService
from backend.utils.security import sanitize_filename

router = APIRouter()


@router.post("/upload")
async def upload_files(
    files: List[UploadFile] = File(...),
    user: AppUser = Depends(get_current_user),
    upload_service: UploadService = Depends(get_upload_service),
):
    """上傳一批檔案 (CSV / TSV / TXT / XLSX / XLS)"""
    uploads = [
        RawUpload(name=sanitize_filename(f.filename), data=await f.read())
        for f in files
    ]
    result = await upload_service.upload_batch(user.uid, uploads)
    return create_success_response(data=result, message=result["summary"])


@router.get("/list")
async def list_files(
    user: AppUser = Depends(get_current_user),
    store: SessionStore = Depends(get_session_store),
):
    """列出已載入的檔案"""
    snippets = await store.get_snippets(user.uid)
    return create_success_response(
        data={
            "files": [
                {
                    "name": s.name,
                    "trueRowCount": s.true_row_count,
                    "size": len(s.content),
                }
                for s in snippets
            ]
        }
    )


@router.get("/view/{filename}")
async def view_file(
    filename: str,
    user: AppUser = Depends(get_current_user),
    store: SessionStore = Depends(get_session_store),
):
    """預覽檔案片段內容"""
    name = sanitize_filename(filename)
    files = await store.get_files(user.uid)
    if name not in files:
        raise HTTPException(404, detail="File not found")
    return create_success_response(data={"name": name, "content": files[name]})


@router.delete("/delete/{filename}")
async def delete_file(
    filename: str,
    user: AppUser = Depends(get_current_user),
    upload_service: UploadService = Depends(get_upload_service),
):
    """刪除指定檔案"""
    result = await upload_service.remove_file(user.uid, sanitize_filename(filename))
    return create_success_response(data=result)


@router.post("/clear")
async def clear_files(
    user: AppUser = Depends(get_current_user),
    upload_service: UploadService = Depends(get_upload_service),
):
    """清空工作區 (刪除所有檔案)"""
    return create_success_response(data=await upload_service.remove_all_files(user.uid))
