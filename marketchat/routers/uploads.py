from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile

from marketchat.schemas.user import UserIdentity
from marketchat.services.attachment_uploader import DEFAULT_CONTENT_TYPE, UploadSource
from marketchat.services.context import ChatContext
from marketchat.utils.dependencies import get_chat_context, get_current_user


router = APIRouter(tags=["uploads"])


@router.post("/uploads", status_code=201)
async def upload_file(
    file: UploadFile = File(...),
    folder: str = Form("uploads"),
    current_user: UserIdentity = Depends(get_current_user),
    context: ChatContext = Depends(get_chat_context),
):
    limit = context.uploader.max_bytes
    # read one byte past the limit so oversized bodies stop early
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(status_code=413, detail=f"File larger than {limit} bytes")
    source = UploadSource(
        data=data,
        filename=file.filename or "file",
        content_type=file.content_type or DEFAULT_CONTENT_TYPE,
    )
    content = await context.uploader.attach(source, folder)
    return {"url": content.url, "content": content.model_dump(mode="json")}


@router.get("/files/{path:path}")
async def download_file(path: str, context: ChatContext = Depends(get_chat_context)):
    stored = await context.backend.objects.open(path)
    if stored is None:
        raise HTTPException(status_code=404, detail="File not found")
    return Response(content=stored.data, media_type=stored.content_type)
