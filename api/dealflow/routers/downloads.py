from fastapi import APIRouter, Depends, Response
from sqlmodel import Session

from .. import deals
from ..db import get_session

router = APIRouter()


@router.get("/files/{token}")
def download_file(token: str, session: Session = Depends(get_session)):
    # The token is the credential, no user is required
    content, content_type, filename = deals.resolve_download(session, token)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
