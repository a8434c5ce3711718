"""Generic Drive API proxy route."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from driverelay.core.exceptions import ProxyError
from driverelay.drive.factory import get_drive_proxy
from driverelay.drive.proxy import DriveProxy

router = APIRouter(prefix="/api", tags=["proxy"])
logger = logging.getLogger(__name__)


@router.api_route(
    "/proxy/{subpath:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
)
async def proxy(
    subpath: str,
    request: Request,
    drive_proxy: DriveProxy = Depends(get_drive_proxy),
) -> StreamingResponse:
    """Forward /api/proxy/<subpath> to the Drive API and stream the answer back."""
    if not subpath.strip("/"):
        raise HTTPException(status_code=400, detail="Invalid proxy path")

    try:
        proxied = await drive_proxy.forward(
            method=request.method,
            subpath=subpath,
            query=request.url.query,
            headers=request.headers,
            body=request.stream(),
        )
    except ProxyError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return StreamingResponse(
        proxied.iter_body(),
        status_code=proxied.response.status_code,
        headers=proxied.headers,
    )
