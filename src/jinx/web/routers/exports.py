from typing import Annotated

from fastapi import APIRouter, Form, HTTPException, status
from fastapi.responses import FileResponse, RedirectResponse

from jinx.web.utils.files import list_exported_images, resolve_export_file

router = APIRouter(
    prefix="/exports",
    tags=["exports"],
)


@router.get("/list")
async def exports_list() -> dict:
    """Return a JSON listing of generated images."""
    return {"exports": list_exported_images()}


@router.post("/delete")
async def delete_export(filename: Annotated[str, Form()]) -> RedirectResponse:
    """Remove a generated image and go back to the UI."""
    try:
        path = resolve_export_file(filename)
    except HTTPException:
        return RedirectResponse(
            "/",
            status_code=status.HTTP_303_SEE_OTHER,
        )
    path.unlink(missing_ok=True)
    return RedirectResponse(
        "/",
        status_code=status.HTTP_303_SEE_OTHER,
    )


@router.get("/{filename:path}")
async def export_file(filename: str) -> FileResponse:
    """Serve a generated image from the exports folder."""
    return FileResponse(resolve_export_file(filename), media_type="image/png")


__all__ = ["router"]
