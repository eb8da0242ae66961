from pathlib import Path

from fastapi import HTTPException, status

from jinx.web.constants import EXPORT_EXTENSION, EXPORT_FOLDER


def resolve_export_file(filename: str) -> Path:
    """Ensure the requested filename lives inside the exports folder."""
    clean_name = Path(filename).name
    base = EXPORT_FOLDER.resolve()
    target = (base / clean_name).resolve()
    try:
        target.relative_to(base)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        ) from exc
    if not target.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )
    return target


def allocate_export_path(extension: str = EXPORT_EXTENSION) -> Path:
    """Pick the next sequential dream<N> filename for the exports folder."""
    max_index = 0
    for existing in EXPORT_FOLDER.iterdir():
        if existing.is_file() and existing.stem.startswith("dream"):
            suffix = existing.stem[5:]
            if suffix.isdigit():
                max_index = max(max_index, int(suffix))
    return EXPORT_FOLDER / f"dream{max_index + 1}{extension}"


def list_exported_images() -> list[str]:
    """Return the filenames that currently exist in the exports directory."""
    return sorted([f.name for f in EXPORT_FOLDER.iterdir() if f.is_file()])


__all__ = ["allocate_export_path", "list_exported_images", "resolve_export_file"]
