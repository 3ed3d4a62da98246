import logging
import uuid
from pathlib import Path

from fastapi import HTTPException, UploadFile, status

logger = logging.getLogger(__name__)

# ======================================================
# UPLOAD RULES
# ======================================================

IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

EXTENSIONS = {
    "jpg": "jpg",
    "jpeg": "jpg",
    "png": "png",
    "webp": "webp",
    "gif": "gif",
}

ALLOWED_FOLDERS = {
    "avatars",
    "products",
    "categories",
}


# ======================================================
# LOCAL DISK STORAGE
# ======================================================

class LocalImageStorage:
    """
    Writes images under ``root/<folder>/`` and hands back the public URL
    they are served from (``url_prefix`` is mounted as StaticFiles).
    """

    def __init__(self, root: str, url_prefix: str = "/static", max_bytes: int = 5 * 1024 * 1024):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self.max_bytes = max_bytes

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def save_image(self, file: UploadFile, folder: str) -> str:
        if folder not in ALLOWED_FOLDERS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid upload destination: '{folder}'",
            )

        content_type = (file.content_type or "").lower().strip()
        extension = IMAGE_TYPES.get(content_type)
        if not extension:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unsupported file type: '{content_type}'. Allowed: JPEG, PNG, WebP, GIF.",
            )

        name_extension = EXTENSIONS.get(Path(file.filename or "").suffix.lower().lstrip("."))
        if name_extension != extension:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="File name must end in .jpg, .jpeg, .png, .webp or .gif matching its content type",
            )

        # at most one byte past the limit
        contents = file.file.read(self.max_bytes + 1)
        if not contents:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Uploaded file is empty",
            )
        if len(contents) > self.max_bytes:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"File exceeds {self.max_bytes // (1024 * 1024)}MB limit",
            )

        target_dir = self.root / folder
        target_dir.mkdir(parents=True, exist_ok=True)

        filename = f"{uuid.uuid4().hex}.{extension}"
        (target_dir / filename).write_bytes(contents)

        url = f"{self.url_prefix}/{folder}/{filename}"
        logger.info("Stored upload %s (%s bytes)", url, len(contents))
        return url

    def delete(self, url: str) -> None:
        """Remove a file previously returned by save_image; unknown URLs are ignored."""
        if not url or not url.startswith(self.url_prefix + "/"):
            return
        relative = url[len(self.url_prefix) + 1:]
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not delete %s: %s", path, exc)
