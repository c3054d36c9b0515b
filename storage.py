import logging
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

from config import get_settings

logger = logging.getLogger(__name__)

PROOF_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp", "heic", "pdf"}


@dataclass(frozen=True)
class StoredArtifact:
    key: str
    public_url: str


class ProofStorage:
    """Payment proofs on local disk, served under ``/uploads``."""

    def __init__(self, root: Optional[Path] = None, base_url: Optional[str] = None):
        settings = get_settings()
        self.root = Path(root or settings.upload_dir)
        self.base_url = (base_url or settings.public_base_url).rstrip("/")

    @staticmethod
    def _extension(filename: str) -> str:
        suffix = PurePosixPath(filename or "").suffix.lower().lstrip(".")
        return suffix if suffix in PROOF_EXTENSIONS else "bin"

    def key_for(self, user_id: int, filename: str, now_ms: Optional[int] = None) -> str:
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        return f"payment_proofs/{user_id}/{now_ms}.{self._extension(filename)}"

    def save(self, user_id: int, filename: str, content: bytes) -> StoredArtifact:
        key = self.key_for(user_id, filename)
        target = self.root / key
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "xb") as fh:
            fh.write(content)
        logger.info(f"proof_stored: user_id={user_id} key={key} bytes={len(content)}")
        return StoredArtifact(key=key, public_url=f"{self.base_url}/uploads/{key}")

    def delete(self, key: str) -> None:
        target = self.root / key
        try:
            target.unlink()
        except FileNotFoundError:
            return
        logger.info(f"proof_removed: key={key}")
