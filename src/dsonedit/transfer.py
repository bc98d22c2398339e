from __future__ import annotations

import base64
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

DEFAULT_SOURCE_NAME = "persist.unnamed.json"
OCTET_STREAM = "application/octet-stream"


class IncomingFile(Protocol):
    """A single dropped or picked file (``fastapi.UploadFile`` satisfies this)."""

    filename: str | None

    async def read(self) -> bytes: ...


def normalize_source_name(filename: str | None) -> str:
    if isinstance(filename, str):
        candidate = Path(filename.replace("\\", "/")).name.strip()
    else:
        candidate = ""
    return candidate or DEFAULT_SOURCE_NAME


def build_data_uri(payload: bytes, media_type: str = OCTET_STREAM) -> str:
    encoded = base64.b64encode(payload).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


@dataclass(frozen=True, slots=True)
class DownloadArtifact:
    filename: str
    payload: bytes

    @property
    def data_uri(self) -> str:
        return build_data_uri(self.payload)

    def content_disposition(self) -> str:
        fallback = self.filename.encode("ascii", "replace").decode("ascii")
        fallback = fallback.replace('"', "_").replace("?", "_")
        return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(self.filename)}"

    def to_payload(self) -> dict[str, object]:
        return {
            "filename": self.filename,
            "size": len(self.payload),
            "href": self.data_uri,
        }


__all__ = [
    "DEFAULT_SOURCE_NAME",
    "DownloadArtifact",
    "IncomingFile",
    "OCTET_STREAM",
    "build_data_uri",
    "normalize_source_name",
]
