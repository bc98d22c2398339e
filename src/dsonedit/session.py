from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from .codec import Annotation, CodecAdapter, DecodeFailure
from .names import DEFAULT_FETCH_TIMEOUT, NameListError, fetch_names
from .transfer import DEFAULT_SOURCE_NAME, DownloadArtifact, IncomingFile, normalize_source_name

logger = logging.getLogger(__name__)

HASH_SEED = "jester"
STATUS_OK = "ok"
STATUS_FAILED = "failed"
WRONG_FILE_COUNT_MESSAGE = "expected exactly one file"
DECODE_FAILED_MESSAGE = "failed to decode"
ENCODE_FAILED_MESSAGE = "Document could not be encoded"


class Phase(str, Enum):
    EMPTY = "empty"
    DECODING = "decoding"
    LOADED = "loaded"
    DECODE_FAILED = "decode_failed"
    VALIDATING = "validating"
    VALID = "valid"
    INVALID = "invalid"
    ENCODING = "encoding"
    DOWNLOADED = "downloaded"
    ENCODE_FAILED = "encode_failed"


class Validity(str, Enum):
    UNVALIDATED = "unvalidated"
    VALID = "valid"
    INVALID = "invalid"


@dataclass(slots=True)
class Session:
    document_text: str = ""
    source_name: str = DEFAULT_SOURCE_NAME
    validity: Validity = Validity.UNVALIDATED
    annotation: Annotation | None = None
    phase: Phase = Phase.EMPTY
    last_bytes: bytes | None = None

    @property
    def download_enabled(self) -> bool:
        return self.validity is Validity.VALID and self.annotation is None

    def to_payload(self) -> dict[str, object]:
        return {
            "document_text": self.document_text,
            "source_name": self.source_name,
            "phase": self.phase.value,
            "validity": self.validity.value,
            "annotation": self.annotation.to_payload() if self.annotation else None,
            "download_enabled": self.download_enabled,
        }


@dataclass(slots=True)
class UiEffects:
    """What the page has to do after one event. ``None`` means "leave as is"."""

    status: str | None = None
    status_kind: str | None = None
    editor_text: str | None = None
    clear_markers: bool = False
    annotation: Annotation | None = None
    download_enabled: bool | None = None
    download: DownloadArtifact | None = None
    focus: tuple[int, int] | None = None
    prevent_default: bool | None = None

    def to_payload(self) -> dict[str, object]:
        return {
            "status": self.status,
            "status_kind": self.status_kind,
            "editor_text": self.editor_text,
            "clear_markers": self.clear_markers,
            "annotation": self.annotation.to_payload() if self.annotation else None,
            "download_enabled": self.download_enabled,
            "download": self.download.to_payload() if self.download else None,
            "focus": {"line": self.focus[0], "col": self.focus[1]} if self.focus else None,
            "prevent_default": self.prevent_default,
        }


class SessionController:
    """
    Owns the single editing session and sequences ingest, validation and
    production against the codec.

    Every handler runs to completion on the event loop before the next one is
    dispatched; the only suspension inside a handler is the upload read in
    :meth:`ingest`, and ingests are serialized so reads never overlap.
    """

    def __init__(self, codec: CodecAdapter, *, hash_seed: str = HASH_SEED) -> None:
        self.codec = codec
        self.session = Session()
        self.hash_seed = hash_seed
        self.hash_output: str | None = None
        self.names_loaded = False
        self._ingest_lock = asyncio.Lock()
        self._names_task: asyncio.Task[bool] | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    async def startup(
        self,
        names_source: str | None = None,
        *,
        names_timeout: float = DEFAULT_FETCH_TIMEOUT,
    ) -> None:
        if names_source:
            self._names_task = asyncio.create_task(
                self.load_names(names_source, timeout=names_timeout)
            )
        self.codec.init()
        self.hash_echo(self.hash_seed)

    async def load_names(self, source: str, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> bool:
        try:
            names = await fetch_names(source, timeout=timeout)
        except NameListError as exc:
            logger.warning("Continuing without display names: %s", exc)
            return False
        self.codec.set_names(names)
        self.names_loaded = True
        logger.info("Loaded %d display names", len(names))
        return True

    async def wait_for_names(self) -> bool:
        task = self._names_task
        if task is None:
            return self.names_loaded
        return await task

    async def shutdown(self) -> None:
        task = self._names_task
        self._names_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------
    async def ingest(self, files: Sequence[IncomingFile]) -> UiEffects:
        if len(files) != 1:
            logger.info("Ignoring drop with %d files", len(files))
            return UiEffects(status=WRONG_FILE_COUNT_MESSAGE, status_kind=STATUS_FAILED)

        incoming = files[0]
        name = normalize_source_name(incoming.filename)
        async with self._ingest_lock:
            previous_phase = self.session.phase
            self.session.phase = Phase.DECODING
            try:
                data = await incoming.read()
            except BaseException:
                self.session.phase = previous_phase
                raise
            return self._apply_decode(name, data)

    def _apply_decode(self, name: str, data: bytes) -> UiEffects:
        result = self.codec.decode(data)
        session = self.session
        if isinstance(result, DecodeFailure):
            session.phase = Phase.DECODE_FAILED
            logger.info("Failed to decode %s (%d bytes)", name, len(data))
            return UiEffects(
                status=DECODE_FAILED_MESSAGE,
                status_kind=STATUS_FAILED,
                editor_text=result.message,
            )

        session.document_text = result.text
        session.source_name = name
        session.annotation = None
        session.last_bytes = bytes(data)
        session.phase = Phase.LOADED
        logger.info("Decoded %s (%d bytes)", name, len(data))

        effects = self.validate(result.text)
        effects.status = name
        effects.status_kind = STATUS_OK
        effects.editor_text = result.text
        return effects

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------
    def validate(self, text: str) -> UiEffects:
        session = self.session
        session.document_text = text
        session.phase = Phase.VALIDATING
        session.validity = Validity.UNVALIDATED
        annotation = self.codec.check(text)
        if annotation is None:
            session.annotation = None
            session.validity = Validity.VALID
            session.phase = Phase.VALID
            return UiEffects(clear_markers=True, download_enabled=True)

        session.annotation = annotation
        session.validity = Validity.INVALID
        session.phase = Phase.INVALID
        return UiEffects(clear_markers=True, annotation=annotation, download_enabled=False)

    # ------------------------------------------------------------------
    # Produce
    # ------------------------------------------------------------------
    def request_download(self, *, save_blob: bool = False) -> UiEffects:
        session = self.session
        if not session.download_enabled:
            annotation = session.annotation
            return UiEffects(
                download_enabled=False,
                focus=annotation.start if annotation else None,
                prevent_default=True,
            )

        session.phase = Phase.ENCODING
        payload = self.codec.encode(session.document_text)
        if payload is None:
            return self._encode_failed()

        session.last_bytes = payload
        session.phase = Phase.DOWNLOADED
        logger.info("Encoded %s (%d bytes)", session.source_name, len(payload))
        return UiEffects(
            download_enabled=True,
            download=DownloadArtifact(session.source_name, payload),
            prevent_default=save_blob,
        )

    def _encode_failed(self) -> UiEffects:
        session = self.session
        session.phase = Phase.ENCODE_FAILED
        logger.warning("Encode failed although the last check reported no errors")
        first_line = session.document_text.split("\n", 1)[0]
        synthesized = Annotation(
            line=0,
            col=0,
            eline=0,
            ecol=len(first_line),
            message=ENCODE_FAILED_MESSAGE,
        )
        session.annotation = synthesized
        session.validity = Validity.INVALID
        session.phase = Phase.INVALID
        return UiEffects(
            clear_markers=True,
            annotation=synthesized,
            download_enabled=False,
            prevent_default=True,
        )

    def current_artifact(self) -> DownloadArtifact | None:
        session = self.session
        if session.phase is not Phase.DOWNLOADED or not session.download_enabled:
            return None
        if session.last_bytes is None:
            return None
        return DownloadArtifact(session.source_name, session.last_bytes)

    # ------------------------------------------------------------------
    # Hash echo
    # ------------------------------------------------------------------
    def hash_echo(self, text: str) -> str:
        self.hash_output = self.codec.calc_hash(text)
        return self.hash_output

    def snapshot(self) -> dict[str, object]:
        return {
            "session": self.session.to_payload(),
            "names_loaded": self.names_loaded,
            "codec_initialized": self.codec.initialized,
            "hash": {"seed": self.hash_seed, "output": self.hash_output},
        }


__all__ = [
    "DECODE_FAILED_MESSAGE",
    "ENCODE_FAILED_MESSAGE",
    "HASH_SEED",
    "Phase",
    "STATUS_FAILED",
    "STATUS_OK",
    "Session",
    "SessionController",
    "UiEffects",
    "Validity",
    "WRONG_FILE_COUNT_MESSAGE",
]
