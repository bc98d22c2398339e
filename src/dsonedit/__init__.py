from .codec import (
    Annotation,
    CodecAdapter,
    CodecError,
    CodecUnavailableError,
    DecodeFailure,
    DecodeSuccess,
    load_codec,
)
from .gamenames import collect_names
from .names import NameListError, parse_names
from .session import Phase, Session, SessionController, UiEffects, Validity
from .transfer import DEFAULT_SOURCE_NAME, DownloadArtifact
from .web import WebConfig, create_app

__all__ = [
    "Annotation",
    "CodecAdapter",
    "CodecError",
    "CodecUnavailableError",
    "DecodeFailure",
    "DecodeSuccess",
    "load_codec",
    "collect_names",
    "NameListError",
    "parse_names",
    "Phase",
    "Session",
    "SessionController",
    "UiEffects",
    "Validity",
    "DEFAULT_SOURCE_NAME",
    "DownloadArtifact",
    "WebConfig",
    "create_app",
]
