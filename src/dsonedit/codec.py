from __future__ import annotations

import importlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, Union

logger = logging.getLogger(__name__)

ERROR_PREFIX = "Error"
REQUIRED_OPERATIONS = ("init", "set_names", "decode", "encode", "check", "calc_hash")


class CodecError(RuntimeError):
    """Raised when the codec misbehaves outside its documented failure modes."""


class CodecUnavailableError(CodecError):
    """Raised when the codec cannot be imported or lacks a required operation."""


class Codec(Protocol):
    def init(self) -> None: ...

    def set_names(self, names: Sequence[str]) -> None: ...

    def decode(self, data: bytes) -> str: ...

    def encode(self, text: str) -> bytes | None: ...

    def check(self, text: str) -> Any: ...

    def calc_hash(self, text: str) -> Any: ...


@dataclass(frozen=True, slots=True)
class Annotation:
    """A single validation error anchored to a text range."""

    line: int
    col: int
    eline: int
    ecol: int
    message: str

    @classmethod
    def from_codec(cls, raw: Any) -> "Annotation":
        """Build from whatever ``check`` returned (attribute object or mapping)."""
        if isinstance(raw, Mapping):
            getter = raw.get
        else:
            def getter(key: str, default: Any = None) -> Any:
                return getattr(raw, key, default)

        message = getter("err")
        if message is None:
            message = getter("message", "")
        return cls(
            line=_as_int(getter("line", 0), "line"),
            col=_as_int(getter("col", 0), "col"),
            eline=_as_int(getter("eline", 0), "eline"),
            ecol=_as_int(getter("ecol", 0), "ecol"),
            message=str(message),
        )

    @property
    def start(self) -> tuple[int, int]:
        return (self.line, self.col)

    def to_payload(self) -> dict[str, object]:
        return {
            "line": self.line,
            "col": self.col,
            "eline": self.eline,
            "ecol": self.ecol,
            "message": self.message,
        }


def _as_int(value: Any, field: str = "") -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.debug("Annotation field %s=%r is not an integer; using 0", field, value)
        return 0
    if number < 0:
        logger.debug("Annotation field %s=%r is negative; using 0", field, value)
        return 0
    return number


@dataclass(frozen=True, slots=True)
class DecodeSuccess:
    text: str


@dataclass(frozen=True, slots=True)
class DecodeFailure:
    message: str


DecodeResult = Union[DecodeSuccess, DecodeFailure]


def missing_operations(codec: object) -> list[str]:
    return [name for name in REQUIRED_OPERATIONS if not callable(getattr(codec, name, None))]


class CodecAdapter:
    """
    Wraps a raw codec and normalizes its result conventions.

    The raw codec signals decode failure three ways (raising, returning an
    exception value, or returning text that starts with ``"Error"``) and encode
    failure by returning nothing. Callers of this adapter only ever see
    ``DecodeResult``, ``bytes | None`` and ``Annotation | None``.
    """

    def __init__(self, codec: Codec) -> None:
        missing = missing_operations(codec)
        if missing:
            raise CodecUnavailableError(
                f"Codec {type(codec).__name__} is missing required operations: "
                + ", ".join(missing)
            )
        self._codec: Codec = codec
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def init(self) -> None:
        if self._initialized:
            return
        self._codec.init()
        self._initialized = True
        logger.debug("Codec %s initialized", type(self._codec).__name__)

    def set_names(self, names: Sequence[str]) -> None:
        self._codec.set_names(list(names))

    def decode(self, data: bytes) -> DecodeResult:
        try:
            result = self._codec.decode(bytes(data))
        except Exception as exc:
            logger.warning("Codec raised while decoding %d bytes: %s", len(data), exc)
            return DecodeFailure(str(exc) or type(exc).__name__)
        if isinstance(result, BaseException):
            return DecodeFailure(str(result) or type(result).__name__)
        if isinstance(result, (bytes, bytearray)):
            result = bytes(result).decode("utf-8", errors="replace")
        if not isinstance(result, str):
            return DecodeFailure(f"{ERROR_PREFIX}: codec returned {type(result).__name__}")
        if result.startswith(ERROR_PREFIX):
            return DecodeFailure(result)
        return DecodeSuccess(result)

    def encode(self, text: str) -> bytes | None:
        try:
            result = self._codec.encode(text)
        except Exception:
            logger.exception("Codec raised while encoding")
            return None
        if result is None:
            return None
        if isinstance(result, (bytes, bytearray, memoryview)):
            return bytes(result)
        # bool and int would pass bytes() as zero-filled buffers
        if isinstance(result, (list, tuple)) and all(
            isinstance(item, int) and not isinstance(item, bool) for item in result
        ):
            try:
                return bytes(result)
            except ValueError:
                pass
        logger.warning("Codec returned unusable encode result %r", type(result).__name__)
        return None

    def check(self, text: str) -> Annotation | None:
        raw = self._codec.check(text)
        if raw is None:
            return None
        return Annotation.from_codec(raw)

    def calc_hash(self, text: str) -> str:
        return str(self._codec.calc_hash(text))


def load_codec(target: str) -> CodecAdapter:
    """
    Import a codec from ``package.module:object``.

    A class (or zero-argument factory function) is called to produce the
    codec; a module or ready-made instance is used as-is.
    """
    if not target or not target.strip():
        raise CodecUnavailableError("No codec configured (use --codec or DSONEDIT_CODEC).")
    module_name, _, attr = target.strip().partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise CodecUnavailableError(f"Cannot import codec module {module_name!r}: {exc}") from exc
    obj: object = module
    if attr:
        for part in attr.split("."):
            try:
                obj = getattr(obj, part)
            except AttributeError as exc:
                raise CodecUnavailableError(
                    f"Codec module {module_name!r} has no attribute {attr!r}"
                ) from exc
    if inspect.isclass(obj) or inspect.isfunction(obj):
        try:
            obj = obj()
        except Exception as exc:
            raise CodecUnavailableError(f"Failed to construct codec {target!r}: {exc}") from exc
    return CodecAdapter(obj)


__all__ = [
    "Annotation",
    "Codec",
    "CodecAdapter",
    "CodecError",
    "CodecUnavailableError",
    "DecodeFailure",
    "DecodeResult",
    "DecodeSuccess",
    "ERROR_PREFIX",
    "REQUIRED_OPERATIONS",
    "load_codec",
    "missing_operations",
]
