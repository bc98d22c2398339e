from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from dsonedit.codec import CodecAdapter
from dsonedit.session import SessionController

MAGIC = b"DSON"


def name_hash(text: str) -> int:
    value = 0
    for byte in text.encode("utf-8"):
        value = (value * 53 + byte) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


class FakeCodec:
    """JSON-backed stand-in for the binary codec."""

    def __init__(self) -> None:
        self.init_calls = 0
        self.names: list[str] = []
        self.check_calls: list[str] = []
        self.encode_calls: list[str] = []
        self.refuse_encode = False
        self.refused_result: object = None

    def init(self) -> None:
        self.init_calls += 1

    def set_names(self, names) -> None:
        self.names = list(names)

    def decode(self, data: bytes) -> str:
        if data == b"boom":
            raise ValueError("corrupt header")
        if not data.startswith(MAGIC):
            return "Error: File does not appear to be a save file"
        return data[len(MAGIC):].decode("utf-8")

    def encode(self, text: str):
        self.encode_calls.append(text)
        if self.refuse_encode:
            return self.refused_result
        try:
            json.loads(text)
        except json.JSONDecodeError:
            return None
        return MAGIC + text.encode("utf-8")

    def check(self, text: str):
        self.check_calls.append(text)
        try:
            json.loads(text)
        except json.JSONDecodeError as exc:
            line = exc.lineno - 1
            col = exc.colno - 1
            return SimpleNamespace(line=line, col=col, eline=line, ecol=col + 4, err="JSON Syntax Error")
        return None

    def calc_hash(self, text: str) -> int:
        if text.startswith("###"):
            text = text[3:]
        return name_hash(text)


class MemoryUpload:
    def __init__(self, filename: str | None, data: bytes) -> None:
        self.filename = filename
        self._data = data
        self.reads = 0

    async def read(self) -> bytes:
        self.reads += 1
        return self._data


VALID_DOCUMENT = """{
  "base_root": {
    "name": "jester",
    "level": 1
  }
}"""

BROKEN_DOCUMENT = """{
  "base_root": {
    "name": "jester",
    "level" 1
  }
}"""


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()


@pytest.fixture
def adapter(fake_codec: FakeCodec) -> CodecAdapter:
    return CodecAdapter(fake_codec)


@pytest.fixture
def controller(adapter: CodecAdapter) -> SessionController:
    return SessionController(adapter)
