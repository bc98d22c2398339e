from __future__ import annotations

import asyncio
import copy

import pytest

from conftest import BROKEN_DOCUMENT, MAGIC, VALID_DOCUMENT, MemoryUpload, name_hash
from dsonedit.session import (
    DECODE_FAILED_MESSAGE,
    ENCODE_FAILED_MESSAGE,
    STATUS_FAILED,
    STATUS_OK,
    WRONG_FILE_COUNT_MESSAGE,
    Phase,
    Validity,
)
from dsonedit.transfer import DEFAULT_SOURCE_NAME


def _ingest(controller, *uploads):
    return asyncio.run(controller.ingest(list(uploads)))


def _load_valid(controller, name: str = "save.json"):
    return _ingest(controller, MemoryUpload(name, MAGIC + VALID_DOCUMENT.encode("utf-8")))


def test_new_session_starts_empty(controller) -> None:
    session = controller.session
    assert session.phase is Phase.EMPTY
    assert session.document_text == ""
    assert session.source_name == DEFAULT_SOURCE_NAME
    assert session.validity is Validity.UNVALIDATED
    assert session.download_enabled is False


def test_edit_break_revert_download_scenario(controller, fake_codec) -> None:
    effects = _load_valid(controller)
    session = controller.session
    assert session.source_name == "save.json"
    assert session.document_text == VALID_DOCUMENT
    assert session.validity is Validity.VALID
    assert effects.download_enabled is True
    assert effects.status == "save.json"
    assert effects.status_kind == STATUS_OK
    assert effects.editor_text == VALID_DOCUMENT
    assert fake_codec.check_calls == [VALID_DOCUMENT]

    broken = controller.validate(BROKEN_DOCUMENT)
    assert broken.download_enabled is False
    assert broken.clear_markers is True
    assert broken.annotation is not None
    assert broken.annotation.line == 3
    assert broken.annotation.eline == 3
    assert broken.annotation.ecol == broken.annotation.col + 4
    assert session.phase is Phase.INVALID

    reverted = controller.validate(VALID_DOCUMENT)
    assert reverted.download_enabled is True
    assert reverted.annotation is None
    assert session.annotation is None

    produced = controller.request_download()
    assert produced.download is not None
    assert produced.download.filename == "save.json"
    assert produced.download.payload == MAGIC + VALID_DOCUMENT.encode("utf-8")
    assert produced.prevent_default is False
    assert session.phase is Phase.DOWNLOADED

    assert controller.hash_echo("jester") == str(name_hash("jester"))


@pytest.mark.parametrize("count", [0, 2])
def test_wrong_file_count_leaves_session_untouched(controller, count) -> None:
    _load_valid(controller)
    controller.validate(BROKEN_DOCUMENT)
    before = copy.deepcopy(controller.session)
    uploads = [MemoryUpload(f"f{i}.json", MAGIC + b"{}") for i in range(count)]

    effects = _ingest(controller, *uploads)

    assert effects.status == WRONG_FILE_COUNT_MESSAGE
    assert effects.status_kind == STATUS_FAILED
    assert effects.editor_text is None
    assert effects.download_enabled is None
    assert controller.session == before
    assert all(upload.reads == 0 for upload in uploads)


@pytest.mark.parametrize("payload", [b"not a save", b"boom"])
def test_decode_failure_keeps_document_and_name(controller, fake_codec, payload) -> None:
    _load_valid(controller)
    checks_before = len(fake_codec.check_calls)

    effects = _ingest(controller, MemoryUpload("other.json", payload))

    session = controller.session
    assert session.document_text == VALID_DOCUMENT
    assert session.source_name == "save.json"
    assert session.validity is Validity.VALID
    assert session.phase is Phase.DECODE_FAILED
    assert effects.status == DECODE_FAILED_MESSAGE
    assert effects.status_kind == STATUS_FAILED
    assert effects.editor_text
    assert effects.download_enabled is None
    assert len(fake_codec.check_calls) == checks_before


def test_decode_error_prefix_is_shown_in_editor(controller) -> None:
    effects = _ingest(controller, MemoryUpload("x.json", b"junk"))
    assert effects.editor_text.startswith("Error")
    assert controller.session.document_text == ""
    assert controller.session.source_name == DEFAULT_SOURCE_NAME


def test_ingest_uses_base_name_of_upload(controller) -> None:
    _load_valid(controller, name="C:\\saves\\profile_0\\persist.roster.json")
    assert controller.session.source_name == "persist.roster.json"


def test_ingest_of_invalid_document_disables_download(controller) -> None:
    effects = _ingest(controller, MemoryUpload("bad.json", MAGIC + BROKEN_DOCUMENT.encode("utf-8")))
    assert controller.session.source_name == "bad.json"
    assert effects.download_enabled is False
    assert effects.annotation is not None
    assert controller.session.phase is Phase.INVALID


def test_read_failure_restores_phase(controller) -> None:
    class _Broken:
        filename = "save.json"

        async def read(self) -> bytes:
            raise OSError("disk went away")

    with pytest.raises(OSError):
        _ingest(controller, _Broken())
    assert controller.session.phase is Phase.EMPTY


def test_each_change_runs_exactly_one_check(controller, fake_codec) -> None:
    texts = ["{", "{}", '{"a": 1}', '{"a": ']
    for text in texts:
        controller.validate(text)
    assert fake_codec.check_calls == texts
    assert controller.session.document_text == texts[-1]
    assert controller.session.download_enabled is False


def test_new_annotation_replaces_previous(controller) -> None:
    first = controller.validate("{\n  oops\n}")
    second = controller.validate("{\n}\n]")
    assert first.annotation != second.annotation
    assert second.clear_markers is True
    assert controller.session.annotation == second.annotation


def test_download_gating_follows_check(controller) -> None:
    for text, valid in [("{}", True), ("{", False), ("[]", True), ("nope", False)]:
        effects = controller.validate(text)
        assert effects.download_enabled is valid
        assert controller.session.download_enabled is valid
        assert (effects.annotation is None) is valid


def test_round_trip_encoded_bytes_revalidate_clean(controller, adapter) -> None:
    _load_valid(controller)
    produced = controller.request_download()
    decoded = adapter.decode(produced.download.payload)
    assert adapter.check(decoded.text) is None


def test_save_blob_suppresses_default_action(controller) -> None:
    _load_valid(controller)
    effects = controller.request_download(save_blob=True)
    assert effects.download is not None
    assert effects.prevent_default is True


def test_download_while_invalid_focuses_annotation(controller, fake_codec) -> None:
    _load_valid(controller)
    broken = controller.validate(BROKEN_DOCUMENT)

    effects = controller.request_download()

    assert effects.download is None
    assert effects.prevent_default is True
    assert effects.download_enabled is False
    assert effects.focus == (broken.annotation.line, broken.annotation.col)
    assert fake_codec.encode_calls == []


def test_download_before_any_document_does_nothing(controller) -> None:
    effects = controller.request_download()
    assert effects.download is None
    assert effects.focus is None
    assert effects.prevent_default is True


def test_encode_failure_after_clean_check_falls_back_to_invalid(controller, fake_codec) -> None:
    _load_valid(controller)
    fake_codec.refuse_encode = True

    effects = controller.request_download()

    session = controller.session
    assert effects.download is None
    assert effects.prevent_default is True
    assert effects.focus is None
    assert effects.download_enabled is False
    assert effects.annotation is not None
    assert effects.annotation.message == ENCODE_FAILED_MESSAGE
    assert effects.annotation.ecol == len("{")
    assert session.validity is Validity.INVALID
    assert session.annotation == effects.annotation
    assert session.source_name == "save.json"
    assert controller.current_artifact() is None


@pytest.mark.parametrize("refused", [False, 0, 3])
def test_non_bytes_encode_result_is_an_encode_failure(controller, fake_codec, refused) -> None:
    _load_valid(controller)
    fake_codec.refuse_encode = True
    fake_codec.refused_result = refused

    effects = controller.request_download()

    assert effects.download is None
    assert effects.download_enabled is False
    assert effects.annotation.message == ENCODE_FAILED_MESSAGE
    assert controller.session.validity is Validity.INVALID
    assert controller.session.phase is Phase.INVALID
    assert controller.current_artifact() is None


def test_current_artifact_only_after_download(controller) -> None:
    _load_valid(controller)
    assert controller.current_artifact() is None
    controller.request_download()
    artifact = controller.current_artifact()
    assert artifact is not None
    assert artifact.filename == "save.json"
    controller.validate(BROKEN_DOCUMENT)
    assert controller.current_artifact() is None


def test_source_name_not_changed_by_edits(controller) -> None:
    _load_valid(controller)
    controller.validate('{"name": "renamed.json"}')
    effects = controller.request_download()
    assert effects.download.filename == "save.json"


def test_startup_initializes_codec_and_seeds_hash(controller, fake_codec) -> None:
    asyncio.run(controller.startup())
    assert fake_codec.init_calls == 1
    assert controller.hash_output == str(name_hash("jester"))
    asyncio.run(controller.startup())
    assert fake_codec.init_calls == 1


def test_startup_loads_names_in_background(controller, fake_codec, tmp_path) -> None:
    names_file = tmp_path / "names.txt"
    names_file.write_bytes(b"jester\r\ncrusader\n\nvestal\n")

    async def run() -> bool:
        await controller.startup(str(names_file))
        return await controller.wait_for_names()

    assert asyncio.run(run()) is True
    assert fake_codec.names == ["jester", "crusader", "vestal"]
    assert controller.names_loaded is True


def test_missing_names_degrade_without_error(controller, fake_codec, tmp_path) -> None:
    async def run() -> bool:
        await controller.startup(str(tmp_path / "missing.txt"))
        return await controller.wait_for_names()

    assert asyncio.run(run()) is False
    assert fake_codec.names == []
    assert controller.names_loaded is False
    effects = _load_valid(controller)
    assert effects.download_enabled is True


def test_snapshot_reports_session_and_hash(controller) -> None:
    _load_valid(controller)
    controller.validate(BROKEN_DOCUMENT)
    snapshot = controller.snapshot()
    session = snapshot["session"]
    assert session["source_name"] == "save.json"
    assert session["validity"] == "invalid"
    assert session["download_enabled"] is False
    assert session["annotation"]["line"] == 3
    assert snapshot["hash"]["seed"] == "jester"
