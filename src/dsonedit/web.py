from __future__ import annotations

import html
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from fastapi import Body, FastAPI, File, HTTPException, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, Response

from .codec import CodecAdapter, CodecUnavailableError, load_codec
from .names import DEFAULT_FETCH_TIMEOUT
from .session import HASH_SEED, SessionController
from .transfer import OCTET_STREAM

logger = logging.getLogger(__name__)

CODEC_ENV = "DSONEDIT_CODEC"
NAMES_ENV = "DSONEDIT_NAMES"


@dataclass(slots=True)
class WebConfig:
    codec: str = ""
    names_source: str | None = None
    names_timeout: float = DEFAULT_FETCH_TIMEOUT
    hash_seed: str = HASH_SEED


INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Save File Editor</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <style>
    :root {
      color-scheme: dark;
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
      --bg: #05060b;
      --panel: #111423;
      --outline: #1f243d;
      --text: #f3f4f6;
      --muted: #a3a8c5;
      --accent: #38bdf8;
      --ok: #4ade80;
      --danger: #f87171;
    }
    * {
      box-sizing: border-box;
    }
    body {
      margin: 0;
      background: var(--bg);
      color: var(--text);
      min-height: 100vh;
    }
    main {
      padding: 1.4rem;
      display: flex;
      flex-direction: column;
      gap: 1rem;
      max-width: 1200px;
      margin: 0 auto;
    }
    h1 {
      margin: 0;
      font-size: 1.3rem;
    }
    .drop-area {
      border: 2px dashed var(--outline);
      border-radius: 14px;
      padding: 1.2rem;
      text-align: center;
      background: var(--panel);
      cursor: pointer;
      transition: border-color 0.15s ease;
    }
    .drop-area.dragging {
      border-color: var(--accent);
    }
    .drop-area[data-status="ok"] {
      border-color: var(--ok);
    }
    .drop-area[data-status="failed"] {
      border-color: var(--danger);
    }
    .drop-area input[type="file"] {
      display: none;
    }
    .status {
      color: var(--muted);
      font-size: 0.9rem;
      margin-top: 0.4rem;
      min-height: 1.2em;
    }
    .drop-area[data-status="failed"] .status {
      color: var(--danger);
    }
    #editor {
      height: 65vh;
      border-radius: 12px;
      border: 1px solid var(--outline);
    }
    .toolbar {
      display: flex;
      gap: 0.8rem;
      align-items: center;
      flex-wrap: wrap;
    }
    .button {
      display: inline-block;
      background: var(--accent);
      color: #04121c;
      border-radius: 10px;
      padding: 0.5rem 1.1rem;
      font-weight: 600;
      text-decoration: none;
    }
    .button.disabled {
      background: var(--outline);
      color: var(--muted);
      pointer-events: none;
    }
    .hash {
      display: flex;
      gap: 0.5rem;
      align-items: center;
      flex-wrap: wrap;
    }
    .hash input {
      padding: 0.4rem 0.75rem;
      border-radius: 10px;
      border: 1px solid var(--outline);
      background: rgba(0,0,0,0.2);
      color: var(--text);
      font-family: ui-monospace, SFMono-Regular, Menlo, monospace;
    }
    .dson-error {
      position: absolute;
      background: rgba(248,113,113,0.35);
      border-bottom: 2px solid var(--danger);
    }
  </style>
</head>
<body>
  <main>
    <h1>Save File Editor</h1>
    <div class="drop-area" id="droparea" tabindex="0" role="button" aria-label="Open save file">
      <input type="file" id="file-input">
      <strong>Drop a save file here</strong> or click to choose one.
      <div class="status" id="errmsg"></div>
    </div>
    <div id="editor"></div>
    <div class="toolbar">
      <a id="download" class="button disabled" download>Download</a>
      <span class="status" id="source-name"></span>
    </div>
    <div class="hash">
      <label for="hash-input">Hash</label>
      <input type="text" id="hash-input" autocomplete="off">
      <input type="text" id="hash-output" readonly>
    </div>
  </main>
  <script src="https://cdnjs.cloudflare.com/ajax/libs/ace/1.32.7/ace.min.js"></script>
  <script>
    const dropArea = document.getElementById('droparea');
    const fileInput = document.getElementById('file-input');
    const statusLabel = document.getElementById('errmsg');
    const sourceLabel = document.getElementById('source-name');
    const downloadLink = document.getElementById('download');
    const hashInput = document.getElementById('hash-input');
    const hashOutput = document.getElementById('hash-output');

    const editor = ace.edit('editor');
    editor.setTheme('ace/theme/monokai');
    editor.session.setMode('ace/mode/json');
    editor.session.setOption('useWorker', false);
    const AceRange = ace.require('ace/range').Range;

    let applyingText = false;
    let markerIds = [];
    let sessionQueue = Promise.resolve();
    let hashQueue = Promise.resolve();

    function enqueue(task) {
      sessionQueue = sessionQueue.then(task).catch((err) => {
        console.error(err);
        setStatus(err.message || 'Request failed.', 'failed');
      });
      return sessionQueue;
    }

    async function readJSON(res) {
      let payload = null;
      try {
        payload = await res.json();
      } catch {
        payload = null;
      }
      if (!res.ok) {
        const detail = payload && payload.detail;
        throw new Error(detail || `Request failed (${res.status})`);
      }
      return payload;
    }

    async function postJSON(url, body) {
      const res = await fetch(url, {
        method: 'POST',
        headers: {'Content-Type': 'application/json'},
        body: JSON.stringify(body),
      });
      return readJSON(res);
    }

    function setStatus(message, kind) {
      statusLabel.textContent = message || '';
      if (kind) {
        dropArea.dataset.status = kind;
      } else {
        delete dropArea.dataset.status;
      }
    }

    function setEditorText(text) {
      applyingText = true;
      try {
        editor.setValue(text, -1);
      } finally {
        applyingText = false;
      }
    }

    function clearMarkers() {
      markerIds.forEach((id) => editor.session.removeMarker(id));
      markerIds = [];
      editor.session.clearAnnotations();
    }

    function showAnnotation(annot) {
      editor.session.setAnnotations([{
        row: annot.line,
        column: annot.col,
        text: annot.message,
        type: 'error',
      }]);
      const range = new AceRange(annot.line, annot.col, annot.eline, annot.ecol);
      markerIds.push(editor.session.addMarker(range, 'dson-error', 'text', false));
    }

    function setDownloadEnabled(enabled) {
      if (enabled) {
        downloadLink.classList.remove('disabled');
        downloadLink.setAttribute('href', '#');
      } else {
        downloadLink.classList.add('disabled');
        downloadLink.removeAttribute('href');
      }
    }

    function focusAt(pos) {
      editor.focus();
      editor.gotoLine(pos.line + 1, pos.col, true);
      editor.scrollToLine(pos.line, true, true, () => {});
    }

    function applyEffects(fx) {
      if (!fx) return;
      if (fx.status !== null) setStatus(fx.status, fx.status_kind);
      if (fx.editor_text !== null) setEditorText(fx.editor_text);
      if (fx.clear_markers) clearMarkers();
      if (fx.annotation) showAnnotation(fx.annotation);
      if (fx.download_enabled !== null) setDownloadEnabled(fx.download_enabled);
      if (fx.focus) focusAt(fx.focus);
    }

    function canSaveBlob() {
      return typeof window.navigator.msSaveBlob === 'function';
    }

    function collectFiles(dataTransfer) {
      const files = [];
      if (!dataTransfer) return files;
      if (dataTransfer.items) {
        for (let i = 0; i < dataTransfer.items.length; i += 1) {
          const item = dataTransfer.items[i];
          if (item.kind !== 'file') {
            return null;
          }
          files.push(item.getAsFile());
        }
      } else {
        for (let i = 0; i < dataTransfer.files.length; i += 1) {
          files.push(dataTransfer.files[i]);
        }
      }
      return files;
    }

    function ingest(files) {
      const formData = new FormData();
      (files || []).forEach((file) => formData.append('files', file, file.name));
      enqueue(async () => {
        const res = await fetch('/api/ingest', {method: 'POST', body: formData});
        const fx = await readJSON(res);
        applyEffects(fx);
        const snapshot = await readJSON(await fetch('/api/session'));
        sourceLabel.textContent = snapshot.session.source_name;
      });
    }

    function isFileDrag(event) {
      return event.dataTransfer && Array.from(event.dataTransfer.types || []).includes('Files');
    }

    dropArea.addEventListener('dragenter', (event) => {
      if (isFileDrag(event)) {
        event.preventDefault();
        dropArea.classList.add('dragging');
      }
    });
    dropArea.addEventListener('dragover', (event) => {
      if (isFileDrag(event)) event.preventDefault();
    });
    dropArea.addEventListener('dragleave', () => dropArea.classList.remove('dragging'));
    dropArea.addEventListener('drop', (event) => {
      event.preventDefault();
      dropArea.classList.remove('dragging');
      ingest(collectFiles(event.dataTransfer) || []);
    });
    dropArea.addEventListener('click', () => fileInput.click());
    dropArea.addEventListener('keydown', (event) => {
      if (event.key === 'Enter' || event.key === ' ') {
        event.preventDefault();
        fileInput.click();
      }
    });
    fileInput.addEventListener('change', () => {
      ingest(Array.from(fileInput.files || []));
      fileInput.value = '';
    });

    editor.session.on('change', () => {
      if (applyingText) return;
      const text = editor.getValue();
      enqueue(async () => applyEffects(await postJSON('/api/check', {text})));
    });

    downloadLink.addEventListener('click', (event) => {
      event.preventDefault();
      if (downloadLink.classList.contains('disabled')) return;
      const saveBlob = canSaveBlob();
      enqueue(async () => {
        const fx = await postJSON('/api/download', {save_blob: saveBlob});
        applyEffects(fx);
        if (!fx.download) return;
        if (fx.prevent_default) {
          const blob = await (await fetch('/api/download')).blob();
          window.navigator.msSaveBlob(blob, fx.download.filename);
          return;
        }
        const anchor = document.createElement('a');
        anchor.href = fx.download.href;
        anchor.download = fx.download.filename;
        document.body.appendChild(anchor);
        anchor.click();
        anchor.remove();
      });
    });

    hashInput.addEventListener('input', () => {
      const text = hashInput.value;
      hashQueue = hashQueue
        .then(async () => {
          const payload = await postJSON('/api/hash', {text});
          hashOutput.value = payload.hash;
        })
        .catch((err) => {
          console.error(err);
          hashOutput.value = '';
        });
    });

    async function restoreSession() {
      const snapshot = await readJSON(await fetch('/api/session'));
      const session = snapshot.session;
      setEditorText(session.document_text);
      clearMarkers();
      if (session.annotation) showAnnotation(session.annotation);
      setDownloadEnabled(session.download_enabled);
      sourceLabel.textContent = session.source_name;
      hashInput.value = snapshot.hash.seed;
      hashOutput.value = snapshot.hash.output || '';
    }

    restoreSession().catch((err) => setStatus(err.message, 'failed'));
  </script>
</body>
</html>
"""

INCOMPATIBLE_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Save File Editor</title>
  <style>
    body {
      margin: 0;
      background: #05060b;
      color: #f3f4f6;
      font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
    }
    main {
      max-width: 720px;
      margin: 4rem auto;
      padding: 1.4rem;
      border: 1px solid #f87171;
      border-radius: 14px;
    }
  </style>
</head>
<body>
  <main>
    <h1>Editor unavailable</h1>
    <p>The save file codec could not be loaded, so the editor cannot run.</p>
    <pre>{reason}</pre>
  </main>
</body>
</html>
"""


def render_incompatible_page(reason: str) -> str:
    return INCOMPATIBLE_HTML.replace("{reason}", html.escape(reason))


def create_app(config: WebConfig, codec: CodecAdapter | None = None) -> FastAPI:
    fatal: str | None = None
    if codec is None:
        try:
            codec = load_codec(config.codec)
        except CodecUnavailableError as exc:
            fatal = str(exc)
            logger.error("Editor disabled: %s", fatal)

    controller = SessionController(codec, hash_seed=config.hash_seed) if codec else None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if controller is not None:
            await controller.startup(config.names_source, names_timeout=config.names_timeout)
        try:
            yield
        finally:
            if controller is not None:
                await controller.shutdown()

    app = FastAPI(title="dsonedit", lifespan=lifespan)
    app.state.config = config
    app.state.controller = controller
    app.state.fatal = fatal

    def _controller() -> SessionController:
        if controller is None:
            raise HTTPException(status_code=503, detail=fatal or "Codec unavailable.")
        return controller

    def _text_field(payload: object, key: str = "text") -> str:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        value = payload.get(key)
        if not isinstance(value, str):
            raise HTTPException(status_code=400, detail=f"{key} must be a string.")
        return value

    @app.get("/", response_class=HTMLResponse)
    def index() -> HTMLResponse:
        if controller is None:
            return HTMLResponse(render_incompatible_page(fatal or "Codec unavailable."))
        return HTMLResponse(INDEX_HTML)

    @app.get("/api/session")
    async def api_session() -> JSONResponse:
        return JSONResponse(_controller().snapshot())

    @app.post("/api/ingest")
    async def api_ingest(files: list[UploadFile] | None = File(None)) -> JSONResponse:
        ctrl = _controller()
        incoming = list(files or [])
        try:
            effects = await ctrl.ingest(incoming)
        finally:
            for upload in incoming:
                await upload.close()
        return JSONResponse(effects.to_payload())

    @app.post("/api/check")
    async def api_check(payload: dict[str, object] = Body(...)) -> JSONResponse:
        ctrl = _controller()
        text = _text_field(payload)
        return JSONResponse(ctrl.validate(text).to_payload())

    @app.post("/api/download")
    async def api_request_download(payload: dict[str, object] | None = Body(None)) -> JSONResponse:
        ctrl = _controller()
        save_blob = False
        if payload is not None:
            if not isinstance(payload, dict):
                raise HTTPException(status_code=400, detail="Invalid payload.")
            raw = payload.get("save_blob", False)
            if not isinstance(raw, bool):
                raise HTTPException(status_code=400, detail="save_blob must be a boolean.")
            save_blob = raw
        return JSONResponse(ctrl.request_download(save_blob=save_blob).to_payload())

    @app.get("/api/download")
    async def api_download() -> Response:
        artifact = _controller().current_artifact()
        if artifact is None:
            raise HTTPException(status_code=404, detail="Nothing to download.")
        return Response(
            content=artifact.payload,
            media_type=OCTET_STREAM,
            headers={"Content-Disposition": artifact.content_disposition()},
        )

    @app.post("/api/hash")
    async def api_hash(payload: dict[str, object] = Body(...)) -> JSONResponse:
        ctrl = _controller()
        text = _text_field(payload)
        return JSONResponse({"hash": ctrl.hash_echo(text)})

    return app


__all__ = ["CODEC_ENV", "INDEX_HTML", "NAMES_ENV", "WebConfig", "create_app"]
