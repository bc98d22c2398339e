from __future__ import annotations

import argparse
import os
import socket
import sys
from importlib import metadata
from pathlib import Path

import tomllib
import uvicorn
from rich.console import Console

from .codec import CodecAdapter, CodecUnavailableError, DecodeFailure, load_codec
from .gamenames import collect_names, format_names
from .logging_utils import build_uvicorn_log_config, set_debug_logging
from .names import DEFAULT_FETCH_TIMEOUT, NameListError, read_names
from .web import CODEC_ENV, NAMES_ENV, WebConfig, create_app


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover - defensive
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("dsonedit")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_version_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"dsonedit {__version__}",
    )


def _add_codec_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--codec",
        default=os.getenv(CODEC_ENV, ""),
        help=f"Codec import path as module:object (default: ${CODEC_ENV}).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dsonedit",
        description="Browser editor for binary save files. Commands: web, decode, encode, check, hash, names.",
    )
    _add_version_flag(ap)
    ap.add_argument("command", nargs="?", help="Subcommand to run.")
    return ap


def build_web_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dsonedit web",
        description="Serve the save file editor in the browser.",
    )
    _add_version_flag(ap)
    _add_codec_flag(ap)
    ap.add_argument(
        "--names",
        default=os.getenv(NAMES_ENV),
        help=f"URL or path of the newline-delimited display name list (default: ${NAMES_ENV}).",
    )
    ap.add_argument(
        "--names-timeout",
        type=float,
        default=DEFAULT_FETCH_TIMEOUT,
        help=f"Seconds to wait for the name list (default: {DEFAULT_FETCH_TIMEOUT:g}).",
    )
    ap.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    ap.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port for the web server (default: 8080).",
    )
    ap.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug logging.",
    )
    return ap


def build_decode_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dsonedit decode",
        description="Decode a binary save file to editable text.",
    )
    _add_codec_flag(ap)
    ap.add_argument("input_path", help="Path to the binary save file.")
    ap.add_argument("-o", "--output", help="Write text here instead of stdout.")
    ap.add_argument("-n", "--names", help="Name list file offered to the codec before decoding.")
    return ap


def build_encode_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dsonedit encode",
        description="Encode edited text back to a binary save file.",
    )
    _add_codec_flag(ap)
    ap.add_argument("input_path", help="Path to the text file.")
    ap.add_argument("-o", "--output", required=True, help="Path of the binary file to write.")
    return ap


def build_check_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dsonedit check",
        description="Validate a text file and report the first error.",
    )
    _add_codec_flag(ap)
    ap.add_argument("input_path", help="Path to the text file.")
    return ap


def build_hash_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dsonedit hash",
        description="Print the codec's name hash for each argument.",
    )
    _add_codec_flag(ap)
    ap.add_argument("texts", nargs="+", help="Strings to hash.")
    return ap


def build_names_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="dsonedit names",
        description="Collect the display name list from game and mod directories.",
    )
    ap.add_argument("roots", nargs="+", help="Game or mod root directories to scan.")
    ap.add_argument("-o", "--output", help="Write the list here instead of stdout.")
    return ap


def _load_cli_codec(target: str) -> CodecAdapter:
    try:
        codec = load_codec(target)
    except CodecUnavailableError as exc:
        raise SystemExit(str(exc)) from exc
    codec.init()
    return codec


def _read_input_bytes(path_value: str) -> bytes:
    path = Path(path_value).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    return path.read_bytes()


def _format_location(line: int, col: int) -> str:
    return f"{line + 1}:{col + 1}"


def _run_decode(args: argparse.Namespace) -> int:
    console = Console(stderr=True)
    codec = _load_cli_codec(args.codec)
    if args.names:
        try:
            codec.set_names(read_names(args.names))
        except NameListError as exc:
            console.print(f"[red]{exc}[/red]")
            return 1
    data = _read_input_bytes(args.input_path)
    result = codec.decode(data)
    if isinstance(result, DecodeFailure):
        console.print(f"[red]Could not decode {args.input_path}[/red]")
        console.print(result.message, markup=False, soft_wrap=True)
        return 1
    if args.output:
        Path(args.output).write_text(result.text + "\n", encoding="utf-8")
        console.print(f"Wrote {args.output}", soft_wrap=True)
    else:
        sys.stdout.write(result.text + "\n")
    return 0


def _run_encode(args: argparse.Namespace) -> int:
    console = Console(stderr=True)
    codec = _load_cli_codec(args.codec)
    text = _read_input_bytes(args.input_path).decode("utf-8")
    annotation = codec.check(text)
    if annotation is not None:
        console.print(
            f"{args.input_path}:{_format_location(annotation.line, annotation.col)}: "
            f"{annotation.message}",
            markup=False,
            soft_wrap=True,
        )
        return 1
    payload = codec.encode(text)
    if payload is None:
        console.print(f"[red]Could not encode {args.input_path}[/red]")
        return 1
    Path(args.output).write_bytes(payload)
    console.print(f"Wrote {args.output} ({len(payload)} bytes)", soft_wrap=True)
    return 0


def _run_check(args: argparse.Namespace) -> int:
    console = Console()
    codec = _load_cli_codec(args.codec)
    text = _read_input_bytes(args.input_path).decode("utf-8")
    annotation = codec.check(text)
    if annotation is None:
        console.print("ok")
        return 0
    console.print(
        f"{args.input_path}:{_format_location(annotation.line, annotation.col)}-"
        f"{_format_location(annotation.eline, annotation.ecol)}: {annotation.message}",
        markup=False,
        soft_wrap=True,
    )
    return 1


def _run_hash(args: argparse.Namespace) -> int:
    codec = _load_cli_codec(args.codec)
    for text in args.texts:
        sys.stdout.write(f"{text}\t{codec.calc_hash(text)}\n")
    return 0


def _run_names(args: argparse.Namespace) -> int:
    names = collect_names(args.roots)
    listing = format_names(names)
    if args.output:
        Path(args.output).expanduser().write_text(listing, encoding="utf-8")
        Console(stderr=True).print(f"Wrote {len(names)} names to {args.output}", soft_wrap=True)
    else:
        sys.stdout.write(listing)
    return 0


def _run_web(args: argparse.Namespace) -> None:
    set_debug_logging(bool(args.debug))
    config = WebConfig(
        codec=args.codec,
        names_source=args.names or None,
        names_timeout=args.names_timeout,
    )
    app = create_app(config)
    public_ip = _resolve_local_ip(args.host)
    url = f"http://{public_ip}:{args.port}/"
    print(f"Web URL: {url}")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_config=build_uvicorn_log_config(debug=bool(args.debug)),
    )


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] == "web":
        web_args = build_web_parser().parse_args(argv[1:])
        _run_web(web_args)
        return 0
    if argv and argv[0] in {"decode", "dson2json"}:
        return _run_decode(build_decode_parser().parse_args(argv[1:]))
    if argv and argv[0] in {"encode", "json2dson"}:
        return _run_encode(build_encode_parser().parse_args(argv[1:]))
    if argv and argv[0] == "check":
        return _run_check(build_check_parser().parse_args(argv[1:]))
    if argv and argv[0] == "hash":
        return _run_hash(build_hash_parser().parse_args(argv[1:]))
    if argv and argv[0] == "names":
        return _run_names(build_names_parser().parse_args(argv[1:]))

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    parser.error(f"unknown command: {args.command}")
    return 2


def _resolve_local_ip(host: str) -> str:
    if host not in {"", "0.0.0.0"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


if __name__ == "__main__":
    raise SystemExit(main())
