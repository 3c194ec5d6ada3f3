"""Command-line entry point for the kinga assistant."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.orchestration.chat_service import ChatRequest, ChatResult, ChatService
from .ai.tools.reuse_blocks import strip_reuse_blocks
from .documents.artifacts import Artifact, ArtifactVersion, now_ms
from .documents.store import InMemoryDocumentStore
from .services.permissions import ToolPermissions
from .services.settings import Settings, SettingsStore, redact_settings
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)

_CLI_CONVERSATION_ID = "cli"
_CLI_DOCUMENT_ID = "cli-document"


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, console=debug, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except OSError as exc:  # pragma: no cover - depends on filesystem
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `kinga` console script."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    debug = _env_flag("KINGA_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("KINGA_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return 0

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    if args.command != "ask":
        parser.print_help()
        return 1

    try:
        document = _read_document(args.document)
    except (OSError, ValueError) as exc:
        print(f"Cannot read document: {exc}", file=sys.stderr)
        return 2

    request = ChatRequest(
        message=args.message,
        history=_read_history(args.history),
        permissions=ToolPermissions.allow(_split_csv(args.allow)),
        document_context=document[1] if document else None,
        current_artifact_id=_CLI_DOCUMENT_ID if document else None,
        current_artifact_title=document[0] if document else None,
        conversation_id=_CLI_CONVERSATION_ID,
    )
    result = asyncio.run(_ask(settings, request, document))
    _print_result(result, as_json=args.json)
    return 0 if result.ok else 1


async def _ask(settings: Settings, request: ChatRequest, document: tuple[str, str] | None) -> ChatResult:
    store = InMemoryDocumentStore()
    artifacts = []
    if document is not None:
        timestamp = now_ms()
        artifact = Artifact(
            id=_CLI_DOCUMENT_ID,
            title=document[0],
            type="document",
            created_at=timestamp,
            updated_at=timestamp,
            versions=(ArtifactVersion(content=document[1], created_at=timestamp),),
        )
        artifacts.append(artifact.to_dict())
    store.create(_CLI_CONVERSATION_ID, {"messages": [], "artifacts": artifacts})

    service = ChatService.from_settings(settings, document_store=store)
    try:
        return await service.handle(request)
    finally:
        await service.aclose()


def _print_result(result: ChatResult, *, as_json: bool, stream: TextIO | None = None) -> None:
    destination = stream or sys.stdout
    if as_json:
        json.dump(result.to_dict(), destination, indent=2, ensure_ascii=False)
        destination.write("\n")
        return
    destination.write(strip_reuse_blocks(result.output) + "\n")
    if result.artifact is not None and result.artifact.current is not None:
        version = result.version_number or result.artifact.version_number
        destination.write(f"\n--- {result.artifact.title or 'Document'} (version {version}) ---\n")
        destination.write(result.artifact.current.content + "\n")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kinga",
        add_help=True,
        description="Run a kinga assistant turn or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.kinga/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    subcommands = parser.add_subparsers(dest="command")
    ask = subcommands.add_parser("ask", help="Send one message and print the reply.")
    ask.add_argument("message", help="The user message.")
    ask.add_argument(
        "--allow",
        metavar="TOOLS",
        default="",
        help="Comma-separated gateway tools the user may call (email_finder,search,crm).",
    )
    ask.add_argument("--document", metavar="FILE", help="Open this text file as the current document.")
    ask.add_argument("--history", metavar="FILE", help="JSON array of prior {role, content} turns.")
    ask.add_argument("--json", action="store_true", help="Print the full result as JSON.")
    return parser


def _split_csv(value: str | None) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


def _read_document(path: str | None) -> tuple[str, str] | None:
    if not path:
        return None
    file_path = Path(path).expanduser()
    return file_path.stem, file_path.read_text(encoding="utf-8")


def _read_history(path: str | None) -> list[Any]:
    if not path:
        return []
    try:
        payload = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Ignoring unreadable history file %s: %s", path, exc)
        return []
    return payload if isinstance(payload, list) else []


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is dict:
        try:
            return json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin is dict:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    ready, reason = settings.gateway_ready()
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.name,
        "gateway_ready": ready,
        "gateway_reason": reason or None,
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": redact_settings(settings), "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("KINGA_"))


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
