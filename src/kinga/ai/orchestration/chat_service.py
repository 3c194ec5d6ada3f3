"""One chat turn end to end: hard-routing, model decision, tool execution."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import httpx

from ...documents.artifacts import (
    Artifact,
    ArtifactVersionStore,
    MergeResult,
    build_new_artifact,
    build_update_artifact,
)
from ...documents.store import DocumentStore
from ...services.permissions import ToolPermissions
from ...services.settings import Settings
from .. import prompts
from ..client import AIClient, ClientSettings
from ..gateway.client import StreamingRPCClient
from ..tools.budget import BudgetConfig, InvocationBudget, get_invocation_budget, wants_retry
from ..tools.catalog import ToolSpec, get_tool_spec, tools_for_permissions
from ..tools.envelope import Card
from ..tools.errors import (
    ConfigurationError,
    ErrorCode,
    MissingParameterError,
    PermissionDeniedError,
    ProviderError,
    ToolError,
)
from ..tools.reuse_blocks import render_ctx, render_tool_json
from ..tools.runners import ToolRunner, ToolRunResult
from .dispatcher import LLMDispatcher, TextReply, ToolCallReply
from .router import CLARIFY_MESSAGE, ToolInvocationRouter, failure_message
from .titles import auto_title_from, crm_title, email_title, search_title

__all__ = ["ChatRequest", "ChatResult", "ChatService"]

LOGGER = logging.getLogger(__name__)

EMPTY_MESSAGE = "Message is required."
GENERIC_FAILURE = "Something went wrong while processing your request. Please try again."
PROVIDER_FAILURE = "I couldn't reach the language model just now. Please try again in a moment."
NOT_CONFIGURED = "The assistant isn't configured yet. Add a model API key and try again."
UNKNOWN_TOOL = "That tool isn't available here yet. Tell me what you need and I'll help directly."
NO_OPEN_DOCUMENT = "I need to know which document is open to update it. Please open a document and try again."
BLANK_UPDATE = "I didn't receive any new content for the document, so I left it unchanged."


@dataclass(slots=True, frozen=True)
class _ExternalToolText:
    label: str
    alternative: str
    clarify: str


_EXTERNAL_TEXT: Mapping[str, _ExternalToolText] = {
    "search": _ExternalToolText(
        label="search tool",
        alternative="I can still summarize what I know, or you can rephrase the query",
        clarify='I need a search query. Try: "Search for <topic>..."',
    ),
    "email_finder": _ExternalToolText(
        label="email lookup tool",
        alternative="I can draft an outreach email instead",
        clarify=CLARIFY_MESSAGE,
    ),
    "crm": _ExternalToolText(
        label="CRM tool",
        alternative="I can present any data that was prepared",
        clarify=(
            "I need CRM details to proceed (contact/company fields, intent, etc.). "
            "Tell me what you want to add/update."
        ),
    ),
}


@dataclass(slots=True)
class ChatRequest:
    """Inputs for one turn."""

    message: str
    history: Sequence[Any] = ()
    permissions: ToolPermissions = field(default_factory=ToolPermissions.deny_all)
    document_context: str | None = None
    current_artifact_id: str | None = None
    current_artifact_title: str | None = None
    conversation_id: str | None = None


@dataclass(slots=True)
class ChatResult:
    """What the caller shows for one turn. Failures are results, not exceptions."""

    output: str | None
    card: Card | None = None
    artifact: Artifact | None = None
    version_number: int | None = None
    suggested_title: str | None = None
    tool: str | None = None
    error_code: str | None = None
    routed: bool = False
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.error_code is None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"output": self.output}
        if self.card is not None:
            payload["card"] = dict(self.card)
        if self.artifact is not None:
            payload["artifact"] = self.artifact.to_dict()
        if self.version_number is not None:
            payload["versionNumber"] = self.version_number
        if self.suggested_title:
            payload["suggestedTitle"] = self.suggested_title
        if self.tool:
            payload["tool"] = self.tool
        if self.error_code:
            payload["error"] = self.error_code
        return payload


class ChatService:
    """Runs a chat turn and converts every failure into a :class:`ChatResult`."""

    def __init__(
        self,
        dispatcher: LLMDispatcher,
        router: ToolInvocationRouter,
        *,
        artifact_store: ArtifactVersionStore | None = None,
        generate_titles: bool = True,
    ) -> None:
        self._dispatcher = dispatcher
        self._router = router
        self._artifacts = artifact_store
        self._generate_titles = generate_titles

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        ai_client: AIClient | None = None,
        http_client: httpx.AsyncClient | None = None,
        document_store: DocumentStore | None = None,
        budget: InvocationBudget | None = None,
        generate_titles: bool = True,
    ) -> "ChatService":
        client = ai_client or AIClient(ClientSettings.from_settings(settings))
        rpc_client = StreamingRPCClient(http_client=http_client, default_timeout=settings.gateway_timeout)
        budget_config = BudgetConfig(
            success_ttl=settings.success_ttl,
            not_found_ttl=settings.not_found_ttl,
            failure_ttl=settings.failure_ttl,
            failure_threshold=settings.failure_threshold,
        )
        router = ToolInvocationRouter(
            ToolRunner(settings, rpc_client=rpc_client),
            budget=budget or get_invocation_budget(budget_config),
            block_repeat_argument=settings.block_repeat_argument,
            failure_threshold=settings.failure_threshold,
        )
        return cls(
            LLMDispatcher(client, history_limit=settings.history_limit),
            router,
            artifact_store=ArtifactVersionStore(document_store) if document_store is not None else None,
            generate_titles=generate_titles,
        )

    async def aclose(self) -> None:
        await self._dispatcher.client.aclose()

    async def handle(self, request: ChatRequest) -> ChatResult:
        if not (request.message or "").strip():
            return ChatResult(output=EMPTY_MESSAGE, suggested_title="New chat", error_code=ErrorCode.MISSING_PARAMETER)
        try:
            return await self._handle(request)
        except ConfigurationError as exc:
            LOGGER.warning("Chat turn aborted, configuration error: %s", exc.reason or exc.message)
            return self._error_result(request, NOT_CONFIGURED, exc.error_code)
        except ProviderError as exc:
            LOGGER.warning("Chat turn failed at the model provider: %s", exc.message)
            return self._error_result(request, PROVIDER_FAILURE, exc.error_code)
        except Exception:
            LOGGER.exception("Unhandled error while processing a chat turn")
            return self._error_result(request, GENERIC_FAILURE, ErrorCode.INTERNAL_ERROR)

    async def _handle(self, request: ChatRequest) -> ChatResult:
        routed = await self._router.route(request.message, request.history, request.permissions)
        if routed.handled:
            return ChatResult(
                output=routed.output,
                card=routed.card,
                suggested_title=routed.suggested_title or auto_title_from(request.message),
                tool=routed.tool,
                error_code=routed.error_code,
                routed=True,
                cached=routed.cached,
            )

        catalog = tools_for_permissions(request.permissions)
        decision = await self._dispatcher.dispatch(
            request.message,
            request.history,
            request.document_context,
            catalog,
        )
        if isinstance(decision, TextReply):
            title = await self._suggest_title(request.message)
            return ChatResult(
                output=decision.content or "",
                suggested_title=title or auto_title_from(request.message or request.current_artifact_title),
            )
        return await self._handle_tool_call(request, decision)

    async def _handle_tool_call(self, request: ChatRequest, call: ToolCallReply) -> ChatResult:
        LOGGER.debug("Model requested tool %s (coerced=%s)", call.tool_name, call.coerced)
        if call.tool_name == "create_document":
            return await self._create_document(request, call.tool_args)
        if call.tool_name == "update_document":
            return await self._update_document(request, call.tool_args)
        spec = get_tool_spec(call.tool_name)
        if spec is None or not spec.external:
            LOGGER.warning("Model requested unknown tool %s", call.tool_name)
            title = await self._suggest_title(request.message)
            return ChatResult(
                output=UNKNOWN_TOOL,
                suggested_title=title or auto_title_from(request.message or request.current_artifact_title),
                tool=call.tool_name,
                error_code=ErrorCode.INTERNAL_ERROR,
            )
        return await self._run_external(request, spec, call.tool_args)

    # ------------------------------------------------------------------
    # Internal document tools
    # ------------------------------------------------------------------

    async def _create_document(self, request: ChatRequest, args: Mapping[str, Any]) -> ChatResult:
        artifact = build_new_artifact(args)
        version_number = artifact.version_number
        saved = await self._save_artifact(request, artifact)
        if saved is not None:
            artifact, version_number = saved
        title = await self._suggest_title(request.message)
        return ChatResult(
            output=f'I\'ve created a document for you: "{artifact.title}"',
            artifact=artifact,
            version_number=version_number,
            suggested_title=title or artifact.title or auto_title_from(request.message),
            tool="create_document",
        )

    async def _update_document(self, request: ChatRequest, args: Mapping[str, Any]) -> ChatResult:
        title = await self._suggest_title(request.message)
        fallback_title = title or request.current_artifact_title or auto_title_from(request.message)
        if not request.current_artifact_id:
            return ChatResult(
                output=NO_OPEN_DOCUMENT,
                suggested_title=fallback_title,
                tool="update_document",
                error_code=ErrorCode.MISSING_PARAMETER,
            )

        incoming = build_update_artifact(request.current_artifact_id, args)
        if incoming.versions[0].is_blank:
            return ChatResult(output=BLANK_UPDATE, suggested_title=fallback_title, tool="update_document")

        saved = await self._save_artifact(request, incoming)
        if saved is None:
            return ChatResult(
                output="I've updated the document for you.",
                artifact=incoming,
                suggested_title=fallback_title,
                tool="update_document",
            )
        artifact, version_number = saved
        return ChatResult(
            output=f"I've updated the document for you (version {version_number}).",
            artifact=artifact,
            version_number=version_number,
            suggested_title=fallback_title,
            tool="update_document",
        )

    async def _save_artifact(self, request: ChatRequest, artifact: Artifact) -> MergeResult | None:
        if self._artifacts is None or not request.conversation_id:
            return None
        return await self._artifacts.save(request.conversation_id, artifact)

    # ------------------------------------------------------------------
    # External gateway tools
    # ------------------------------------------------------------------

    async def _run_external(self, request: ChatRequest, spec: ToolSpec, args: Mapping[str, Any]) -> ChatResult:
        text = _EXTERNAL_TEXT[spec.name]
        if not request.permissions.is_allowed(spec.name):
            denied = PermissionDeniedError(
                message=f"You don't have access to the {spec.display_name} tool.",
                tool_name=spec.name,
            )
            LOGGER.info("Blocked model tool call: %s", denied)
            return ChatResult(output=denied.message, tool=spec.name, error_code=denied.error_code)

        value = _argument_value(spec, args)
        if not value:
            missing = MissingParameterError(message=text.clarify, parameter=spec.required_argument)
            return ChatResult(
                output=missing.message,
                suggested_title=auto_title_from(request.message or request.current_artifact_title),
                tool=spec.name,
                error_code=missing.error_code,
            )

        result = await self._router.invoke(
            spec.name,
            {spec.required_argument or spec.name: value},
            force_retry=wants_retry(request.message),
        )
        if not result.ok:
            title = await self._suggest_title(request.message)
            return ChatResult(
                output=failure_message(result, text.label, text.alternative),
                suggested_title=title or auto_title_from(request.message or request.current_artifact_title),
                tool=spec.name,
                error_code=result.error_code,
            )

        output = await self._synthesize(request, result)
        title = await self._suggest_title(request.message, tool_summary=result.envelope.summary if result.envelope else None)
        return ChatResult(
            output=output,
            card=result.card,
            suggested_title=title or _tool_title(spec.name, result, value),
            tool=spec.name,
            cached=result.cached,
        )

    async def _synthesize(self, request: ChatRequest, result: ToolRunResult) -> str:
        envelope = result.envelope.to_dict() if result.envelope is not None else {}
        summary = (result.envelope.summary if result.envelope is not None else "") or "Here's what I found."
        try:
            reply = await self._dispatcher.complete_text(
                prompts.synthesis_prompt(envelope),
                history=request.history,
                document_context=request.document_context,
            )
        except ToolError as exc:
            LOGGER.warning("Synthesis pass failed for %s, using the envelope summary: %s", result.tool, exc)
            reply = None
        blocks = [render_tool_json(result.tool, envelope)]
        if result.ctx:
            blocks.append(render_ctx(result.tool, result.ctx))
        return "\n".join([reply or summary, *blocks])

    async def _suggest_title(self, message: str, *, tool_summary: str | None = None) -> str | None:
        if not self._generate_titles:
            return None
        try:
            title = await self._dispatcher.complete_text(prompts.title_prompt(message, tool_summary=tool_summary))
        except ToolError as exc:
            LOGGER.debug("Title generation failed: %s", exc)
            return None
        return title.strip()[: prompts.TITLE_MAX_CHARS] if title else None

    def _error_result(self, request: ChatRequest, output: str, error_code: str) -> ChatResult:
        return ChatResult(
            output=output,
            suggested_title=auto_title_from(request.message or request.current_artifact_title),
            error_code=error_code,
        )


def _argument_value(spec: ToolSpec, args: Mapping[str, Any]) -> str:
    raw = args.get(spec.required_argument or "")
    if spec.name == "crm" and isinstance(raw, (Mapping, list)):
        return json.dumps(raw, ensure_ascii=False) if raw else ""
    if raw is None:
        return ""
    return str(raw).strip()


def _tool_title(tool: str, result: ToolRunResult, value: str) -> str:
    if tool == "email_finder":
        return email_title(result.ctx.get("name"), result.ctx.get("company"))
    if tool == "crm":
        data = result.envelope.data if result.envelope is not None else None
        entity = data.get("entity") if isinstance(data, Mapping) else None
        return crm_title(str(entity) if entity else None)
    return search_title(value)
