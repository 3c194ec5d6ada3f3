"""Tool catalog exposed to the model.

Internal document tools are always offered. External tools run on the
workflow gateway and are offered only when the user's permission flag for
them is set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ...services.permissions import ToolPermissions

__all__ = [
    "CREATE_DOCUMENT",
    "CRM",
    "EMAIL_FINDER",
    "EXTERNAL_TOOLS",
    "INTERNAL_TOOLS",
    "SEARCH",
    "ToolSpec",
    "UPDATE_DOCUMENT",
    "get_tool_spec",
    "tools_for_permissions",
]


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Function-tool declaration plus the routing facts the chat service needs."""

    name: str
    description: str
    parameters: Mapping[str, Any]
    external: bool = False
    required_argument: str | None = None
    display_name: str = ""

    def to_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters),
            },
        }


def _object_schema(properties: Mapping[str, Any], required: tuple[str, ...]) -> dict[str, Any]:
    return {"type": "object", "properties": dict(properties), "required": list(required)}


CREATE_DOCUMENT = ToolSpec(
    name="create_document",
    description="Create a new document. Always include a concise title and the full content.",
    parameters=_object_schema(
        {"title": {"type": "string"}, "content": {"type": "string"}},
        ("title", "content"),
    ),
    display_name="Create document",
)

UPDATE_DOCUMENT = ToolSpec(
    name="update_document",
    description="Update the currently open document. Return the FULL new content (never a diff).",
    parameters=_object_schema({"content": {"type": "string"}}, ("content",)),
    display_name="Update document",
)

SEARCH = ToolSpec(
    name="search",
    description=(
        "Search the current web and extract facts with citations. Input: agent_query "
        "(a search-style query). Returns structured findings and source links."
    ),
    parameters=_object_schema(
        {"agent_query": {"type": "string", "description": "Web search query/topic."}},
        ("agent_query",),
    ),
    external=True,
    required_argument="agent_query",
    display_name="Search",
)

EMAIL_FINDER = ToolSpec(
    name="email_finder",
    description=(
        "Find a professional email from a LinkedIn /in/ profile URL. "
        "Requires a direct LinkedIn profile URL."
    ),
    parameters=_object_schema(
        {"linkedin_url": {"type": "string", "description": "https://www.linkedin.com/in/..."}},
        ("linkedin_url",),
    ),
    external=True,
    required_argument="linkedin_url",
    display_name="Email Finder",
)

CRM = ToolSpec(
    name="crm",
    description=(
        "Create/update/search contacts/companies in CRM with safe upsert semantics. "
        "Input a crm_handoff_package (stringified JSON)."
    ),
    parameters=_object_schema(
        {
            "crm_handoff_package": {
                "type": "string",
                "description": "Stringified JSON describing the CRM action and fields.",
            }
        },
        ("crm_handoff_package",),
    ),
    external=True,
    required_argument="crm_handoff_package",
    display_name="CRM",
)

INTERNAL_TOOLS: tuple[ToolSpec, ...] = (CREATE_DOCUMENT, UPDATE_DOCUMENT)
EXTERNAL_TOOLS: tuple[ToolSpec, ...] = (SEARCH, EMAIL_FINDER, CRM)
_BY_NAME: dict[str, ToolSpec] = {spec.name: spec for spec in INTERNAL_TOOLS + EXTERNAL_TOOLS}


def get_tool_spec(name: str) -> ToolSpec | None:
    return _BY_NAME.get(name)


def tools_for_permissions(permissions: ToolPermissions | None) -> tuple[ToolSpec, ...]:
    """Internal tools plus the external tools the user may call."""

    allowed = [spec for spec in EXTERNAL_TOOLS if permissions is not None and permissions.is_allowed(spec.name)]
    return INTERNAL_TOOLS + tuple(allowed)
