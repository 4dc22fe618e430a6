"""Tool and credential-reference registries.

The OAuth flow only needs a narrow slice of the project database: look up a
tool, point it at a credential reference, and find/create/update credential
references. The protocols below describe that slice. The in-memory
implementations back the standalone server and the tests.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import msgspec

from .logging_config import get_logger
from .models import CredentialReference, ProjectScopes, Tool

logger = get_logger("registry")


class ToolRegistry(Protocol):
    async def get_tool_by_id(self, scopes: ProjectScopes, tool_id: str) -> Tool | None:
        ...

    async def update_tool(
        self, scopes: ProjectScopes, tool_id: str, *, credential_reference_id: str
    ) -> Tool | None:
        ...


class CredentialReferenceRegistry(Protocol):
    async def find_credential_reference(
        self, scopes: ProjectScopes, reference_id: str
    ) -> CredentialReference | None:
        ...

    async def create_credential_reference(
        self, reference: CredentialReference
    ) -> CredentialReference:
        ...

    async def update_credential_reference(
        self, reference: CredentialReference
    ) -> CredentialReference:
        ...


class InMemoryToolRegistry:
    """Tools keyed by (tenant_id, project_id, tool_id)."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[tuple[str, str, str], Tool] = {}
        for tool in tools or []:
            self.add(tool)

    @classmethod
    def from_file(cls, path: str | Path) -> "InMemoryToolRegistry":
        """Load tools from a JSON array of tool objects."""
        tools = msgspec.json.decode(Path(path).read_bytes(), type=list[Tool])
        logger.info("Loaded %d tools from %s", len(tools), path)
        return cls(tools)

    def add(self, tool: Tool) -> None:
        self._tools[(tool.tenant_id, tool.project_id, tool.id)] = tool

    async def get_tool_by_id(self, scopes: ProjectScopes, tool_id: str) -> Tool | None:
        return self._tools.get((scopes.tenant_id, scopes.project_id, tool_id))

    async def update_tool(
        self, scopes: ProjectScopes, tool_id: str, *, credential_reference_id: str
    ) -> Tool | None:
        tool = self._tools.get((scopes.tenant_id, scopes.project_id, tool_id))
        if tool is None:
            return None
        tool.credential_reference_id = credential_reference_id
        return tool


class InMemoryCredentialReferenceRegistry:
    """Credential references keyed by (tenant_id, project_id, id)."""

    def __init__(self) -> None:
        self._references: dict[tuple[str, str, str], CredentialReference] = {}

    def __len__(self) -> int:
        return len(self._references)

    @staticmethod
    def _key(reference: CredentialReference) -> tuple[str, str, str]:
        return (reference.tenant_id, reference.project_id, reference.id)

    async def find_credential_reference(
        self, scopes: ProjectScopes, reference_id: str
    ) -> CredentialReference | None:
        return self._references.get((scopes.tenant_id, scopes.project_id, reference_id))

    async def create_credential_reference(
        self, reference: CredentialReference
    ) -> CredentialReference:
        key = self._key(reference)
        if key in self._references:
            raise ValueError(f"Credential reference '{reference.id}' already exists")
        self._references[key] = reference
        return reference

    async def update_credential_reference(
        self, reference: CredentialReference
    ) -> CredentialReference:
        key = self._key(reference)
        if key not in self._references:
            raise KeyError(reference.id)
        self._references[key] = reference
        return reference
