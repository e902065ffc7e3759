"""Boundary model for fetched API descriptions.

Only the parts the indexer consumes are modelled: the version marker,
``info``, ``servers``, ``paths`` and the schema containers. Anything that does
not carry an ``openapi`` or ``swagger`` marker, or whose consumed sections
have the wrong shape, is rejected with ``INVALID_DOCUMENT``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from apidex.errors import ApidexError, ErrorCode

HTTP_METHODS: tuple[str, ...] = ("get", "post", "put", "delete", "patch", "options", "head")
SCHEMA_REF_PREFIXES: tuple[str, ...] = ("#/components/schemas/", "#/definitions/")


class ServerEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    description: str | None = None


class DocumentInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = "Untitled API"
    version: str = "unknown"
    description: str | None = None

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int | float) else v


class SchemaComponents(BaseModel):
    model_config = ConfigDict(extra="ignore")

    schemas: dict[str, Any] = {}


class ApiDescription(BaseModel):
    """The consumed subset of an OpenAPI 3.x or Swagger 2.0 document."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    openapi: str | None = None
    swagger: str | None = None
    info: DocumentInfo = DocumentInfo()
    servers: list[ServerEntry] = []
    host: str | None = None  # Swagger 2.0
    base_path: str | None = None  # Swagger 2.0 "basePath"
    schemes: list[str] = []  # Swagger 2.0
    paths: dict[str, dict[str, Any]] = {}
    components: SchemaComponents | None = None
    definitions: dict[str, Any] | None = None  # Swagger 2.0

    @model_validator(mode="before")
    @classmethod
    def _rename_swagger_fields(cls, data: Any) -> Any:
        if isinstance(data, dict) and "basePath" in data:
            data = {**data, "base_path": data["basePath"]}
        return data

    @field_validator("openapi", "swagger", mode="before")
    @classmethod
    def _coerce_marker(cls, v: Any) -> Any:
        # YAML reads "openapi: 3.0" as a float
        return str(v) if isinstance(v, int | float) else v

    @field_validator("paths", mode="before")
    @classmethod
    def _drop_malformed_path_items(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(path): item for path, item in v.items() if isinstance(item, dict)}
        return v

    @model_validator(mode="after")
    def _require_version_marker(self) -> ApiDescription:
        if not self.openapi and not self.swagger:
            raise ValueError("document declares neither 'openapi' nor 'swagger'")
        return self

    @property
    def spec_version(self) -> str:
        return self.openapi or self.swagger or ""

    @property
    def base_url(self) -> str | None:
        if self.servers:
            return self.servers[0].url
        if self.host:
            scheme = self.schemes[0] if self.schemes else "https"
            return f"{scheme}://{self.host}{self.base_path or ''}"
        return None

    @property
    def schemas(self) -> dict[str, Any]:
        if self.components is not None:
            return self.components.schemas
        return self.definitions or {}

    def operations(self) -> list[tuple[str, str, dict[str, Any]]]:
        """Return ``(path, method, operation)`` in document order.

        Non-dict operation values (e.g. path-level ``parameters`` lists) are
        skipped.
        """
        found: list[tuple[str, str, dict[str, Any]]] = []
        for path, item in self.paths.items():
            for method in HTTP_METHODS:
                operation = item.get(method)
                if isinstance(operation, dict):
                    found.append((path, method, operation))
        return found

    def operation(self, path: str, method: str) -> dict[str, Any] | None:
        operation = self.paths.get(path, {}).get(method.lower())
        return operation if isinstance(operation, dict) else None

    def referenced_models(self, operation: dict[str, Any]) -> dict[str, Any]:
        """``{name: schema}`` for every model ``operation`` uses, in discovery order.

        References are followed through the models themselves; a name the
        document never defines maps to ``None``.
        """
        schemas = self.schemas
        models: dict[str, Any] = {}
        pending = schema_refs(operation)
        while pending:
            name = pending.pop(0)
            if name in models:
                continue
            models[name] = schemas.get(name)
            if models[name] is not None:
                pending.extend(ref for ref in schema_refs(models[name]) if ref not in models)
        return models


def parse_api_description(body: Any, *, source_url: str) -> ApiDescription:
    """Validate a parsed document body at the boundary."""
    if not isinstance(body, dict):
        raise ApidexError(
            code=ErrorCode.INVALID_DOCUMENT,
            message=f"Document at {source_url} is not a JSON/YAML object",
            suggestion="Point the session at an OpenAPI or Swagger document URL.",
            recoverable=False,
        )
    try:
        return ApiDescription.model_validate(body)
    except ValidationError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_DOCUMENT,
            message=f"Document at {source_url} is not a valid API description: {exc}",
            suggestion="Point the session at an OpenAPI or Swagger document URL.",
            recoverable=False,
        ) from exc


def schema_refs(node: Any) -> list[str]:
    """Model names referenced anywhere under ``node``, first occurrence first."""
    found: dict[str, None] = {}
    _collect_refs(node, found)
    return list(found)


def _collect_refs(node: Any, found: dict[str, None]) -> None:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            for prefix in SCHEMA_REF_PREFIXES:
                if ref.startswith(prefix):
                    found.setdefault(ref.removeprefix(prefix))
        for value in node.values():
            _collect_refs(value, found)
    elif isinstance(node, list):
        for item in node:
            _collect_refs(item, found)
