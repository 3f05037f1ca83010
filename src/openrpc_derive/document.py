"""OpenRPC document model used by generated schema routines.

Generated `gen_schema()` functions build an `OpenrpcDocument` from these
models. JSON schemas of parameter and result types are derived with pydantic.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PydanticUserError, TypeAdapter
from pydantic.errors import PydanticSchemaGenerationError, PydanticUndefinedAnnotation
from pydantic.json_schema import GenerateJsonSchema, JsonSchemaValue

logger = logging.getLogger(__name__)

OPENRPC_VERSION = "1.2.6"
DEFAULT_API_VERSION = "1.0.0"
RESULT_NAME = "result"

# Definitions of nested types are collected in the document components.
REF_TEMPLATE = "#/components/schemas/{model}"
DEFS_KEY = "$defs"

_ARBITRARY_TYPES = ConfigDict(arbitrary_types_allowed=True)


class SignatureJsonSchema(GenerateJsonSchema):
    """JSON schema generator that describes any type of a signature instead of failing.

    Plain classes are only described by their name, other types without a JSON
    representation (e.g. callables) accept any value.
    """

    def is_instance_schema(self, schema: dict[str, Any]) -> JsonSchemaValue:
        return {"title": schema["cls"].__name__}

    def handle_invalid_for_json_schema(self, schema: dict[str, Any], error_info: str) -> JsonSchemaValue:
        logger.debug("No JSON schema for %s, accepting any value.", error_info)
        return {}


def _adapter(type_: Any) -> TypeAdapter[Any]:
    try:
        return TypeAdapter(type_)
    except PydanticSchemaGenerationError:
        # Plain classes, possibly nested in containers or unions.
        return TypeAdapter(type_, config=_ARBITRARY_TYPES)


def type_schema(type_: Any) -> dict[str, Any]:
    """Derive the JSON schema of a Python type.

    Every type has a schema: types pydantic cannot describe fall back to a
    title-only or an empty (accept anything) schema. Definitions of nested
    models are kept under `$defs` and referenced as `#/components/schemas/<name>`,
    see `OpenrpcDocument.add_method`.

    Args:
        type_ (Any): A type, as it may appear in a procedure signature.

    Returns:
        dict[str, Any]: The JSON schema, e.g. `{"type": "integer"}` for `int`.
    """
    try:
        return _adapter(type_).json_schema(ref_template=REF_TEMPLATE, schema_generator=SignatureJsonSchema)
    except (PydanticUserError, PydanticUndefinedAnnotation) as e:
        logger.warning("Cannot derive a JSON schema for %r, accepting any value: %s", type_, e)
        return {}


class _OpenrpcModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ContentDescriptorObject(_OpenrpcModel):
    """Describes a parameter or a result."""

    name: str
    description: str | None = None
    required: bool = True
    schema_: dict[str, Any] = Field(default_factory=dict, alias="schema")

    @classmethod
    def of(cls, name: str, type_: Any = Any, *, required: bool = True) -> ContentDescriptorObject:
        """Describe a value of a Python type.

        Args:
            name (str): The parameter or result name.
            type_ (Any, optional): The Python type. Defaults to Any.
            required (bool, optional): Whether the value must be given. Defaults to True.

        Returns:
            ContentDescriptorObject: The descriptor.
        """
        return cls(name=name, required=required, schema_=type_schema(type_))


class MethodObject(_OpenrpcModel):
    """Describes a single RPC method.

    `requires_metadata` is serialized as the `x-requires-metadata` extension. It
    is a transport concern: the metadata argument is never part of `params`.
    """

    name: str
    description: str | None = None
    params: list[ContentDescriptorObject] = Field(default_factory=list)
    result: ContentDescriptorObject | None = None
    deprecated: bool | None = None
    requires_metadata: bool | None = Field(default=None, alias="x-requires-metadata")


class InfoObject(_OpenrpcModel):
    """Metadata about the API."""

    title: str
    version: str = DEFAULT_API_VERSION
    description: str | None = None


class ComponentsObject(_OpenrpcModel):
    """Reusable definitions, referenced from the schemas of the methods."""

    schemas: dict[str, dict[str, Any]] = Field(default_factory=dict)


class OpenrpcDocument(_OpenrpcModel):
    """The root object of an OpenRPC document."""

    openrpc: str = OPENRPC_VERSION
    info: InfoObject
    methods: list[MethodObject] = Field(default_factory=list)
    components: ComponentsObject | None = None

    @classmethod
    def new(cls, title: str, *, version: str = DEFAULT_API_VERSION, description: str | None = None) -> OpenrpcDocument:
        """Create an empty document.

        Args:
            title (str): The API title.
            version (str, optional): The API version. Defaults to DEFAULT_API_VERSION.
            description (str | None, optional): The API description. Defaults to None.

        Returns:
            OpenrpcDocument: A document without methods.
        """
        return cls(info=InfoObject(title=title, version=version, description=description))

    def add_method(self, method: MethodObject) -> None:
        """Append a method to the document.

        Definitions of nested types (`$defs`) are moved from the method's schemas
        into `components.schemas`, where their references point to.
        """
        descriptors = [*method.params, *([method.result] if method.result is not None else [])]
        for descriptor in descriptors:
            self._collect_definitions(descriptor)
        self.methods.append(method)

    def _collect_definitions(self, descriptor: ContentDescriptorObject) -> None:
        definitions: dict[str, dict[str, Any]] = descriptor.schema_.pop(DEFS_KEY, {})
        if not definitions:
            return

        if self.components is None:
            self.components = ComponentsObject()

        schemas = self.components.schemas
        for name, definition in definitions.items():
            existing = schemas.setdefault(name, definition)
            if existing != definition:
                logger.warning("Conflicting definitions of '%s' in '%s', keeping the first one.", name, descriptor.name)

    def method(self, name: str) -> MethodObject:
        """Look up a method by name.

        Raises:
            KeyError: If there is no method of that name.
        """
        for method in self.methods:
            if method.name == name:
                return method
        raise KeyError(name)

    def to_dict(self) -> dict[str, Any]:
        """The document as a JSON-compatible dictionary, without unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json(self, indent: int | None = 2) -> str:
        """The document as JSON text."""
        return json.dumps(self.to_dict(), indent=indent)
