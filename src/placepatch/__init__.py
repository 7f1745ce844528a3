"""Core package for applying structured edits to Roblox places."""

from .errors import PlacePatchError
from .properties import (
    BrickColor,
    CFrame,
    Color3,
    Color3uint8,
    EnumValue,
    Float32,
    Float64,
    InstanceLink,
    Int32,
    Matrix3,
    OpaqueProperty,
    PropertyDecodeError,
    PropertyType,
    PropertyValue,
    UDim,
    UDim2,
    Vector3,
    decode_instance_property,
    decode_property,
    encode_property,
)
from .graph import Instance, InvalidReferenceError, Ref, SceneGraph
from .paths import path_of, resolve_path
from .services import ServiceDirectory, provision_services
from .patch import (
    InstanceDescription,
    PatchDocument,
    PatchParseError,
    PropertySpec,
    parse_patch,
)
from .applier import (
    ApplyReport,
    InstanceBuildError,
    PatchApplicationError,
    apply_patch,
)
from .persistence import (
    SceneFormatError,
    UnsupportedSceneFormatError,
    load_place,
    save_place,
)
from .llm import LLMClient, LLMClientError, LLMMessage, LLMResponse, LLMRetryPolicy
from .llm_provider_registry import LLMProviderRegistry, parse_cli_options
from .patch_generator import PatchGenerator, render_outline
from .settings import PlacePatchSettings

__all__ = [
    "PlacePatchError",
    "BrickColor",
    "CFrame",
    "Color3",
    "Color3uint8",
    "EnumValue",
    "Float32",
    "Float64",
    "InstanceLink",
    "Int32",
    "Matrix3",
    "OpaqueProperty",
    "PropertyDecodeError",
    "PropertyType",
    "PropertyValue",
    "UDim",
    "UDim2",
    "Vector3",
    "decode_instance_property",
    "decode_property",
    "encode_property",
    "Instance",
    "InvalidReferenceError",
    "Ref",
    "SceneGraph",
    "path_of",
    "resolve_path",
    "ServiceDirectory",
    "provision_services",
    "InstanceDescription",
    "PatchDocument",
    "PatchParseError",
    "PropertySpec",
    "parse_patch",
    "ApplyReport",
    "InstanceBuildError",
    "PatchApplicationError",
    "apply_patch",
    "SceneFormatError",
    "UnsupportedSceneFormatError",
    "load_place",
    "save_place",
    "LLMClient",
    "LLMClientError",
    "LLMMessage",
    "LLMResponse",
    "LLMRetryPolicy",
    "LLMProviderRegistry",
    "parse_cli_options",
    "PatchGenerator",
    "render_outline",
    "PlacePatchSettings",
]
