"""Typed property values and the codec that builds them from JSON."""

from __future__ import annotations

import json
import math
import struct
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Sequence, Tuple, Union

from .brick_colors import BRICK_COLOR_PALETTE
from .errors import PlacePatchError

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from .graph import Ref

_FLOAT32_MAX = 3.4028234663852886e38
_INT32_RANGE = 2**32
_UINT32_MAX = 2**32 - 1

SCRIPT_CLASSES = frozenset({"Script", "LocalScript", "ModuleScript"})


class PropertyDecodeError(PlacePatchError, ValueError):
    """Raised when a JSON value does not match the shape of its type tag."""

    def __init__(self, type_tag: str, message: str) -> None:
        super().__init__(f"{type_tag}: {message}")
        self.type_tag = type_tag
        self.message = message


def to_float32(value: float) -> float:
    """Narrow ``value`` to the nearest IEEE single precision float."""

    try:
        number = float(value)
    except OverflowError:
        return math.inf if value > 0 else -math.inf
    if math.isnan(number):
        return number
    if abs(number) > _FLOAT32_MAX:
        return math.copysign(math.inf, number)
    return struct.unpack("<f", struct.pack("<f", number))[0]


def to_int32(value: float) -> int:
    """Truncate ``value`` toward zero and wrap it into the signed 32-bit range."""

    if isinstance(value, int):
        wrapped = value % _INT32_RANGE
    else:
        number = float(value)
        if not math.isfinite(number):
            return 0
        wrapped = int(number) % _INT32_RANGE
    if wrapped >= _INT32_RANGE // 2:
        wrapped -= _INT32_RANGE
    return wrapped


@dataclass(frozen=True)
class Vector3:
    x: float
    y: float
    z: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", to_float32(self.x))
        object.__setattr__(self, "y", to_float32(self.y))
        object.__setattr__(self, "z", to_float32(self.z))

    def as_list(self) -> list[float]:
        return [self.x, self.y, self.z]


@dataclass(frozen=True)
class Matrix3:
    """Row-major 3x3 rotation matrix."""

    x: Vector3
    y: Vector3
    z: Vector3

    @classmethod
    def identity(cls) -> "Matrix3":
        return cls(Vector3(1, 0, 0), Vector3(0, 1, 0), Vector3(0, 0, 1))

    def as_list(self) -> list[float]:
        return [*self.x.as_list(), *self.y.as_list(), *self.z.as_list()]


@dataclass(frozen=True)
class CFrame:
    position: Vector3
    orientation: Matrix3

    @property
    def is_identity_rotation(self) -> bool:
        return self.orientation == Matrix3.identity()


@dataclass(frozen=True)
class Color3:
    r: float
    g: float
    b: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "r", to_float32(self.r))
        object.__setattr__(self, "g", to_float32(self.g))
        object.__setattr__(self, "b", to_float32(self.b))

    def as_list(self) -> list[float]:
        return [self.r, self.g, self.b]


@dataclass(frozen=True)
class BrickColor:
    number: int

    def __post_init__(self) -> None:
        if self.number not in BRICK_COLOR_PALETTE:
            raise ValueError(f"{self.number} is not a known BrickColor number")

    @property
    def name(self) -> str:
        return BRICK_COLOR_PALETTE[self.number]


@dataclass(frozen=True)
class EnumValue:
    """Raw integer value of an engine enum item."""

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _UINT32_MAX:
            raise ValueError("enum values must fit in an unsigned 32-bit integer")


@dataclass(frozen=True)
class UDim:
    scale: float
    offset: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "scale", to_float32(self.scale))
        object.__setattr__(self, "offset", to_int32(self.offset))


@dataclass(frozen=True)
class UDim2:
    x: UDim
    y: UDim

    def as_list(self) -> list[float]:
        return [self.x.scale, self.x.offset, self.y.scale, self.y.offset]


@dataclass(frozen=True)
class Float32:
    """Single precision number property."""

    value: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", to_float32(self.value))


@dataclass(frozen=True)
class Int32:
    """Signed 32-bit integer property."""

    value: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", to_int32(self.value))


@dataclass(frozen=True)
class Color3uint8(Color3):
    """Colour whose channels are stored on disk as packed bytes."""

    @classmethod
    def from_packed(cls, packed: int) -> "Color3uint8":
        return cls(
            ((packed >> 16) & 0xFF) / 255,
            ((packed >> 8) & 0xFF) / 255,
            (packed & 0xFF) / 255,
        )

    @property
    def packed(self) -> int:
        channels = [min(255, max(0, round(channel * 255))) for channel in self.as_list()]
        return 0xFF000000 | (channels[0] << 16) | (channels[1] << 8) | channels[2]


@dataclass(frozen=True)
class Float64(Float32):
    """Double precision number property, read from scene files only."""

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", float(self.value))


@dataclass(frozen=True)
class InstanceLink:
    """Property pointing at another instance of the same graph.

    ``target`` is ``None`` for an unset link. A link whose target has been
    destroyed is written out as unset.
    """

    target: Ref | None = None


@dataclass(frozen=True)
class OpaqueProperty:
    """A stored property of a kind this package does not interpret.

    ``kind`` names the on-disk encoding and ``payload`` holds the value
    verbatim so scene codecs can write it back unchanged.
    """

    kind: str
    payload: str


PropertyValue = Union[
    Vector3,
    CFrame,
    Color3,
    BrickColor,
    EnumValue,
    UDim2,
    Float32,
    Int32,
    InstanceLink,
    OpaqueProperty,
    bool,
    str,
]

# Tags used by scene files for values that patches cannot create.
COLOR3UINT8_TAG = "Color3uint8"
FLOAT64_TAG = "Float64"
REF_TAG = "Ref"
OPAQUE_TAG = "Opaque"


class PropertyType(str, Enum):
    """Type tags understood by :func:`decode_property`."""

    VECTOR3 = "Vector3"
    CFRAME = "CFrame"
    COLOR3 = "Color3"
    BRICK_COLOR = "BrickColor"
    BOOL = "Bool"
    NUMBER = "Number"
    FLOAT = "Float"
    FLOAT32 = "Float32"
    INT = "Int"
    INT32 = "Int32"
    ENUM = "Enum"
    UDIM2 = "UDim2"
    STRING = "String"

    @classmethod
    def lookup(cls, tag: str) -> "PropertyType | None":
        """Return the member for ``tag`` or ``None`` when it is unsupported."""

        try:
            return cls(tag)
        except ValueError:
            return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _component(value: Any) -> float:
    # Non-numeric components read as zero rather than failing the property.
    return to_float32(value) if _is_number(value) else 0.0


def _offset(value: Any) -> int:
    # Offsets are whole pixels and never pass through single precision.
    return to_int32(value) if _is_number(value) else 0


def _is_finite(value: int | float) -> bool:
    return isinstance(value, int) or math.isfinite(value)


def _vector_from_json(value: Any, *, type_tag: str, label: str) -> Vector3:
    if isinstance(value, list):
        if len(value) != 3:
            raise PropertyDecodeError(type_tag, f"{label} must have 3 components")
        return Vector3(*(_component(item) for item in value))
    if isinstance(value, Mapping):
        return Vector3(
            _component(value.get("x")),
            _component(value.get("y")),
            _component(value.get("z")),
        )
    raise PropertyDecodeError(type_tag, f"{label} must be an array or object")


def _decode_vector3(value: Any) -> Vector3:
    return _vector_from_json(value, type_tag="Vector3", label="Vector3")


def _decode_rotation(value: Any) -> Matrix3:
    if not isinstance(value, list) or len(value) != 9:
        # Missing, malformed and three-angle rotations all collapse to identity.
        return Matrix3.identity()
    values = [_component(item) for item in value]
    return Matrix3(
        Vector3(*values[0:3]),
        Vector3(*values[3:6]),
        Vector3(*values[6:9]),
    )


def _decode_cframe(value: Any) -> CFrame:
    if not isinstance(value, Mapping):
        raise PropertyDecodeError(
            "CFrame", "CFrame must be an object with position and rotation"
        )
    if "position" not in value:
        raise PropertyDecodeError("CFrame", "CFrame missing position")
    position = _vector_from_json(
        value["position"], type_tag="CFrame", label="CFrame position"
    )
    return CFrame(position=position, orientation=_decode_rotation(value.get("rotation")))


def _decode_color3(value: Any) -> Color3:
    if not isinstance(value, list):
        raise PropertyDecodeError("Color3", "Color3 must be an array")
    if len(value) != 3:
        raise PropertyDecodeError("Color3", "Color3 must have 3 components")
    return Color3(*(_component(item) for item in value))


def _decode_brick_color(value: Any) -> BrickColor:
    if not _is_number(value):
        raise PropertyDecodeError("BrickColor", "BrickColor must be a number")
    if not _is_finite(value):
        raise PropertyDecodeError("BrickColor", f"Invalid BrickColor number: {value}")
    number = int(value)
    if number != value or number not in BRICK_COLOR_PALETTE:
        raise PropertyDecodeError("BrickColor", f"Invalid BrickColor number: {value}")
    return BrickColor(number)


def _decode_bool(value: Any) -> bool:
    if not isinstance(value, bool):
        raise PropertyDecodeError("Bool", "Bool must be a boolean")
    return value


def _decode_float(value: Any) -> Float32:
    if not _is_number(value):
        raise PropertyDecodeError("Number", "Number must be a numeric value")
    return Float32(value)


def _decode_int(value: Any) -> Int32:
    if not _is_number(value):
        raise PropertyDecodeError("Int", "Int must be a numeric value")
    return Int32(value)


def _decode_enum(value: Any) -> EnumValue:
    if not _is_number(value):
        raise PropertyDecodeError("Enum", "Enum must be a numeric value")
    if not _is_finite(value) or value < 0 or value > _UINT32_MAX:
        raise PropertyDecodeError(
            "Enum", f"Enum must be a non-negative 32-bit integer, got {value}"
        )
    return EnumValue(int(value))


def _decode_udim2(value: Any) -> UDim2:
    if not isinstance(value, list):
        raise PropertyDecodeError("UDim2", "UDim2 must be an array")
    if len(value) != 4:
        raise PropertyDecodeError(
            "UDim2",
            "UDim2 must have 4 components [xScale, xOffset, yScale, yOffset]",
        )
    x_scale, x_offset, y_scale, y_offset = value
    return UDim2(
        UDim(_component(x_scale), _offset(x_offset)),
        UDim(_component(y_scale), _offset(y_offset)),
    )


def _decode_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


_DECODERS: Mapping[PropertyType, Callable[[Any], PropertyValue]] = {
    PropertyType.VECTOR3: _decode_vector3,
    PropertyType.CFRAME: _decode_cframe,
    PropertyType.COLOR3: _decode_color3,
    PropertyType.BRICK_COLOR: _decode_brick_color,
    PropertyType.BOOL: _decode_bool,
    PropertyType.NUMBER: _decode_float,
    PropertyType.FLOAT: _decode_float,
    PropertyType.FLOAT32: _decode_float,
    PropertyType.INT: _decode_int,
    PropertyType.INT32: _decode_int,
    PropertyType.ENUM: _decode_enum,
    PropertyType.UDIM2: _decode_udim2,
    PropertyType.STRING: _decode_string,
}


def decode_property(type_tag: str, value: Any) -> PropertyValue | None:
    """Decode ``value`` according to ``type_tag``.

    Returns ``None`` for tags this codec does not support so callers can drop
    the property without failing the surrounding instance.

    Raises:
        PropertyDecodeError: If ``value`` does not match the shape required by
            a supported ``type_tag``.
    """

    property_type = PropertyType.lookup(type_tag)
    if property_type is None:
        return None
    try:
        return _DECODERS[property_type](value)
    except PropertyDecodeError as exc:
        if exc.type_tag == type_tag:
            raise
        # Aliases such as Float or Int32 report the tag the caller used.
        raise PropertyDecodeError(type_tag, exc.message) from exc


def decode_instance_property(
    class_name: str, property_name: str, type_tag: str, value: Any
) -> PropertyValue | None:
    """Decode a property in the context of the class that will own it.

    Script sources are always stored as text: a string ``Source`` is kept as
    given whatever tag accompanies it.
    """

    if (
        property_name == "Source"
        and class_name in SCRIPT_CLASSES
        and isinstance(value, str)
    ):
        return value
    return decode_property(type_tag, value)


def encode_property(value: PropertyValue) -> Tuple[str, Any]:
    """Return the ``(type tag, JSON value)`` pair describing ``value``.

    Values that only scene files carry use tags :func:`decode_property` does
    not accept, so a patch can never create them.
    """

    if isinstance(value, bool):
        return PropertyType.BOOL.value, value
    if isinstance(value, str):
        return PropertyType.STRING.value, value
    if isinstance(value, Vector3):
        return PropertyType.VECTOR3.value, value.as_list()
    if isinstance(value, CFrame):
        return PropertyType.CFRAME.value, {
            "position": value.position.as_list(),
            "rotation": value.orientation.as_list(),
        }
    if isinstance(value, Color3uint8):
        return COLOR3UINT8_TAG, value.as_list()
    if isinstance(value, Color3):
        return PropertyType.COLOR3.value, value.as_list()
    if isinstance(value, BrickColor):
        return PropertyType.BRICK_COLOR.value, value.number
    if isinstance(value, EnumValue):
        return PropertyType.ENUM.value, value.value
    if isinstance(value, UDim2):
        return PropertyType.UDIM2.value, value.as_list()
    if isinstance(value, Float64):
        return FLOAT64_TAG, value.value
    if isinstance(value, Float32):
        return PropertyType.FLOAT32.value, value.value
    if isinstance(value, Int32):
        return PropertyType.INT32.value, value.value
    if isinstance(value, InstanceLink):
        return REF_TAG, None if value.target is None else value.target.value
    if isinstance(value, OpaqueProperty):
        return OPAQUE_TAG, {"kind": value.kind, "payload": value.payload}
    raise TypeError(f"Unsupported property value {type(value)!r}")


def supported_type_tags() -> Sequence[str]:
    """Return every type tag :func:`decode_property` understands."""

    return [member.value for member in PropertyType]


__all__ = [
    "BrickColor",
    "CFrame",
    "COLOR3UINT8_TAG",
    "Color3",
    "Color3uint8",
    "EnumValue",
    "FLOAT64_TAG",
    "Float32",
    "Float64",
    "InstanceLink",
    "Int32",
    "Matrix3",
    "OPAQUE_TAG",
    "OpaqueProperty",
    "PropertyDecodeError",
    "PropertyType",
    "PropertyValue",
    "REF_TAG",
    "SCRIPT_CLASSES",
    "UDim",
    "UDim2",
    "Vector3",
    "decode_instance_property",
    "decode_property",
    "encode_property",
    "supported_type_tags",
    "to_float32",
    "to_int32",
]
