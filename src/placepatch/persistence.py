"""Scene file codecs for reading and writing places on disk."""

from __future__ import annotations

import copy
import json
import logging
import math
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

from .brick_colors import BRICK_COLOR_PALETTE
from .errors import PlacePatchError
from .graph import ROOT_CLASS, Ref, SceneGraph
from .properties import (
    COLOR3UINT8_TAG,
    FLOAT64_TAG,
    OPAQUE_TAG,
    REF_TAG,
    SCRIPT_CLASSES,
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
    PropertyValue,
    UDim,
    UDim2,
    Vector3,
    decode_property,
    encode_property,
)

logger = logging.getLogger(__name__)

JSON_FORMAT_VERSION = "placepatch/1"


class SceneFormatError(PlacePatchError, ValueError):
    """Raised when a scene file cannot be decoded or encoded."""


class UnsupportedSceneFormatError(PlacePatchError, ValueError):
    """Raised when no codec handles a scene file's suffix."""


class SceneCodec(ABC):
    """Bidirectional codec between a byte stream and a :class:`SceneGraph`."""

    suffixes: Sequence[str] = ()

    @abstractmethod
    def decode(self, stream: BinaryIO) -> SceneGraph:
        """Read a complete place from ``stream``.

        Raises:
            SceneFormatError: If the stream does not hold a valid place.
        """

    @abstractmethod
    def encode(
        self, graph: SceneGraph, stream: BinaryIO, refs: Iterable[Ref] | None = None
    ) -> None:
        """Write ``refs`` (the root's children by default) to ``stream``."""


class _LinkTable:
    """Collects instance links while a file is read and resolves them at the end.

    Links may point forward to instances that have not been read yet, so every
    link is stored unset first and filled in once all referents are known.
    """

    def __init__(self) -> None:
        self._referents: Dict[str, Ref] = {}
        self._pending: List[Tuple[Ref, str, str]] = []

    def register(self, referent: str | None, ref: Ref) -> None:
        if referent:
            self._referents[referent] = ref

    def defer(self, owner: Ref, property_name: str, referent: str) -> None:
        self._pending.append((owner, property_name, referent))

    def resolve(self, graph: SceneGraph) -> None:
        for owner, property_name, referent in self._pending:
            target = self._referents.get(referent)
            if target is None and referent not in ("", "null"):
                logger.debug(
                    "Link %s points at unknown referent %s", property_name, referent
                )
            graph.get(owner).properties[property_name] = InstanceLink(target)


def _link_target(graph: SceneGraph, link: InstanceLink) -> Ref | None:
    if link.target is None or link.target not in graph:
        return None
    return link.target


class JsonSceneCodec(SceneCodec):
    """Persist places as nested JSON objects using the patch property encoding."""

    suffixes = (".json",)

    def decode(self, stream: BinaryIO) -> SceneGraph:
        try:
            payload = json.loads(stream.read().decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise SceneFormatError(f"Scene file is not valid JSON: {exc}") from exc

        if not isinstance(payload, dict):
            raise SceneFormatError("Invalid scene payload: expected a JSON object")
        root_payload = payload.get("root")
        if not isinstance(root_payload, dict):
            raise SceneFormatError("Invalid scene payload: missing root")

        graph = SceneGraph(
            root_class=str(root_payload.get("class", ROOT_CLASS)),
            root_name=_optional_str(root_payload.get("name")),
        )
        links = _LinkTable()
        properties, link_keys = _properties_from_payload(
            root_payload.get("properties", {}), "root"
        )
        graph.root.properties.update(properties)
        links.register(_optional_str(root_payload.get("referent")), graph.root_ref)
        for property_name, key in link_keys.items():
            links.defer(graph.root_ref, property_name, key)
        for child in _children_payload(root_payload, "root"):
            self._decode_instance(graph, graph.root_ref, child, links)
        links.resolve(graph)
        return graph

    def encode(
        self, graph: SceneGraph, stream: BinaryIO, refs: Iterable[Ref] | None = None
    ) -> None:
        top_level = graph.root.children if refs is None else tuple(refs)
        root = graph.root
        payload = {
            "format": JSON_FORMAT_VERSION,
            "root": {
                "class": root.class_name,
                "name": root.name,
                "referent": str(root.ref.value),
                "properties": _properties_to_payload(graph, root.properties),
                "children": [self._encode_instance(graph, ref) for ref in top_level],
            },
        }
        stream.write(json.dumps(payload, indent=2).encode("utf-8"))

    def _decode_instance(
        self, graph: SceneGraph, parent: Ref, payload: Any, links: _LinkTable
    ) -> None:
        if not isinstance(payload, dict):
            raise SceneFormatError("Invalid scene payload: instances must be objects")
        class_name = payload.get("class")
        name = payload.get("name")
        if not isinstance(class_name, str) or not isinstance(name, str):
            raise SceneFormatError("Instance entries must include string 'class' and 'name'")

        properties, link_keys = _properties_from_payload(payload.get("properties", {}), name)
        ref = graph.insert(parent, class_name=class_name, name=name, properties=properties)
        links.register(_optional_str(payload.get("referent")), ref)
        for property_name, key in link_keys.items():
            links.defer(ref, property_name, key)
        for child in _children_payload(payload, name):
            self._decode_instance(graph, ref, child, links)

    def _encode_instance(self, graph: SceneGraph, ref: Ref) -> Dict[str, Any]:
        instance = graph.get(ref)
        return {
            "class": instance.class_name,
            "name": instance.name,
            "referent": str(ref.value),
            "properties": _properties_to_payload(graph, instance.properties),
            "children": [self._encode_instance(graph, child) for child in instance.children],
        }


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _children_payload(payload: Mapping[str, Any], owner: str) -> list:
    children = payload.get("children", [])
    if not isinstance(children, list):
        raise SceneFormatError(f"Invalid scene payload: children of '{owner}' must be a list")
    return children


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _decode_stored_property(type_tag: str, value: Any) -> PropertyValue | None:
    """Decode a property written by :func:`encode_property` into a scene file."""

    if type_tag == FLOAT64_TAG:
        if not _is_number(value):
            raise PropertyDecodeError(type_tag, "Float64 must be a numeric value")
        return Float64(value)
    if type_tag == COLOR3UINT8_TAG:
        if not isinstance(value, list) or len(value) != 3 or not all(map(_is_number, value)):
            raise PropertyDecodeError(type_tag, "Color3uint8 must be 3 numbers")
        return Color3uint8(*value)
    if type_tag == OPAQUE_TAG:
        if (
            not isinstance(value, dict)
            or not isinstance(value.get("kind"), str)
            or not isinstance(value.get("payload"), str)
        ):
            raise PropertyDecodeError(type_tag, "Opaque values need string kind and payload")
        return OpaqueProperty(kind=value["kind"], payload=value["payload"])
    return decode_property(type_tag, value)


def _properties_from_payload(
    payload: Any, owner: str
) -> Tuple[Dict[str, PropertyValue], Dict[str, str]]:
    """Decode a properties object, returning the values and the pending link keys."""

    if not isinstance(payload, dict):
        raise SceneFormatError(f"Invalid scene payload: properties of '{owner}' must be an object")

    properties: Dict[str, PropertyValue] = {}
    link_keys: Dict[str, str] = {}
    for name, entry in payload.items():
        if not isinstance(entry, dict) or "type" not in entry:
            raise SceneFormatError(f"Property '{owner}.{name}' must include a 'type'")
        type_tag = str(entry["type"])
        if type_tag == REF_TAG:
            properties[name] = InstanceLink()
            target = entry.get("value")
            if target is not None:
                link_keys[name] = str(target)
            continue
        try:
            value = _decode_stored_property(type_tag, entry.get("value"))
        except PropertyDecodeError as exc:
            raise SceneFormatError(f"Property '{owner}.{name}' is invalid: {exc}") from exc
        if value is not None:
            properties[name] = value
    return properties, link_keys


def _properties_to_payload(
    graph: SceneGraph, properties: Mapping[str, PropertyValue]
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    for name, value in properties.items():
        if isinstance(value, InstanceLink):
            target = _link_target(graph, value)
            payload[name] = {
                "type": REF_TAG,
                "value": None if target is None else str(target.value),
            }
            continue
        type_tag, encoded = encode_property(value)
        payload[name] = {"type": type_tag, "value": encoded}
    return payload


_CFRAME_COMPONENTS = (
    "X", "Y", "Z",
    "R00", "R01", "R02",
    "R10", "R11", "R12",
    "R20", "R21", "R22",
)

# Document level elements other than items are kept on the root instance.
_DOCUMENT_ENTRY_PREFIX = "xml:"
_DOCUMENT_HEADER_KINDS = frozenset({"Meta"})


class RbxlxSceneCodec(SceneCodec):
    """Read and write the XML place format.

    Property kinds that have a typed counterpart are decoded into it and
    written back under the tag they were read from. Every other property
    element, and every document level element besides items, is kept
    verbatim as an :class:`OpaqueProperty` so a round trip preserves it.
    ``Ref`` properties become :class:`InstanceLink` values and follow their
    target when referents are renumbered on write.
    """

    suffixes = (".rbxlx", ".rbxmx")

    def decode(self, stream: BinaryIO) -> SceneGraph:
        try:
            document = ET.parse(stream)
        except ET.ParseError as exc:
            raise SceneFormatError(f"Scene file is not valid XML: {exc}") from exc

        element = document.getroot()
        if element.tag != "roblox":
            raise SceneFormatError(f"Expected a <roblox> document, found <{element.tag}>")

        graph = SceneGraph()
        links = _LinkTable()
        for index, child in enumerate(element):
            if child.tag == "Item":
                self._decode_item(graph, graph.root_ref, child, links)
            elif child.tag != "External":
                key = f"{_DOCUMENT_ENTRY_PREFIX}{index}"
                graph.root.properties[key] = _opaque_element(child)
        links.resolve(graph)
        return graph

    def encode(
        self, graph: SceneGraph, stream: BinaryIO, refs: Iterable[Ref] | None = None
    ) -> None:
        top_level = graph.root.children if refs is None else tuple(refs)
        document = ET.Element(
            "roblox",
            {
                "xmlns:xmime": "http://www.w3.org/2005/05/xmlmime",
                "xmlns:xsi": "http://www.w3.org/2001/XMLSchema-instance",
                "xsi:noNamespaceSchemaLocation": "http://www.roblox.com/roblox.xsd",
                "version": "4",
            },
        )
        entries = [
            value
            for key, value in graph.root.properties.items()
            if key.startswith(_DOCUMENT_ENTRY_PREFIX) and isinstance(value, OpaqueProperty)
        ]
        for entry in entries:
            if entry.kind in _DOCUMENT_HEADER_KINDS:
                document.append(_element_from_opaque(entry))
        ET.SubElement(document, "External").text = "null"
        ET.SubElement(document, "External").text = "nil"
        for ref in top_level:
            document.append(self._encode_item(graph, ref))
        for entry in entries:
            if entry.kind not in _DOCUMENT_HEADER_KINDS:
                document.append(_element_from_opaque(entry))

        tree = ET.ElementTree(document)
        ET.indent(tree)
        tree.write(stream, encoding="utf-8", xml_declaration=False)

    def _decode_item(
        self, graph: SceneGraph, parent: Ref, item: ET.Element, links: _LinkTable
    ) -> None:
        class_name = item.get("class")
        if class_name is None:
            raise SceneFormatError("<Item> element is missing its class attribute")

        name = class_name
        properties: Dict[str, PropertyValue] = {}
        link_keys: Dict[str, str] = {}
        container = item.find("Properties")
        if container is not None:
            for element in container:
                property_name = element.get("name")
                if property_name is None:
                    continue
                if property_name == "Name" and element.tag == "string":
                    name = element.text or ""
                    continue
                if element.tag == "Ref":
                    properties[property_name] = InstanceLink()
                    link_keys[property_name] = (element.text or "").strip()
                    continue
                value = _read_xml_property(element, class_name)
                if value is None:
                    logger.debug(
                        "Keeping %s.%s of kind <%s> verbatim",
                        class_name,
                        property_name,
                        element.tag,
                    )
                    value = _opaque_element(element)
                properties[property_name] = value

        ref = graph.insert(parent, class_name=class_name, name=name, properties=properties)
        links.register(item.get("referent"), ref)
        for property_name, key in link_keys.items():
            links.defer(ref, property_name, key)
        for child in item.findall("Item"):
            self._decode_item(graph, ref, child, links)

    def _encode_item(self, graph: SceneGraph, ref: Ref) -> ET.Element:
        instance = graph.get(ref)
        item = ET.Element("Item", {"class": instance.class_name, "referent": _referent(ref)})
        container = ET.SubElement(item, "Properties")
        _text_element(container, "string", "Name", instance.name)
        for property_name, value in instance.properties.items():
            if isinstance(value, InstanceLink):
                target = _link_target(graph, value)
                _text_element(
                    container, "Ref", property_name, "null" if target is None else _referent(target)
                )
                continue
            _write_xml_property(
                container,
                property_name,
                value,
                protected=property_name == "Source" and instance.class_name in SCRIPT_CLASSES,
            )
        for child in instance.children:
            item.append(self._encode_item(graph, child))
        return item


def _referent(ref: Ref) -> str:
    return f"RBX{ref.value:032X}"


def _opaque_element(element: ET.Element) -> OpaqueProperty:
    detached = copy.deepcopy(element)
    detached.tail = None
    return OpaqueProperty(kind=element.tag, payload=ET.tostring(detached, encoding="unicode"))


def _element_from_opaque(value: OpaqueProperty) -> ET.Element:
    try:
        return ET.fromstring(value.payload)
    except ET.ParseError as exc:
        raise SceneFormatError(
            f"Stored <{value.kind}> value is not valid XML: {exc}"
        ) from exc


def _parse_float(text: str | None) -> float:
    if text is None or not text.strip():
        return 0.0
    try:
        return float(text)
    except ValueError as exc:
        raise SceneFormatError(f"Invalid number '{text}'") from exc


def _parse_int(text: str | None) -> int:
    if text is None or not text.strip():
        return 0
    try:
        return int(text.strip())
    except ValueError as exc:
        raise SceneFormatError(f"Invalid integer '{text}'") from exc


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NAN"
    if math.isinf(value):
        return "INF" if value > 0 else "-INF"
    return repr(value)


def _child_floats(element: ET.Element, names: Sequence[str]) -> list[float]:
    return [_parse_float(element.findtext(name)) for name in names]


def _read_vector3(element: ET.Element) -> Vector3:
    return Vector3(*_child_floats(element, ("X", "Y", "Z")))


def _read_cframe(element: ET.Element) -> CFrame:
    values = _child_floats(element, _CFRAME_COMPONENTS)
    return CFrame(
        position=Vector3(*values[0:3]),
        orientation=Matrix3(
            Vector3(*values[3:6]), Vector3(*values[6:9]), Vector3(*values[9:12])
        ),
    )


def _read_color3(element: ET.Element) -> Color3:
    return Color3(*_child_floats(element, ("R", "G", "B")))


def _read_udim2(element: ET.Element) -> UDim2:
    return UDim2(
        UDim(_parse_float(element.findtext("XS")), _parse_int(element.findtext("XO"))),
        UDim(_parse_float(element.findtext("YS")), _parse_int(element.findtext("YO"))),
    )


def _read_int(element: ET.Element) -> PropertyValue:
    number = _parse_int(element.text)
    # Part.BrickColor is stored as a plain int in the XML format.
    if element.get("name") == "BrickColor" and number in BRICK_COLOR_PALETTE:
        return BrickColor(number)
    return Int32(number)


def _read_bool(element: ET.Element) -> bool:
    return (element.text or "").strip().lower() == "true"


_XML_READERS: Mapping[str, Callable[[ET.Element], PropertyValue]] = {
    "string": lambda element: element.text or "",
    "bool": _read_bool,
    "float": lambda element: Float32(_parse_float(element.text)),
    "double": lambda element: Float64(_parse_float(element.text)),
    "int": _read_int,
    "token": lambda element: EnumValue(_parse_int(element.text)),
    "Vector3": _read_vector3,
    "CoordinateFrame": _read_cframe,
    "Color3": _read_color3,
    "Color3uint8": lambda element: Color3uint8.from_packed(_parse_int(element.text)),
    "UDim2": _read_udim2,
}


def _read_xml_property(element: ET.Element, class_name: str) -> PropertyValue | None:
    """Decode ``element`` or return ``None`` when it should be kept verbatim."""

    if element.tag == "ProtectedString":
        # Only script sources are written back as protected strings.
        if element.get("name") == "Source" and class_name in SCRIPT_CLASSES:
            return element.text or ""
        return None
    reader = _XML_READERS.get(element.tag)
    if reader is None:
        return None
    try:
        return reader(element)
    except ValueError as exc:
        if isinstance(exc, SceneFormatError):
            raise
        raise SceneFormatError(
            f"Property '{element.get('name')}' is invalid: {exc}"
        ) from exc


def _text_element(parent: ET.Element, tag: str, name: str, text: str) -> ET.Element:
    element = ET.SubElement(parent, tag, {"name": name})
    element.text = text
    return element


def _component_elements(parent: ET.Element, names: Sequence[str], values: Sequence[float]) -> None:
    for name, value in zip(names, values):
        ET.SubElement(parent, name).text = _format_float(value)


def _write_xml_property(
    container: ET.Element, name: str, value: PropertyValue, *, protected: bool
) -> None:
    if isinstance(value, bool):
        _text_element(container, "bool", name, "true" if value else "false")
    elif isinstance(value, str):
        _text_element(container, "ProtectedString" if protected else "string", name, value)
    elif isinstance(value, Float64):
        _text_element(container, "double", name, _format_float(value.value))
    elif isinstance(value, Float32):
        _text_element(container, "float", name, _format_float(value.value))
    elif isinstance(value, Int32):
        _text_element(container, "int", name, str(value.value))
    elif isinstance(value, BrickColor):
        _text_element(container, "int", name, str(value.number))
    elif isinstance(value, EnumValue):
        _text_element(container, "token", name, str(value.value))
    elif isinstance(value, Vector3):
        element = ET.SubElement(container, "Vector3", {"name": name})
        _component_elements(element, ("X", "Y", "Z"), value.as_list())
    elif isinstance(value, CFrame):
        element = ET.SubElement(container, "CoordinateFrame", {"name": name})
        _component_elements(
            element,
            _CFRAME_COMPONENTS,
            [*value.position.as_list(), *value.orientation.as_list()],
        )
    elif isinstance(value, Color3uint8):
        _text_element(container, "Color3uint8", name, str(value.packed))
    elif isinstance(value, Color3):
        element = ET.SubElement(container, "Color3", {"name": name})
        _component_elements(element, ("R", "G", "B"), value.as_list())
    elif isinstance(value, UDim2):
        element = ET.SubElement(container, "UDim2", {"name": name})
        ET.SubElement(element, "XS").text = _format_float(value.x.scale)
        ET.SubElement(element, "XO").text = str(value.x.offset)
        ET.SubElement(element, "YS").text = _format_float(value.y.scale)
        ET.SubElement(element, "YO").text = str(value.y.offset)
    elif isinstance(value, OpaqueProperty):
        element = _element_from_opaque(value)
        element.set("name", name)
        container.append(element)
    else:
        raise TypeError(f"Unsupported property value {type(value)!r}")


_CODECS: Sequence[SceneCodec] = (RbxlxSceneCodec(), JsonSceneCodec())


def codec_for_path(path: Path) -> SceneCodec:
    """Return the codec registered for ``path``'s suffix.

    Raises:
        UnsupportedSceneFormatError: If no codec handles the suffix.
    """

    suffix = path.suffix.lower()
    for codec in _CODECS:
        if suffix in codec.suffixes:
            return codec
    raise UnsupportedSceneFormatError(
        f"Unsupported scene file '{path}': expected one of "
        + ", ".join(sorted(suffix for codec in _CODECS for suffix in codec.suffixes))
    )


def load_place(path: Path | str) -> SceneGraph:
    """Decode the place stored at ``path``."""

    place_path = Path(path)
    codec = codec_for_path(place_path)
    with place_path.open("rb") as handle:
        return codec.decode(handle)


def save_place(path: Path | str, graph: SceneGraph) -> None:
    """Encode ``graph`` to ``path``, replacing any existing file.

    The place is written to a sibling temporary file first, so a failure
    while encoding leaves the existing file untouched.
    """

    place_path = Path(path)
    codec = codec_for_path(place_path)
    temporary = place_path.with_suffix(place_path.suffix + ".tmp")
    try:
        with temporary.open("wb") as handle:
            codec.encode(graph, handle)
        temporary.replace(place_path)
    finally:
        temporary.unlink(missing_ok=True)


__all__ = [
    "JSON_FORMAT_VERSION",
    "JsonSceneCodec",
    "RbxlxSceneCodec",
    "SceneCodec",
    "SceneFormatError",
    "UnsupportedSceneFormatError",
    "codec_for_path",
    "load_place",
    "save_place",
]
