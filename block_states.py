import json
import re
import struct
from collections import namedtuple
from types import MappingProxyType

from errors import MappingLoadError, UnknownState, UsageError

STATE_TEXT = re.compile(r"^([^\[\]=,]+)(?:\[([^\[\]]*)\])?$")

WATERLOGGED_NAMES = ("minecraft:bubble_column", "minecraft:kelp")

Conversion = namedtuple("Conversion", ["destination", "waterlogged"])


def property_value(value):
    """Convert an untyped property value into bool, int32 or str."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return str(value)
    if isinstance(value, int):
        if not -(1 << 31) <= value < (1 << 31):
            raise UsageError(f"property value {value} does not fit in 32 bits")
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return property_value(int(value))
    raise UsageError(
        f"invalid block property type {type(value).__name__} ({value!r})"
    )


def _encode_value(value):
    if isinstance(value, bool):
        return b"b\x01" if value else b"b\x00"
    if isinstance(value, int):
        return b"i" + struct.pack("<i", value)
    return b"s" + value.encode("utf-8")


class BlockState:
    __slots__ = ("name", "properties", "_key")

    def __init__(self, name, properties=None):
        self.name = str(name)
        self.properties = MappingProxyType(
            {str(k): property_value(v) for k, v in (properties or {}).items()}
        )
        self._key = None

    def key(self):
        if self._key is None:
            self._key = (
                self.name,
                tuple(
                    (k, _encode_value(self.properties[k]))
                    for k in sorted(self.properties)
                ),
            )
        return self._key

    def text(self):
        if not self.properties:
            return self.name
        parts = []
        for key in sorted(self.properties):
            value = self.properties[key]
            if isinstance(value, bool):
                value = "true" if value else "false"
            parts.append(f"{key}={value}")
        return f"{self.name}[{','.join(parts)}]"

    def __eq__(self, other):
        if not isinstance(other, BlockState):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self):
        return hash(self.key())

    def __repr__(self):
        return f"BlockState({self.text()!r})"


def parse_state_text(text):
    match = STATE_TEXT.match(text.strip())
    if not match:
        raise MappingLoadError(f"invalid block state: {text!r}")
    name, body = match.groups()
    properties = {}
    if body:
        for entry in body.split(","):
            key, sep, value = entry.partition("=")
            if not sep or not key:
                raise MappingLoadError(f"invalid block state property in {text!r}")
            properties[key.strip()] = value.strip()
    return BlockState(name.strip(), properties)


def state_from_nbt(entry):
    name = entry.get("Name") or entry.get("name")
    if name is None:
        raise KeyError("Name")
    properties = entry.get("Properties")
    if properties is None:
        properties = entry.get("properties") or {}
    return BlockState(str(name), {str(k): str(v) for k, v in properties.items()})


def _destination_state(value):
    # null marks a known source state with no destination yet
    if value is None:
        return None
    if isinstance(value, str):
        return BlockState(value)
    if isinstance(value, dict):
        name = value.get("bedrock_identifier")
        if not name:
            raise MappingLoadError(f"missing bedrock_identifier in {value!r}")
        return BlockState(name, value.get("bedrock_states") or {})
    raise MappingLoadError(f"unsupported destination entry: {value!r}")


def is_waterlogged(key, state):
    return (
        state.name in WATERLOGGED_NAMES
        or "waterlogged=true" in key
        or "seagrass" in key
    )


class StateTable:
    """Source block states with their dense ids and destination states.

    Dense ids follow the order of the mapping resource. Built once, then
    only read.
    """

    def __init__(self, entries):
        states = []
        ids = {}
        conversions = {}
        for source, destination, waterlogged in entries:
            if source in ids:
                raise MappingLoadError(f"duplicate source state {source.text()}")
            ids[source] = len(states)
            states.append(source)
            if destination is not None:
                conversions[source] = Conversion(destination, bool(waterlogged))
        self._states = tuple(states)
        self._ids = MappingProxyType(ids)
        self._conversions = MappingProxyType(conversions)

    @classmethod
    def from_mapping(cls, mapping):
        entries = []
        for key, value in mapping.items():
            source = parse_state_text(key)
            try:
                destination = _destination_state(value)
            except UsageError as exc:
                raise MappingLoadError(f"{key}: {exc}") from exc
            waterlogged = is_waterlogged(key, source)
            if isinstance(value, dict) and "waterlogged" in value:
                waterlogged = bool(value["waterlogged"])
            entries.append((source, destination, waterlogged))
        return cls(entries)

    def __len__(self):
        return len(self._states)

    def id_to_source_state(self, state_id):
        if 0 <= state_id < len(self._states):
            return self._states[state_id]
        raise UnknownState(f"unknown block state id {state_id}")

    def source_state_to_id(self, state):
        try:
            return self._ids[state]
        except KeyError:
            raise UnknownState(f"unknown block state {state.text()}") from None

    def lookup(self, state):
        return self._conversions.get(state)

    def destination_states(self):
        seen = {}
        for conversion in self._conversions.values():
            seen.setdefault(conversion.destination, None)
        return list(seen)


def load_block_table(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except ValueError as exc:
        raise MappingLoadError(f"{path}: {exc}") from exc
    if not isinstance(data, dict):
        raise MappingLoadError(f"{path}: expected a JSON object")
    return StateTable.from_mapping(data)
