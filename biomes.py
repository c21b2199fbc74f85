import json
from types import MappingProxyType

from errors import MappingLoadError, UnknownState

VOID_BIOME = "minecraft:the_void"
# Bedrock has no void biome.
VOID_FALLBACK = "minecraft:ocean"


def normalize_biome_name(name):
    name = str(name)
    if name == VOID_BIOME:
        return VOID_FALLBACK
    return name


class BiomeTable:
    def __init__(self, entries):
        names = []
        ids = {}
        destinations = {}
        for name, destination in entries:
            if name in ids:
                raise MappingLoadError(f"duplicate source biome {name}")
            ids[name] = len(names)
            names.append(name)
            destinations[name] = destination
        self._names = tuple(names)
        self._ids = MappingProxyType(ids)
        self._destinations = MappingProxyType(destinations)

    @classmethod
    def from_mapping(cls, mapping):
        entries = []
        for name, value in mapping.items():
            if isinstance(value, dict):
                value = value.get("bedrock_id")
            if value is None:
                # known biome without a destination yet
                entries.append((name, None))
                continue
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise MappingLoadError(f"invalid bedrock_id for biome {name}: {value!r}")
            entries.append((name, value))
        return cls(entries)

    def __len__(self):
        return len(self._names)

    def source_biome_to_id(self, name):
        name = normalize_biome_name(name)
        try:
            return self._ids[name]
        except KeyError:
            raise UnknownState(f"unknown biome {name}") from None

    def id_to_source_biome(self, biome_id):
        if 0 <= biome_id < len(self._names):
            return self._names[biome_id]
        raise UnknownState(f"unknown biome id {biome_id}")

    def lookup(self, name):
        return self._destinations.get(normalize_biome_name(name))


def load_biome_table(path):
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except ValueError as exc:
        raise MappingLoadError(f"{path}: {exc}") from exc
    if not isinstance(data, dict):
        raise MappingLoadError(f"{path}: expected a JSON object")
    return BiomeTable.from_mapping(data)
