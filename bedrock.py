import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Tuple

from block_states import BlockState
from errors import MappingGap, MappingLoadError, UsageError
from state_grid import SUB_CHUNK_GRID, CompactStateGrid

AIR = BlockState("minecraft:air")
WATER = BlockState("minecraft:water", {"liquid_depth": 0})


class Dimension(IntEnum):
    OVERWORLD = 0
    NETHER = 1
    END = 2

    @property
    def y_range(self):
        return DIMENSION_RANGES[self]

    @property
    def region_folder(self):
        return DIMENSION_FOLDERS[self]


DIMENSION_RANGES = {
    Dimension.OVERWORLD: (-64, 319),
    Dimension.NETHER: (0, 127),
    Dimension.END: (0, 255),
}

DIMENSION_FOLDERS = {
    Dimension.OVERWORLD: "region",
    Dimension.NETHER: "DIM-1/region",
    Dimension.END: "DIM1/region",
}


@dataclass
class WorldSettings:
    name: str = "World"
    time: int = 0
    spawn: Tuple[int, int, int] = field(default=(0, 64, 0))


class RuntimeRegistry:
    """Destination states and the runtime ids the destination knows them by."""

    def __init__(self, states):
        self._states = []
        self._ids = {}
        for state in states:
            if state not in self._ids:
                self._ids[state] = len(self._states)
                self._states.append(state)
        if not self._states:
            raise MappingLoadError("runtime registry is empty")

    @classmethod
    def from_states(cls, states):
        return cls([AIR, WATER] + [s for s in states if s not in (AIR, WATER)])

    def __len__(self):
        return len(self._states)

    def runtime_id(self, state):
        try:
            return self._ids[state]
        except KeyError:
            raise MappingGap(f"no runtime id for {state.text()}") from None


def load_registry(path):
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except ValueError as exc:
            raise MappingLoadError(f"{path}: {exc}") from exc
    if not isinstance(data, list):
        raise MappingLoadError(f"{path}: expected a JSON list of block states")
    states = []
    for entry in data:
        try:
            states.append(BlockState(entry["name"], entry.get("states") or {}))
        except (KeyError, TypeError, UsageError) as exc:
            raise MappingLoadError(f"{path}: invalid registry entry {entry!r}") from exc
    return RuntimeRegistry(states)


class SubChunk:
    def __init__(self, air, default_biome=0, layers=None, biomes=None):
        self.air = air
        self.layers = layers or [CompactStateGrid.filled(SUB_CHUNK_GRID, air)]
        self.biomes = biomes or CompactStateGrid.filled(SUB_CHUNK_GRID, default_biome)

    def layer(self, index):
        while len(self.layers) <= index:
            self.layers.append(CompactStateGrid.filled(SUB_CHUNK_GRID, self.air))
        return self.layers[index]


class Chunk:
    def __init__(self, air, dimension=Dimension.OVERWORLD, default_biome=0):
        self.air = air
        self.dimension = Dimension(dimension)
        self.default_biome = default_biome
        self._sub_chunks = {}

    def _sub_chunk(self, y, create):
        min_y, max_y = self.dimension.y_range
        if y < min_y or y > max_y:
            raise UsageError(
                f"y={y} outside {self.dimension.name.lower()} range {min_y}..{max_y}"
            )
        index = y >> 4
        sub = self._sub_chunks.get(index)
        if sub is None and create:
            sub = self._sub_chunks[index] = SubChunk(self.air, self.default_biome)
        return sub

    def set_runtime_id(self, x, y, z, layer, runtime_id):
        sub = self._sub_chunk(y, True)
        sub.layer(layer).set(x & 15, y & 15, z & 15, runtime_id)

    def runtime_id(self, x, y, z, layer=0):
        sub = self._sub_chunk(y, False)
        if sub is None or layer >= len(sub.layers):
            return self.air
        return sub.layers[layer].get(x & 15, y & 15, z & 15)

    def set_biome(self, x, y, z, biome_id):
        sub = self._sub_chunk(y, True)
        sub.biomes.set(x & 15, y & 15, z & 15, biome_id)

    def biome(self, x, y, z):
        sub = self._sub_chunk(y, False)
        if sub is None:
            return self.default_biome
        return sub.biomes.get(x & 15, y & 15, z & 15)

    def put_sub_chunk(self, index, sub):
        self._sub_chunks[index] = sub

    def sub_chunks(self):
        return sorted(self._sub_chunks.items())
