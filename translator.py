import logging
from collections import namedtuple
from enum import Enum

import nbtlib

from bedrock import AIR, WATER, Chunk, Dimension
from block_states import state_from_nbt
from errors import MalformedInput, MappingGap, SinkError
from state_grid import BIOME_GRID, BLOCK_GRID, CompactStateGrid

LOG = logging.getLogger(__name__)

FULL_STATUS = "full"
# chunk-level biome arrays from before 1.18
COLUMN_BIOMES = 256
CELL_BIOMES_PER_SECTION = 64
MAX_BIOME_ID = 0xFFFF

TranslatedChunk = namedtuple("TranslatedChunk", ["position", "chunk", "block_count"])


class ChunkOutcome(Enum):
    TRANSLATED = "translated"
    SKIPPED = "skipped"


def normalize_status(status):
    status = str(status or "")
    if status.startswith("minecraft:"):
        status = status.split(":", 1)[1]
    return status


class SourceSection:
    def __init__(self, y, block_palette=None, block_data=None, biome_palette=None,
                 biome_data=None):
        self.y = y
        self.block_palette = block_palette
        self.block_data = block_data
        self.biome_palette = biome_palette
        self.biome_data = biome_data

    @classmethod
    def from_nbt(cls, section):
        y = int(section["Y"])
        block_palette, block_data = _palette_and_data(
            section, "block_states", "Palette", "BlockStates"
        )
        biome_palette, biome_data = _palette_and_data(section, "biomes")
        if block_palette is not None:
            block_palette = [state_from_nbt(entry) for entry in block_palette]
        if biome_palette is not None:
            biome_palette = [str(name) for name in biome_palette]
        return cls(y, block_palette, block_data, biome_palette, biome_data)


def _palette_and_data(section, compound_key, palette_key=None, data_key=None):
    container = section.get(compound_key)
    if container is not None:
        palette, data = container.get("palette"), container.get("data")
    elif palette_key is not None:
        palette, data = section.get(palette_key), section.get(data_key)
    else:
        return None, None
    if palette is not None:
        palette = list(palette)
    if data is not None:
        data = [int(value) for value in data]
    return palette, data


def legacy_biomes(raw):
    """Numeric biome ids of a pre-1.18 chunk, or None when there are none."""
    if raw is None:
        return None
    if isinstance(raw, nbtlib.ByteArray):
        values = [int(value) & 0xFF for value in raw]
    else:
        values = [int(value) for value in raw]
    if not values:
        return None
    if len(values) != COLUMN_BIOMES and len(values) % CELL_BIOMES_PER_SECTION:
        raise MalformedInput(f"biome array has unexpected length {len(values)}")
    for value in values:
        if value < 0 or value > MAX_BIOME_ID:
            raise MalformedInput(f"biome id {value} out of range")
    return values


class SourceChunk:
    def __init__(self, x, z, status, y=0, sections=(), biomes=None):
        self.x = x
        self.z = z
        self.y = y
        self.status = status
        self.sections = list(sections)
        self.biomes = biomes

    @property
    def position(self):
        return self.x, self.z

    @classmethod
    def from_nbt(cls, root):
        root = root["Level"] if "Level" in root else root
        try:
            x = int(root["xPos"])
            z = int(root["zPos"])
            y = int(root.get("yPos", 0))
            status = normalize_status(root.get("Status"))
            sections = []
            biomes = None
            if status == FULL_STATUS:
                raw = root.get("sections")
                if raw is None:
                    raw = root.get("Sections", [])
                sections = [SourceSection.from_nbt(section) for section in raw]
                biomes = legacy_biomes(root.get("Biomes"))
        except MalformedInput:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedInput(f"malformed chunk record: {exc!r}") from exc
        return cls(x, z, status, y, sections, biomes)


class ChunkTranslator:
    """Translates Java chunk records into destination chunks.

    The tables and registry are shared and only read; one translator can be
    reused for every chunk of a region.
    """

    def __init__(self, blocks, biomes, registry, dimension=Dimension.OVERWORLD):
        self.blocks = blocks
        self.biomes = biomes
        self.registry = registry
        self.dimension = Dimension(dimension)
        self.block_grid = BLOCK_GRID.with_global_bits(len(blocks))
        self.biome_grid = BIOME_GRID.with_global_bits(len(biomes))
        self.air = registry.runtime_id(AIR)
        self.water = registry.runtime_id(WATER)

    def translate(self, record):
        if normalize_status(record.status) != FULL_STATUS:
            return None

        chunk = Chunk(self.air, self.dimension)
        if record.biomes is not None:
            self._translate_legacy_biomes(chunk, record.biomes)
        min_y, max_y = self.dimension.y_range
        block_count = 0
        for section in record.sections:
            base_y = section.y << 4
            if base_y < min_y or base_y + 15 > max_y:
                LOG.debug(
                    "Chunk %s: section Y=%s outside %s range, skipped",
                    record.position,
                    section.y,
                    self.dimension.name.lower(),
                )
                continue
            if section.block_palette:
                block_count += self._translate_blocks(chunk, section)
            if section.biome_palette:
                self._translate_biomes(chunk, section)
        return TranslatedChunk(record.position, chunk, block_count)

    def convert(self, record, sink):
        translated = self.translate(record)
        if translated is None:
            return ChunkOutcome.SKIPPED, 0
        try:
            sink.save_chunk(translated.position, translated.chunk, self.dimension)
        except SinkError:
            raise
        except Exception as exc:
            raise SinkError(
                f"failed to save chunk {translated.position}: {exc}"
            ) from exc
        return ChunkOutcome.TRANSLATED, translated.block_count

    def _resolve_block(self, state_id):
        state = self.blocks.id_to_source_state(state_id)
        conversion = self.blocks.lookup(state)
        if conversion is None:
            raise MappingGap(f"no destination state for {state.text()}")
        return self.registry.runtime_id(conversion.destination), conversion.waterlogged

    def _translate_blocks(self, chunk, section):
        state_ids = [self.blocks.source_state_to_id(s) for s in section.block_palette]
        grid = CompactStateGrid.from_palette(self.block_grid, state_ids, section.block_data)

        resolved = {}
        base_y = section.y << 4
        count = 0
        for index, state_id in enumerate(grid):
            entry = resolved.get(state_id)
            if entry is None:
                entry = resolved[state_id] = self._resolve_block(state_id)
            runtime_id, waterlogged = entry
            if runtime_id == self.air:
                continue
            x = index & 15
            z = (index >> 4) & 15
            y = base_y + (index >> 8)
            chunk.set_runtime_id(x, y, z, 0, runtime_id)
            if waterlogged:
                chunk.set_runtime_id(x, y, z, 1, self.water)
            count += 1
        return count

    def _resolve_biome(self, biome_id):
        name = self.biomes.id_to_source_biome(biome_id)
        destination = self.biomes.lookup(name)
        if destination is None:
            raise MappingGap(f"no destination biome for {name}")
        return destination

    def _translate_biomes(self, chunk, section):
        biome_ids = [self.biomes.source_biome_to_id(n) for n in section.biome_palette]
        grid = CompactStateGrid.from_palette(self.biome_grid, biome_ids, section.biome_data)

        resolved = {}
        samples = []
        for biome_id in grid:
            destination = resolved.get(biome_id)
            if destination is None:
                destination = resolved[biome_id] = self._resolve_biome(biome_id)
            samples.append(destination)
        _upsample_biomes(chunk, section.y << 4, samples)

    def _translate_legacy_biomes(self, chunk, biomes):
        # pre-1.18 numeric ids are the ones the destination uses
        min_y, max_y = self.dimension.y_range
        if len(biomes) == COLUMN_BIOMES:
            for y in range(min_y, max_y + 1):
                for z in range(16):
                    for x in range(16):
                        chunk.set_biome(x, y, z, biomes[x | z << 4])
            return
        for start in range(0, len(biomes), CELL_BIOMES_PER_SECTION):
            base_y = (start // CELL_BIOMES_PER_SECTION) << 4
            if base_y < min_y or base_y + 15 > max_y:
                continue
            _upsample_biomes(
                chunk, base_y, biomes[start:start + CELL_BIOMES_PER_SECTION]
            )


def _upsample_biomes(chunk, base_y, samples):
    for i, destination in enumerate(samples):
        base_x = (i & 3) << 2
        sample_y = base_y + (((i >> 4) & 3) << 2)
        base_z = ((i >> 2) & 3) << 2
        for y in range(sample_y, sample_y + 4):
            for z in range(base_z, base_z + 4):
                for x in range(base_x, base_x + 4):
                    chunk.set_biome(x, y, z, destination)
