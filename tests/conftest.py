from __future__ import annotations

import io
import json
import os
import struct
import sys
import zlib
from pathlib import Path

import pytest
from nbtlib import Byte, Compound, File, Int, List, Long, LongArray, String

ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = Path(__file__).resolve().parent / "data"
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bedrock import RuntimeRegistry  # noqa: E402
from biomes import BiomeTable  # noqa: E402
from block_states import StateTable  # noqa: E402
from translator import ChunkTranslator  # noqa: E402

BLOCK_MAPPING = {
    "minecraft:air": {"bedrock_identifier": "minecraft:air", "bedrock_states": {}},
    "minecraft:stone": "minecraft:stone",
    "minecraft:dirt": {"bedrock_identifier": "minecraft:dirt", "bedrock_states": {"dirt_type": "normal"}},
    "minecraft:oak_log[axis=y]": {
        "bedrock_identifier": "minecraft:oak_log",
        "bedrock_states": {"pillar_axis": "y"},
    },
    "minecraft:oak_stairs[facing=north,half=bottom,waterlogged=true]": {
        "bedrock_identifier": "minecraft:oak_stairs",
        "bedrock_states": {"upside_down_bit": False, "weirdo_direction": 3.0},
    },
    "minecraft:seagrass": {"bedrock_identifier": "minecraft:seagrass", "bedrock_states": {}},
    "minecraft:water[level=0]": {
        "bedrock_identifier": "minecraft:water",
        "bedrock_states": {"liquid_depth": 0},
    },
    "minecraft:mystery_block": None,
}

BIOME_MAPPING = {
    "minecraft:ocean": {"bedrock_id": 0},
    "minecraft:plains": {"bedrock_id": 1},
    "minecraft:desert": {"bedrock_id": 2},
    "minecraft:forest": 4,
    "minecraft:unmapped_biome": {"bedrock_id": None},
}


def pack_words(values, bits):
    """Pack entries the way chunk sections store them (no spanning)."""
    per_word = 64 // bits
    words = []
    for start in range(0, len(values), per_word):
        word = 0
        for slot, value in enumerate(values[start : start + per_word]):
            word |= value << (slot * bits)
        words.append(word)
    return words


def to_signed(words):
    return [w - (1 << 64) if w >= (1 << 63) else w for w in words]


def pack_spanning_words(values, bits):
    """Pack entries back to back across word boundaries (before 1.16)."""
    total = 0
    for i, value in enumerate(values):
        total |= value << (i * bits)
    count = (len(values) * bits + 63) // 64
    return [(total >> (64 * i)) & 0xFFFFFFFFFFFFFFFF for i in range(count)]


def nbt_section(y, palette=None, data=None, biomes=None, biome_data=None):
    """Build a 1.18-style chunk section compound."""
    section = Compound({"Y": Byte(y)})
    if palette is not None:
        entries = []
        for entry in palette:
            name, properties = entry if isinstance(entry, tuple) else (entry, None)
            state = Compound({"Name": String(name)})
            if properties:
                state["Properties"] = Compound(
                    {k: String(v) for k, v in properties.items()}
                )
            entries.append(state)
        block_states = Compound({"palette": List[Compound](entries)})
        if data is not None:
            block_states["data"] = LongArray(to_signed(data))
        section["block_states"] = block_states
    if biomes is not None:
        biome_compound = Compound({"palette": List[String]([String(b) for b in biomes])})
        if biome_data is not None:
            biome_compound["data"] = LongArray(to_signed(biome_data))
        section["biomes"] = biome_compound
    return section


def nbt_chunk(x, z, sections=(), status="minecraft:full"):
    root = Compound(
        {
            "xPos": Int(x),
            "zPos": Int(z),
            "yPos": Int(-4),
            "Status": String(status),
        }
    )
    if sections:
        root["sections"] = List[Compound](list(sections))
    return root


def nbt_bytes(root):
    buffer = io.BytesIO()
    File(root).write(buffer)
    return buffer.getvalue()


def write_region(path, chunks):
    """Write an Anvil region file from {index: (compression, payload)}."""
    header = bytearray(2 * 4096)
    body = bytearray()
    sector = 2
    for index, (compression, payload) in sorted(chunks.items()):
        record = struct.pack(">IB", len(payload) + 1, compression) + payload
        sectors = (len(record) + 4095) // 4096
        record += b"\x00" * (sectors * 4096 - len(record))
        struct.pack_into(">I", header, index * 4, (sector << 8) | sectors)
        body += record
        sector += sectors
    with open(path, "wb") as f:
        f.write(bytes(header) + bytes(body))


def zlib_chunk(root):
    return 2, zlib.compress(nbt_bytes(root))


def write_level(world_dir, name="Test World", spawn=(10, 70, -5), day_time=6000):
    data = Compound(
        {
            "LevelName": String(name),
            "DayTime": Long(day_time),
            "SpawnX": Int(spawn[0]),
            "SpawnY": Int(spawn[1]),
            "SpawnZ": Int(spawn[2]),
        }
    )
    File({"Data": data}, gzipped=True).save(os.path.join(str(world_dir), "level.dat"))


@pytest.fixture()
def block_table():
    return StateTable.from_mapping(BLOCK_MAPPING)


@pytest.fixture()
def biome_table():
    return BiomeTable.from_mapping(BIOME_MAPPING)


@pytest.fixture()
def registry(block_table):
    return RuntimeRegistry.from_states(block_table.destination_states())


@pytest.fixture()
def translator(block_table, biome_table, registry):
    return ChunkTranslator(block_table, biome_table, registry)


class RecordingSink:
    def __init__(self):
        self.saved = []

    def save_chunk(self, position, chunk, dimension):
        self.saved.append((position, chunk, dimension))


@pytest.fixture()
def sink():
    return RecordingSink()


@pytest.fixture()
def mapping_files(tmp_path):
    blocks = tmp_path / "blocks.json"
    biomes = tmp_path / "biomes.json"
    blocks.write_text(json.dumps(BLOCK_MAPPING), encoding="utf-8")
    biomes.write_text(json.dumps(BIOME_MAPPING), encoding="utf-8")
    return str(blocks), str(biomes)
