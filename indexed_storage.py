import json
import logging
import os
import struct
from collections import defaultdict

import zstandard as zstd
from bson import BSON, Binary
from bson.errors import InvalidBSON

from bedrock import Chunk, Dimension, SubChunk
from errors import MalformedInput, SinkError
from packed_array import PackedArray
from palette import GlobalPalette, ListPalette, MapPalette, SingletonPalette
from state_grid import SUB_CHUNK_GRID, CompactStateGrid

LOG = logging.getLogger(__name__)

MAGIC = b"ChunkIndexedStorage\x00"
STORAGE_VERSION = 1
BLOB_COUNT = 1024
SEGMENT_SIZE = 4096
HEADER_SIZE = len(MAGIC) + 12
CHUNK_FORMAT_VERSION = 1

PALETTE_TYPES = {
    "singleton": lambda bits, entries: SingletonPalette(entries[0]),
    "list": ListPalette,
    "map": MapPalette,
    "global": lambda bits, entries: GlobalPalette(),
}


def read_region_header(path):
    with open(path, "rb") as f:
        magic = f.read(len(MAGIC))
        if magic != MAGIC:
            raise MalformedInput(f"{path} does not start with the storage magic")
        version, blob_count, segment_size = struct.unpack(">III", f.read(12))
        indexes = list(struct.unpack(">" + "I" * blob_count, f.read(blob_count * 4)))
    return version, blob_count, segment_size, indexes


def read_region_blob(path, start_segment, segment_size, blob_count):
    if start_segment == 0:
        return None
    segments_base = HEADER_SIZE + blob_count * 4
    offset = segments_base + (start_segment - 1) * segment_size
    with open(path, "rb") as f:
        f.seek(offset)
        header = f.read(8)
        if len(header) < 8:
            return None
        uncompressed_size, compressed_size = struct.unpack(">II", header)
        compressed = f.read(compressed_size)
    return zstd.ZstdDecompressor().decompress(
        compressed, max_output_size=uncompressed_size
    )


def write_region_file(path, blobs, blob_count=BLOB_COUNT, segment_size=SEGMENT_SIZE):
    indexes = [0] * blob_count
    segment_data = []
    next_segment = 1

    compressor = zstd.ZstdCompressor(level=3)
    for idx, blob in sorted(blobs.items()):
        if blob is None:
            continue
        compressed = compressor.compress(blob)
        payload = struct.pack(">II", len(blob), len(compressed)) + compressed
        segments_needed = (len(payload) + segment_size - 1) // segment_size
        indexes[idx] = next_segment
        # pad to full segment size
        payload += b"\x00" * (segments_needed * segment_size - len(payload))
        segment_data.append(payload)
        next_segment += segments_needed

    tmp_path = path + ".tmp"
    with open(tmp_path, "wb") as f:
        f.write(MAGIC)
        f.write(struct.pack(">III", STORAGE_VERSION, blob_count, segment_size))
        f.write(struct.pack(">" + "I" * blob_count, *indexes))
        for payload in segment_data:
            f.write(payload)
    os.replace(tmp_path, path)


def atomic_write_json(path, payload):
    tmp_path = path + ".tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=False)
        f.write("\n")
    os.replace(tmp_path, path)


def region_key(chunk_x, chunk_z):
    region_x, local_x = divmod(chunk_x, 32)
    region_z, local_z = divmod(chunk_z, 32)
    return (region_x, region_z), local_x + local_z * 32


def region_path(world_dir, dimension, region_x, region_z):
    return os.path.join(
        world_dir,
        "chunks",
        Dimension(dimension).name.lower(),
        f"{region_x}.{region_z}.region.bin",
    )


def _encode_grid(grid):
    kind, entries, bits, words = grid.export()
    return {
        "Palette": kind,
        "Entries": entries,
        "Bits": bits,
        "Data": Binary(struct.pack(f"<{len(words)}Q", *words)),
    }


def _decode_grid(doc):
    bits = doc["Bits"]
    data = bytes(doc["Data"])
    words = struct.unpack(f"<{len(data) // 8}Q", data)
    storage = PackedArray.from_words(bits, SUB_CHUNK_GRID.storage_size, words)
    palette = PALETTE_TYPES[doc["Palette"]](bits, doc["Entries"] or ())
    return CompactStateGrid(SUB_CHUNK_GRID, palette, storage)


def encode_chunk(chunk):
    sub_chunks = []
    for index, sub in chunk.sub_chunks():
        sub_chunks.append(
            {
                "Y": index,
                "Layers": [_encode_grid(layer) for layer in sub.layers],
                "Biomes": _encode_grid(sub.biomes),
            }
        )
    doc = {
        "Version": CHUNK_FORMAT_VERSION,
        "Dimension": int(chunk.dimension),
        "Air": chunk.air,
        "DefaultBiome": chunk.default_biome,
        "SubChunks": sub_chunks,
    }
    return BSON.encode(doc)


def decode_chunk(blob):
    try:
        doc = BSON(blob).decode()
        chunk = Chunk(doc["Air"], Dimension(doc["Dimension"]), doc["DefaultBiome"])
        for entry in doc["SubChunks"]:
            layers = [_decode_grid(layer) for layer in entry["Layers"]]
            biomes = _decode_grid(entry["Biomes"])
            chunk.put_sub_chunk(
                entry["Y"],
                SubChunk(chunk.air, chunk.default_biome, layers, biomes),
            )
    except (InvalidBSON, KeyError, ValueError, TypeError, struct.error) as exc:
        raise MalformedInput(f"invalid chunk document: {exc!r}") from exc
    return chunk


class IndexedStorageProvider:
    """Destination world store.

    Chunks are buffered per region and written on close(). Each region file
    is written whole, so two providers must never share a region.
    """

    def __init__(self, world_dir):
        self.world_dir = world_dir
        self._regions = defaultdict(dict)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
        return False

    def save_settings(self, settings):
        payload = {
            "LevelName": settings.name,
            "Time": settings.time,
            "SpawnX": settings.spawn[0],
            "SpawnY": settings.spawn[1],
            "SpawnZ": settings.spawn[2],
        }
        try:
            os.makedirs(self.world_dir, exist_ok=True)
            atomic_write_json(os.path.join(self.world_dir, "level.json"), payload)
        except OSError as exc:
            raise SinkError(f"failed to write world settings: {exc}") from exc

    def save_chunk(self, position, chunk, dimension):
        (region_x, region_z), blob_index = region_key(*position)
        try:
            blob = encode_chunk(chunk)
        except Exception as exc:
            raise SinkError(f"failed to encode chunk {position}: {exc}") from exc
        self._regions[(Dimension(dimension), region_x, region_z)][blob_index] = blob

    def close(self):
        regions, self._regions = self._regions, defaultdict(dict)
        for (dimension, region_x, region_z), blobs in sorted(regions.items()):
            path = region_path(self.world_dir, dimension, region_x, region_z)
            try:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                write_region_file(path, blobs)
            except OSError as exc:
                raise SinkError(f"failed to write {path}: {exc}") from exc
            LOG.debug("Wrote %d chunks to %s", len(blobs), path)


def load_chunk(world_dir, position, dimension=Dimension.OVERWORLD):
    (region_x, region_z), blob_index = region_key(*position)
    path = region_path(world_dir, dimension, region_x, region_z)
    if not os.path.exists(path):
        return None
    _, blob_count, segment_size, indexes = read_region_header(path)
    blob = read_region_blob(path, indexes[blob_index], segment_size, blob_count)
    if blob is None:
        return None
    return decode_chunk(blob)
