import gzip
import io
import logging
import os
import re
import struct
import zlib

import nbtlib

from bedrock import Dimension, WorldSettings
from errors import MalformedInput

LOG = logging.getLogger(__name__)

SECTOR_SIZE = 4096
CHUNKS_PER_REGION = 1024
REGION_FILENAME = re.compile(r"^r\.(-?\d+)\.(-?\d+)\.mca$")

COMPRESSION_GZIP = 1
COMPRESSION_ZLIB = 2
COMPRESSION_NONE = 3


def parse_region_filename(filename):
    match = REGION_FILENAME.match(os.path.basename(filename))
    if not match:
        raise ValueError(f"Invalid region filename: {filename}")
    return int(match.group(1)), int(match.group(2))


def region_dir(mc_world, dimension=Dimension.OVERWORLD):
    return os.path.join(mc_world, *Dimension(dimension).region_folder.split("/"))


def list_region_files(mc_world, dimension=Dimension.OVERWORLD):
    path = region_dir(mc_world, dimension)
    if not os.path.isdir(path):
        return []
    region_files = [
        os.path.join(path, filename)
        for filename in os.listdir(path)
        if REGION_FILENAME.match(filename)
    ]
    return sorted(region_files)


def load_level(mc_world):
    dat_path = os.path.join(mc_world, "level.dat")
    if not os.path.exists(dat_path):
        raise FileNotFoundError(f"level.dat not found in {mc_world}")
    try:
        root = nbtlib.load(dat_path)
    except Exception as exc:
        raise MalformedInput(f"{dat_path} could not be parsed: {exc}") from exc
    data = root.get("Data", root)
    return WorldSettings(
        name=str(data.get("LevelName", "World")),
        time=int(data.get("DayTime", 0)),
        spawn=(
            int(data.get("SpawnX", 0)),
            int(data.get("SpawnY", 64)),
            int(data.get("SpawnZ", 0)),
        ),
    )


class AnvilRegion:
    def __init__(self, path):
        self.path = path
        self.x, self.z = parse_region_filename(path)
        with open(path, "rb") as f:
            header = f.read(SECTOR_SIZE)
        if len(header) < SECTOR_SIZE:
            LOG.warning("Skipping invalid region file (short header): %s", path)
            self.locations = [0] * CHUNKS_PER_REGION
        else:
            self.locations = list(struct.unpack(">1024I", header))

    def chunk_indexes(self):
        return [i for i, entry in enumerate(self.locations) if entry >> 8]

    def chunk_position(self, index):
        return (self.x << 5) + (index & 31), (self.z << 5) + (index >> 5)

    def read_chunk_bytes(self, index):
        entry = self.locations[index]
        sector_offset = entry >> 8
        sector_count = entry & 0xFF
        if sector_offset < 2:
            raise MalformedInput(
                f"chunk {index} in {self.path} points into the region header"
            )
        with open(self.path, "rb") as f:
            f.seek(sector_offset * SECTOR_SIZE)
            header = f.read(5)
            if len(header) < 5:
                raise MalformedInput(f"chunk {index} in {self.path} is truncated")
            length, compression = struct.unpack(">IB", header)
            if length < 1 or length + 4 > sector_count * SECTOR_SIZE:
                raise MalformedInput(
                    f"chunk {index} in {self.path} has invalid length {length}"
                )
            data = f.read(length - 1)
        if len(data) < length - 1:
            raise MalformedInput(f"chunk {index} in {self.path} is truncated")
        try:
            if compression == COMPRESSION_GZIP:
                return gzip.decompress(data)
            if compression == COMPRESSION_ZLIB:
                return zlib.decompress(data)
        except (OSError, EOFError, zlib.error) as exc:
            raise MalformedInput(
                f"chunk {index} in {self.path} failed to decompress: {exc}"
            ) from exc
        if compression == COMPRESSION_NONE:
            return data
        raise MalformedInput(
            f"chunk {index} in {self.path} uses unsupported compression {compression}"
        )

    def read_chunk(self, index):
        data = self.read_chunk_bytes(index)
        try:
            return nbtlib.File.parse(io.BytesIO(data))
        except Exception as exc:
            raise MalformedInput(
                f"chunk {index} in {self.path} is not valid NBT: {exc}"
            ) from exc
