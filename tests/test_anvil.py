import gzip
import os

import pytest

from anvil import (
    COMPRESSION_GZIP,
    COMPRESSION_NONE,
    AnvilRegion,
    list_region_files,
    load_level,
    parse_region_filename,
    region_dir,
)
from bedrock import Dimension
from conftest import nbt_bytes, nbt_chunk, nbt_section, write_level, write_region, zlib_chunk
from errors import MalformedInput
from translator import SourceChunk


def test_parse_region_filename():
    assert parse_region_filename("r.0.0.mca") == (0, 0)
    assert parse_region_filename("/tmp/world/region/r.-3.12.mca") == (-3, 12)
    with pytest.raises(ValueError):
        parse_region_filename("r.0.0.mcr")


def test_list_region_files(tmp_path):
    assert list_region_files(str(tmp_path)) == []
    folder = tmp_path / "DIM-1" / "region"
    folder.mkdir(parents=True)
    (folder / "r.1.0.mca").write_bytes(b"")
    (folder / "r.0.0.mca").write_bytes(b"")
    (folder / "notes.txt").write_bytes(b"")
    assert region_dir(str(tmp_path), Dimension.NETHER) == str(folder)
    assert [os.path.basename(p) for p in list_region_files(str(tmp_path), Dimension.NETHER)] == [
        "r.0.0.mca",
        "r.1.0.mca",
    ]


def test_load_level(tmp_path):
    write_level(tmp_path, name="Island", spawn=(1, 2, 3), day_time=1234)
    settings = load_level(str(tmp_path))
    assert settings.name == "Island"
    assert settings.spawn == (1, 2, 3)
    assert settings.time == 1234


def test_load_level_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_level(str(tmp_path))
    (tmp_path / "level.dat").write_bytes(b"not nbt at all")
    with pytest.raises(MalformedInput):
        load_level(str(tmp_path))


def test_read_chunks_with_every_compression(tmp_path):
    path = tmp_path / "r.1.-1.mca"
    stone = nbt_chunk(32, -31, [nbt_section(0, ["minecraft:stone"])])
    write_region(
        str(path),
        {
            0: zlib_chunk(stone),
            1: (COMPRESSION_GZIP, gzip.compress(nbt_bytes(nbt_chunk(33, -32)))),
            32: (COMPRESSION_NONE, nbt_bytes(nbt_chunk(32, -31, status="minecraft:noise"))),
        },
    )
    region = AnvilRegion(str(path))
    assert region.chunk_indexes() == [0, 1, 32]
    assert region.chunk_position(0) == (32, -32)
    assert region.chunk_position(33) == (33, -31)

    record = SourceChunk.from_nbt(region.read_chunk(0))
    assert record.position == (32, -31)
    assert record.sections[0].block_palette[0].name == "minecraft:stone"
    assert SourceChunk.from_nbt(region.read_chunk(1)).position == (33, -32)
    assert SourceChunk.from_nbt(region.read_chunk(32)).status == "noise"


def test_corrupt_chunks_are_malformed(tmp_path):
    path = tmp_path / "r.0.0.mca"
    write_region(
        str(path),
        {
            0: (2, b"this is not zlib"),
            1: (COMPRESSION_NONE, b"\x0a\x00"),
            2: (7, b"payload"),
        },
    )
    region = AnvilRegion(str(path))
    for index in (0, 1, 2):
        with pytest.raises(MalformedInput):
            region.read_chunk(index)


def test_chunk_pointing_into_header_is_malformed(tmp_path):
    path = tmp_path / "r.0.0.mca"
    header = bytearray(8192)
    header[0:4] = (1 << 8 | 1).to_bytes(4, "big")
    path.write_bytes(bytes(header))
    region = AnvilRegion(str(path))
    with pytest.raises(MalformedInput):
        region.read_chunk_bytes(0)


def test_truncated_chunk_is_malformed(tmp_path):
    path = tmp_path / "r.0.0.mca"
    header = bytearray(8192)
    header[0:4] = (2 << 8 | 1).to_bytes(4, "big")
    path.write_bytes(bytes(header) + (500).to_bytes(4, "big") + b"\x02abc")
    region = AnvilRegion(str(path))
    with pytest.raises(MalformedInput):
        region.read_chunk_bytes(0)


def test_short_header_has_no_chunks(tmp_path):
    path = tmp_path / "r.0.0.mca"
    path.write_bytes(b"\x00" * 100)
    assert AnvilRegion(str(path)).chunk_indexes() == []


def test_length_prefix_counts_against_the_sectors(tmp_path):
    path = tmp_path / "r.0.0.mca"
    header = bytearray(8192)
    header[0:4] = (2 << 8 | 1).to_bytes(4, "big")
    # 4096 bytes of payload plus the 4-byte prefix overflow one sector
    body = (4096).to_bytes(4, "big") + b"\x03" + b"\x00" * 4095
    path.write_bytes(bytes(header) + body + b"\x00" * 8)
    region = AnvilRegion(str(path))
    with pytest.raises(MalformedInput, match="invalid length"):
        region.read_chunk_bytes(0)
