import json

import pytest

from biomes import BiomeTable, load_biome_table
from errors import MappingLoadError, UnknownState


def test_ids_follow_file_order(biome_table):
    assert biome_table.source_biome_to_id("minecraft:ocean") == 0
    assert biome_table.source_biome_to_id("minecraft:forest") == 3
    assert biome_table.id_to_source_biome(2) == "minecraft:desert"


def test_lookup(biome_table):
    assert biome_table.lookup("minecraft:plains") == 1
    assert biome_table.lookup("minecraft:forest") == 4
    assert biome_table.lookup("minecraft:unmapped_biome") is None
    assert biome_table.lookup("minecraft:nowhere") is None


def test_void_falls_back_to_ocean(biome_table):
    assert biome_table.lookup("minecraft:the_void") == biome_table.lookup("minecraft:ocean")
    assert biome_table.source_biome_to_id("minecraft:the_void") == 0


def test_unknown_biomes_raise(biome_table):
    with pytest.raises(UnknownState):
        biome_table.source_biome_to_id("minecraft:nowhere")
    with pytest.raises(UnknownState):
        biome_table.id_to_source_biome(99)


def test_invalid_entries_are_rejected():
    with pytest.raises(MappingLoadError):
        BiomeTable.from_mapping({"minecraft:plains": {"bedrock_id": "one"}})
    with pytest.raises(MappingLoadError):
        BiomeTable.from_mapping({"minecraft:plains": -1})


def test_float_ids_are_normalized():
    table = BiomeTable.from_mapping({"minecraft:plains": {"bedrock_id": 1.0}})
    assert table.lookup("minecraft:plains") == 1
    assert isinstance(table.lookup("minecraft:plains"), int)


def test_load_biome_table(tmp_path):
    path = tmp_path / "biomes.json"
    path.write_text(json.dumps({"minecraft:ocean": {"bedrock_id": 0}}), encoding="utf-8")
    assert len(load_biome_table(str(path))) == 1

    path.write_text("[]", encoding="utf-8")
    with pytest.raises(MappingLoadError):
        load_biome_table(str(path))


def test_default_biome_table_fits_global_width():
    from converter import DEFAULT_BIOMES
    from state_grid import BIOME_GRID

    table = load_biome_table(DEFAULT_BIOMES)
    assert len(table) <= 1 << BIOME_GRID.global_bits
    assert table.lookup("minecraft:the_void") == table.lookup("minecraft:ocean")
