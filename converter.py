#!/usr/bin/env python3
import argparse
import logging
import os
import time
from collections import namedtuple
from concurrent.futures import ProcessPoolExecutor, as_completed

from anvil import AnvilRegion, list_region_files, load_level
from bedrock import Dimension, RuntimeRegistry, load_registry
from biomes import load_biome_table
from block_states import load_block_table
from errors import MalformedInput
from indexed_storage import IndexedStorageProvider
from translator import ChunkOutcome, ChunkTranslator, SourceChunk

LOG = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

MAPPINGS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "mappings")
DEFAULT_BIOMES = os.path.join(MAPPINGS_DIR, "biomes.json")

Tables = namedtuple("Tables", ["blocks", "biomes", "registry"])
RegionStats = namedtuple("RegionStats", ["translated", "skipped", "blocks"])


def load_tables(blocks_path, biomes_path=None, registry_path=None):
    blocks = load_block_table(blocks_path)
    biomes = load_biome_table(biomes_path or DEFAULT_BIOMES)
    if registry_path:
        registry = load_registry(registry_path)
    else:
        registry = RuntimeRegistry.from_states(blocks.destination_states())
    return Tables(blocks, biomes, registry)


def convert_region(region_path, dimension, tables, output_world):
    region = AnvilRegion(region_path)
    translator = ChunkTranslator(
        tables.blocks, tables.biomes, tables.registry, dimension
    )
    translated = skipped = converted_blocks = 0
    with IndexedStorageProvider(output_world) as provider:
        for index in region.chunk_indexes():
            try:
                record = SourceChunk.from_nbt(region.read_chunk(index))
                outcome, block_count = translator.convert(record, provider)
            except MalformedInput as exc:
                LOG.warning(
                    "Skipping chunk %s in %s: %s",
                    region.chunk_position(index),
                    os.path.basename(region_path),
                    exc,
                )
                skipped += 1
                continue
            except Exception:
                LOG.error(
                    "Chunk %s in %s: conversion failed",
                    region.chunk_position(index),
                    os.path.basename(region_path),
                )
                raise
            if outcome is ChunkOutcome.SKIPPED:
                skipped += 1
            else:
                translated += 1
                converted_blocks += block_count
    return RegionStats(translated, skipped, converted_blocks)


_WORKER_TABLES = None


def _init_region_worker(blocks_path, biomes_path, registry_path, log_level):
    global _WORKER_TABLES
    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    _WORKER_TABLES = load_tables(blocks_path, biomes_path, registry_path)


def _process_region_worker(region_path, dimension, output_world):
    LOG.info("Worker %d converting: %s", os.getpid(), os.path.basename(region_path))
    return convert_region(region_path, dimension, _WORKER_TABLES, output_world)


def find_dimensions(mc_world):
    return [dim for dim in Dimension if list_region_files(mc_world, dim)]


def convert_world(
    mc_world,
    output_world,
    blocks_path,
    biomes_path=None,
    registry_path=None,
    workers=None,
    dimensions=None,
):
    settings = load_level(mc_world)
    if dimensions is None:
        dimensions = find_dimensions(mc_world)
    jobs = [
        (region_path, dim)
        for dim in dimensions
        for region_path in list_region_files(mc_world, dim)
    ]
    if not jobs:
        raise FileNotFoundError(f"No region files found in {mc_world}")

    os.makedirs(output_world, exist_ok=True)
    IndexedStorageProvider(output_world).save_settings(settings)
    LOG.info("Converting %s (%d regions)", settings.name, len(jobs))

    workers = workers or (os.cpu_count() or 1)
    totals = RegionStats(0, 0, 0)
    start = time.monotonic()
    completed = 0

    def record(region_path, stats, elapsed_region):
        nonlocal totals, completed
        totals = RegionStats(*(a + b for a, b in zip(totals, stats)))
        completed += 1
        elapsed = time.monotonic() - start
        rate = completed / elapsed if elapsed > 0 else 0
        eta = (len(jobs) - completed) / rate if rate > 0 else 0
        status = "Region converted" if stats.translated else "Region converted (empty)"
        LOG.info(
            "%s: %s in %s (%d/%d done, ETA %s)",
            status,
            os.path.basename(region_path),
            format_duration(elapsed_region),
            completed,
            len(jobs),
            format_duration(eta),
        )

    if workers <= 1:
        tables = load_tables(blocks_path, biomes_path, registry_path)
        for region_path, dim in jobs:
            submitted = time.monotonic()
            stats = convert_region(region_path, dim, tables, output_world)
            record(region_path, stats, time.monotonic() - submitted)
    else:
        with ProcessPoolExecutor(
            max_workers=min(workers, len(jobs)),
            initializer=_init_region_worker,
            initargs=(blocks_path, biomes_path, registry_path, LOG.getEffectiveLevel()),
        ) as executor:
            submitted = time.monotonic()
            futures = {
                executor.submit(
                    _process_region_worker, region_path, dim, output_world
                ): region_path
                for region_path, dim in jobs
            }
            try:
                for future in as_completed(futures):
                    record(
                        futures[future], future.result(), time.monotonic() - submitted
                    )
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    LOG.info(
        "Converted %d blocks in %d chunks (%d skipped) in %s.",
        totals.blocks,
        totals.translated,
        totals.skipped,
        format_duration(time.monotonic() - start),
    )
    return totals


def format_duration(seconds):
    if seconds < 0:
        seconds = 0
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = seconds / 60
    if minutes < 60:
        return f"{minutes:.1f}m"
    hours = minutes / 60
    return f"{hours:.1f}h"


DIMENSION_NAMES = {dim.name.lower(): dim for dim in Dimension}


def build_parser():
    parser = argparse.ArgumentParser(
        description="Convert a Minecraft Java world into a Bedrock world."
    )
    parser.add_argument(
        "--input",
        required=True,
        help="Path to Minecraft Java world folder (contains level.dat and region/)",
    )
    parser.add_argument(
        "--output",
        required=True,
        help="Path to output world folder",
    )
    parser.add_argument(
        "--blocks",
        required=True,
        help="Block mapping JSON (Java state text -> Bedrock identifier and states)",
    )
    parser.add_argument(
        "--biomes",
        default=None,
        help="Biome mapping JSON (defaults to mappings/biomes.json)",
    )
    parser.add_argument(
        "--registry",
        default=None,
        help="Optional JSON list of destination block states defining runtime ids",
    )
    parser.add_argument(
        "--dimension",
        dest="dimensions",
        action="append",
        choices=sorted(DIMENSION_NAMES),
        default=None,
        help="Dimension to convert; repeatable (defaults to every dimension found).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes, one region each (defaults to CPU count; 1 runs in-process).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ...).",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)
    dimensions = None
    if args.dimensions:
        dimensions = [DIMENSION_NAMES[name] for name in args.dimensions]
    convert_world(
        args.input,
        args.output,
        blocks_path=args.blocks,
        biomes_path=args.biomes,
        registry_path=args.registry,
        workers=args.workers,
        dimensions=dimensions,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
