from errors import MalformedInput, LengthMismatch
from packed_array import PackedArray, required_words, spanning_words
from palette import (
    MISS,
    GlobalPalette,
    ListPalette,
    MapPalette,
    PaletteKind,
    SingletonPalette,
)


class GridKind:
    def __init__(self, name, edge, minimum_bits, maximum_bits, global_bits):
        self.name = name
        self.edge = edge
        self.storage_size = edge * edge * edge
        self.minimum_bits = minimum_bits
        self.maximum_bits = maximum_bits
        self.global_bits = global_bits

    def index(self, x, y, z):
        edge = self.edge
        return (y * edge + z) * edge + x

    def sanitize_bits(self, bits):
        if bits <= self.maximum_bits:
            return max(bits, self.minimum_bits)
        return self.global_bits

    def with_global_bits(self, table_size):
        """Same kind, with a global width wide enough for every id of a table."""
        bits = max(self.global_bits, (table_size - 1).bit_length())
        if bits == self.global_bits:
            return self
        return GridKind(self.name, self.edge, self.minimum_bits, self.maximum_bits, bits)

    def create_palette(self, bits, states=()):
        if bits <= self.minimum_bits:
            return ListPalette(bits, states)
        if bits <= self.maximum_bits:
            return MapPalette(bits, states)
        return GlobalPalette()

    def __repr__(self):
        return f"GridKind({self.name!r})"


BLOCK_GRID = GridKind("blocks", 16, 4, 8, 15)
BIOME_GRID = GridKind("biomes", 4, 1, 3, 6)
SUB_CHUNK_GRID = GridKind("sub_chunk", 16, 1, 16, 16)


class CompactStateGrid:
    """A cube of cells whose states are stored through a palette.

    States are plain hashable values (dense table ids on the source side,
    runtime ids on the destination side). The palette grows in place until
    it is full, at which point the whole grid is re-encoded at the next bit
    width.
    """

    def __init__(self, kind, palette, storage):
        self.kind = kind
        self.palette = palette
        self.storage = storage

    @classmethod
    def filled(cls, kind, state):
        return cls(kind, SingletonPalette(state), PackedArray(0, kind.storage_size))

    @classmethod
    def from_palette(cls, kind, states, words=None):
        states = list(states)
        if not states:
            raise MalformedInput(f"empty {kind.name} palette")
        if len(states) == 1:
            return cls.filled(kind, states[0])

        bits = (len(states) - 1).bit_length()
        sanitized = kind.sanitize_bits(bits)
        size = kind.storage_size

        if sanitized > kind.maximum_bits:
            stored = _read_storage(kind, words, [bits])
            _check_indexes(kind, stored, len(states))
            storage = PackedArray(sanitized, size)
            for index, local_id in enumerate(stored):
                storage.set(index, states[local_id])
            return cls(kind, GlobalPalette(), storage)

        # Vanilla pads narrow palettes up to the minimum width; compact
        # writers do not. Both are accepted.
        storage = _read_storage(kind, words, [sanitized, bits])
        _check_indexes(kind, storage, len(states))
        palette = kind.create_palette(max(storage.bits, 1), states)
        return cls(kind, palette, storage)

    @property
    def bits(self):
        return self.storage.bits

    def get(self, x, y, z):
        return self.get_index(self.kind.index(x, y, z))

    def get_index(self, index):
        return self.palette.id_to_state(self.storage.get(index))

    def set(self, x, y, z, state):
        return self.set_index(self.kind.index(x, y, z), state)

    def set_index(self, index, state):
        state_id = self.palette.state_to_id(state)
        if state_id == MISS:
            self._resize()
            state_id = self.palette.state_to_id(state)
        previous = self.palette.id_to_state(self.storage.get(index))
        self.storage.set(index, state_id)
        return previous

    def _resize(self):
        old_palette, old_storage = self.palette, self.storage
        if old_palette.kind is PaletteKind.SINGLETON:
            bits = 1
        else:
            bits = old_storage.bits + 1
        bits = self.kind.sanitize_bits(bits)

        palette = self.kind.create_palette(bits)
        storage = PackedArray(bits, self.kind.storage_size)
        if old_palette.kind is PaletteKind.SINGLETON:
            fill = palette.state_to_id(old_palette.state)
            if fill:
                for index in range(self.kind.storage_size):
                    storage.set(index, fill)
        else:
            remap = {}
            for index, old_id in enumerate(old_storage):
                new_id = remap.get(old_id)
                if new_id is None:
                    new_id = palette.state_to_id(old_palette.id_to_state(old_id))
                    remap[old_id] = new_id
                if new_id:
                    storage.set(index, new_id)
        self.palette, self.storage = palette, storage

    def distinct_states(self):
        if self.palette.kind is PaletteKind.SINGLETON:
            return {self.palette.state}
        return {self.palette.id_to_state(state_id) for state_id in set(self.storage)}

    def export(self):
        return (
            self.palette.kind.value,
            self.palette.entries(),
            self.storage.bits,
            self.storage.words,
        )

    def __iter__(self):
        id_to_state = self.palette.id_to_state
        for state_id in self.storage:
            yield id_to_state(state_id)

    def __repr__(self):
        return (
            f"CompactStateGrid({self.kind.name}, {self.palette.kind.value}, "
            f"bits={self.storage.bits})"
        )


def _read_storage(kind, words, widths):
    size = kind.storage_size
    if words is None:
        return PackedArray(widths[0], size)
    words = list(words)
    for bits in widths:
        if len(words) == required_words(bits, size):
            return PackedArray.from_words(bits, size, words)
    # pre-1.16 sections let entries straddle words
    for bits in widths:
        if 64 % bits and len(words) == spanning_words(bits, size):
            return PackedArray.from_spanning_words(bits, size, words)
    raise LengthMismatch(
        f"{kind.name} data has {len(words)} words, expected "
        f"{required_words(widths[0], size)} for {widths[0]} bits"
    )


def _check_indexes(kind, storage, palette_size):
    if storage.bits and (1 << storage.bits) > palette_size:
        highest = max(storage)
        if highest >= palette_size:
            raise MalformedInput(
                f"{kind.name} data references palette index {highest} "
                f"but the palette has {palette_size} entries"
            )
