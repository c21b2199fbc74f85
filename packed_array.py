from errors import LengthMismatch, StorageIndexError

WORD_MASK = 0xFFFFFFFFFFFFFFFF


def required_words(bits, capacity):
    if bits == 0:
        return 0
    per_word = 64 // bits
    return (capacity + per_word - 1) // per_word


def spanning_words(bits, capacity):
    return (capacity * bits + 63) // 64


class PackedArray:
    """Fixed number of unsigned entries packed into 64-bit words.

    Entries never straddle two words; the high bits of a word that cannot
    hold a whole entry stay unused (the layout used by chunk sections since
    1.16).
    """

    __slots__ = ("bits", "capacity", "mask", "per_word", "_words")

    def __init__(self, bits, capacity):
        if bits < 0 or bits > 64:
            raise StorageIndexError(f"invalid bits per entry: {bits}")
        self.bits = bits
        self.capacity = capacity
        self.mask = (1 << bits) - 1
        self.per_word = 64 // bits if bits else 0
        self._words = [0] * required_words(bits, capacity)

    @classmethod
    def from_words(cls, bits, capacity, words):
        storage = cls(bits, capacity)
        words = [int(word) & WORD_MASK for word in words]
        if len(words) != len(storage._words):
            raise LengthMismatch(
                f"data length {len(words)} does not match storage length "
                f"{len(storage._words)} ({bits} bits, {capacity} entries)"
            )
        storage._words = words
        return storage

    @classmethod
    def from_spanning_words(cls, bits, capacity, words):
        """Re-pack entries written back to back across word boundaries.

        Chunk sections used this layout before 1.16.
        """
        storage = cls(bits, capacity)
        longs = [int(word) & WORD_MASK for word in words]
        if len(longs) != spanning_words(bits, capacity):
            raise LengthMismatch(
                f"data length {len(longs)} does not match spanning length "
                f"{spanning_words(bits, capacity)} ({bits} bits, {capacity} entries)"
            )
        mask = storage.mask
        for i in range(capacity if bits else 0):
            bit_index = i * bits
            long_index = bit_index >> 6
            start_bit = bit_index & 63
            value = (longs[long_index] >> start_bit) & mask
            if start_bit + bits > 64:
                value |= (longs[long_index + 1] << (64 - start_bit)) & mask
            if value:
                storage.set(i, value)
        return storage

    @property
    def words(self):
        return list(self._words)

    def __len__(self):
        return self.capacity

    def __iter__(self):
        if self.bits == 0:
            yield from (0 for _ in range(self.capacity))
            return
        bits = self.bits
        mask = self.mask
        remaining = self.capacity
        for word in self._words:
            for _ in range(min(self.per_word, remaining)):
                yield word & mask
                word >>= bits
            remaining -= self.per_word

    def _locate(self, index):
        if index < 0 or index >= self.capacity:
            raise StorageIndexError(f"index out of data bounds ({index})")
        word_index, slot = divmod(index, self.per_word)
        return word_index, slot * self.bits

    def get(self, index):
        if self.bits == 0:
            if index < 0 or index >= self.capacity:
                raise StorageIndexError(f"index out of data bounds ({index})")
            return 0
        word_index, offset = self._locate(index)
        return (self._words[word_index] >> offset) & self.mask

    def set(self, index, value):
        if self.bits == 0:
            if index < 0 or index >= self.capacity:
                raise StorageIndexError(f"index out of data bounds ({index})")
            return
        if value < 0 or value > self.mask:
            raise StorageIndexError(
                f"value {value} does not fit in {self.bits} bits"
            )
        word_index, offset = self._locate(index)
        word = self._words[word_index]
        self._words[word_index] = (word & ~(self.mask << offset)) | (value << offset)

    def __repr__(self):
        return f"PackedArray(bits={self.bits}, capacity={self.capacity})"
