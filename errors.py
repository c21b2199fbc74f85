class ConversionError(Exception):
    pass


class MalformedInput(ConversionError, ValueError):
    """Source data that cannot be decoded. Costs the chunk, not the region."""


class LengthMismatch(MalformedInput):
    pass


class MappingGap(ConversionError, LookupError):
    """A state with no destination counterpart. Always fatal for the region."""


class UnknownState(MappingGap):
    pass


class UsageError(ConversionError, ValueError):
    pass


class StorageIndexError(UsageError, IndexError):
    pass


class MappingLoadError(ConversionError, ValueError):
    pass


class SinkError(ConversionError, OSError):
    pass
