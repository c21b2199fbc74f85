from enum import Enum

from errors import UsageError

MISS = -1


class PaletteKind(Enum):
    SINGLETON = "singleton"
    LIST = "list"
    MAP = "map"
    GLOBAL = "global"


class SingletonPalette:
    kind = PaletteKind.SINGLETON

    def __init__(self, state):
        self.state = state

    def state_to_id(self, state):
        return 0 if state == self.state else MISS

    def id_to_state(self, state_id):
        return self.state

    def entries(self):
        return [self.state]

    def __len__(self):
        return 1


class ListPalette:
    kind = PaletteKind.LIST

    def __init__(self, bits, states=()):
        self.bits = bits
        self.capacity = 1 << bits
        self.states = []
        for state in states:
            self._append(state)

    def _append(self, state):
        if len(self.states) >= self.capacity:
            raise UsageError(
                f"palette with {self.bits} bits cannot hold more than "
                f"{self.capacity} entries"
            )
        self.states.append(state)
        return len(self.states) - 1

    def state_to_id(self, state):
        try:
            return self.states.index(state)
        except ValueError:
            pass
        if len(self.states) >= self.capacity:
            return MISS
        return self._append(state)

    def id_to_state(self, state_id):
        return self.states[state_id]

    def entries(self):
        return list(self.states)

    def __len__(self):
        return len(self.states)


class MapPalette(ListPalette):
    kind = PaletteKind.MAP

    def __init__(self, bits, states=()):
        self.ids = {}
        super().__init__(bits, states)

    def _append(self, state):
        state_id = super()._append(state)
        self.ids.setdefault(state, state_id)
        return state_id

    def state_to_id(self, state):
        state_id = self.ids.get(state)
        if state_id is not None:
            return state_id
        if len(self.states) >= self.capacity:
            return MISS
        return self._append(state)


class GlobalPalette:
    """Identity palette: ids are the dense ids of the whole state table."""

    kind = PaletteKind.GLOBAL

    def state_to_id(self, state):
        return state

    def id_to_state(self, state_id):
        return state_id

    def entries(self):
        return None

    def __len__(self):
        return 0
