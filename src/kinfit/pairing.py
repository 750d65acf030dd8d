"""Jet pairings: enumerate assignments of a jet pool to hypothesis role slots.

Each pairing holds a fixed pool of fit objects and a table of permutations
of pool indices. `next_permutation()` returns the pool reordered by the
current row and advances an internal cursor. After `get_n_perm()` calls
every assignment has been produced exactly once and the cursor wraps
back to the first row, so a second cycle repeats the same sequence.
The pool itself is never replaced, only reordered.
"""

from __future__ import annotations

from typing import Generic, Iterator, Sequence, TypeVar

T = TypeVar("T")


class BaseJetPairing(Generic[T]):
    """Permutation enumerator over a fixed pool of `NJETS` objects."""

    NAME = ""
    NJETS = 0
    PERMUTATIONS: tuple[tuple[int, ...], ...] = ()
    # Output-slot groups forming one hypothesis candidate each.
    MASS_GROUPS: tuple[tuple[int, ...], ...] = ()

    def __init__(self, jets: Sequence[T]) -> None:
        if len(jets) != self.NJETS:
            raise ValueError(
                f"{type(self).__name__} needs exactly {self.NJETS} jets, got {len(jets)}."
            )
        self.jets: tuple[T, ...] = tuple(jets)
        self._cursor = 0

    def get_n_perm(self) -> int:
        return len(self.PERMUTATIONS)

    @property
    def cursor(self) -> int:
        """Index of the permutation the next call will return."""
        return self._cursor

    def reset(self) -> None:
        self._cursor = 0

    def next_permutation(self) -> tuple[T, ...]:
        """Return the pool ordered by the next table row; wraps after the last row."""
        row = self.PERMUTATIONS[self._cursor]
        self._cursor = (self._cursor + 1) % self.get_n_perm()
        return tuple(self.jets[i] for i in row)

    def __iter__(self) -> Iterator[tuple[T, ...]]:
        """Yield one full cycle, starting at the current cursor."""
        for _ in range(self.get_n_perm()):
            yield self.next_permutation()

    def __len__(self) -> int:
        return self.get_n_perm()


class FourJetPairing(BaseJetPairing[T]):
    """Four jets into two dijet candidates: slots (0, 1) and (2, 3)."""

    NAME = "four-jet"
    NJETS = 4
    PERMUTATIONS = (
        (0, 1, 2, 3),
        (0, 2, 1, 3),
        (0, 3, 1, 2),
    )
    MASS_GROUPS = ((0, 1), (2, 3))


class TwoB4JPairing(BaseJetPairing[T]):
    """Two b jets (pool slots 0, 1) and four light jets into two top candidates.

    Output slots 0 and 1 hold the b jets, slots (2, 3) and (4, 5) the two
    light-jet pairs; a top candidate is `(0, 2, 3)` and the other `(1, 4, 5)`.
    """

    NAME = "two-b-four-j"
    NJETS = 6
    PERMUTATIONS = (
        (0, 1, 2, 3, 4, 5),
        (0, 1, 2, 4, 3, 5),
        (0, 1, 2, 5, 3, 4),
        (1, 0, 2, 3, 4, 5),
        (1, 0, 2, 4, 3, 5),
        (1, 0, 2, 5, 3, 4),
    )
    MASS_GROUPS = ((0, 2, 3), (1, 4, 5))


_NAME_TO_PAIRING: dict[str, type[BaseJetPairing]] = {
    "four-jet": FourJetPairing,
    "4j": FourJetPairing,
    "two-b-four-j": TwoB4JPairing,
    "2b4j": TwoB4JPairing,
}


def pairing_class_from_name(name: str) -> type[BaseJetPairing]:
    """Resolve a pairing name (e.g. `four-jet`, `2b4j`) into its class."""
    key = name.strip().lower()
    try:
        return _NAME_TO_PAIRING[key]
    except KeyError as exc:
        supported = ", ".join(sorted(_NAME_TO_PAIRING))
        raise ValueError(f"Unknown jet pairing '{name}'. Supported names: {supported}") from exc


def make_pairing(name: str, jets: Sequence[T]) -> BaseJetPairing[T]:
    """Build a named pairing over a jet pool."""
    return pairing_class_from_name(name)(jets)
