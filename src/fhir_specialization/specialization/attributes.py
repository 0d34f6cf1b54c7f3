"""
Probabilistic Attribute Generators

Reproducible draws deciding whether, and how, a locale-specific variation is
applied. Every draw consumes only the random source passed in by the caller
(the person's own generator), never a process-global one.
"""

from typing import NamedTuple, Protocol, Sequence


class RandomSource(Protocol):
    """The subset of ``numpy.random.Generator`` the generators rely on."""

    def random(self) -> float: ...

    def integers(self, low: int, high: int | None = None) -> int: ...


class GenderedChoice(NamedTuple):
    """A candidate value with masculine and feminine forms."""

    masculine: str
    feminine: str

    def form(self, feminine: bool) -> str:
        return self.feminine if feminine else self.masculine


def _check_probability(probability: float) -> None:
    if not 0.0 <= probability <= 1.0:
        raise ValueError(f"Probability must be within [0, 1], got {probability}")


def draw_boolean(rng: RandomSource, probability: float = 0.5) -> bool:
    """Return True with the given probability."""
    _check_probability(probability)
    return bool(rng.random() < probability)


def draw_index(rng: RandomSource, size: int) -> int:
    """Uniformly pick an index in ``range(size)``."""
    if size <= 0:
        raise ValueError("Cannot choose from an empty candidate list")
    return int(rng.integers(size))


def draw_choice(
    rng: RandomSource,
    candidates: Sequence[str],
    probability: float = 1.0,
) -> str | None:
    """Pick one candidate uniformly, if the variation applies at all.

    Returns None ("no value") when the variation does not apply; callers must
    leave the affected field unchanged in that case.
    """
    if not candidates:
        raise ValueError("Cannot choose from an empty candidate list")
    if not draw_boolean(rng, probability):
        return None
    return candidates[draw_index(rng, len(candidates))]


def draw_gendered_choice(
    rng: RandomSource,
    candidates: Sequence[GenderedChoice],
    feminine: bool,
    probability: float = 1.0,
) -> str | None:
    """Like :func:`draw_choice`, returning the requested gendered form."""
    if not candidates:
        raise ValueError("Cannot choose from an empty candidate list")
    if not draw_boolean(rng, probability):
        return None
    return candidates[draw_index(rng, len(candidates))].form(feminine)
