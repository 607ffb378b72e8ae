"""
Exceptions raised by the transcription engine.
"""


class DircolError(Exception):
    """Base class for all engine errors."""


class ContractError(DircolError):
    """A scheme or caller broke a precondition of the engine (a programming bug)."""


class SolveError(DircolError):
    """The NLP backend could not be invoked or failed internally."""


class InfeasibleBoundsError(SolveError):
    """Some lower bound exceeds its upper bound, so the NLP is ill-posed."""

    def __init__(self, kind: str, index: int, lower: float, upper: float):
        self.kind = kind
        self.index = index
        self.lower = lower
        self.upper = upper
        super().__init__(
            f"Ill-posed problem: {kind} lower bound {lower} exceeds upper bound {upper} "
            f"at element {index}"
        )
