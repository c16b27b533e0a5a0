import functools
import math
from typing import NamedTuple, Mapping, Union, Sequence, Optional, Iterator, Text
import numpy

from gcnv_utils.errors import InvalidPosteriorError


@functools.total_ordering
class IntegerCopyNumberState:
    """
    Non-negative integer copy-number value. Immutable, ordered by value.
    """
    __slots__ = ("_copy_number",)

    def __init__(self, copy_number: int):
        if isinstance(copy_number, IntegerCopyNumberState):
            copy_number = copy_number.copy_number
        if isinstance(copy_number, (bool, numpy.bool_)) or not isinstance(copy_number, (int, numpy.integer)):
            raise ValueError(f"Copy number must be an integer, got {copy_number!r}")
        if copy_number < 0:
            raise ValueError(f"Copy number must be non-negative, got {copy_number}")
        object.__setattr__(self, "_copy_number", int(copy_number))

    def __setattr__(self, key, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def copy_number(self) -> int:
        return self._copy_number

    def __int__(self) -> int:
        return self._copy_number

    def __index__(self) -> int:
        return self._copy_number

    def __eq__(self, other) -> bool:
        if isinstance(other, IntegerCopyNumberState):
            return self._copy_number == other._copy_number
        return NotImplemented

    def __lt__(self, other) -> bool:
        if isinstance(other, IntegerCopyNumberState):
            return self._copy_number < other._copy_number
        return NotImplemented

    def __hash__(self):
        return hash(self._copy_number)

    def __repr__(self):
        return f"IntegerCopyNumberState({self._copy_number})"


CopyNumberLike = Union[IntegerCopyNumberState, int]


class CopyNumberPosteriorDistribution:
    """
    Log-probability for every supported integer copy-number state 0..K of one interval. Stored as natural-log values
    in a read-only numpy array indexed by copy number. The values need not be normalized.
    """
    __slots__ = ("_log_posteriors",)

    def __init__(self, log_posteriors: Sequence[float], log_base: float = math.e):
        values = numpy.array(log_posteriors, dtype=numpy.float64)
        if values.ndim != 1 or values.size == 0:
            raise InvalidPosteriorError("Copy-number posterior distribution must contain at least one state")
        if numpy.isnan(values).any():
            raise InvalidPosteriorError(f"Copy-number posterior distribution contains NaN: {values.tolist()}")
        if numpy.isposinf(values).any():
            raise InvalidPosteriorError(f"Copy-number posterior distribution contains +inf: {values.tolist()}")
        if numpy.isneginf(values).all():
            raise InvalidPosteriorError("Copy-number posterior distribution has zero probability for every state")
        if log_base != math.e:
            values = values * math.log(log_base)
        values.setflags(write=False)
        object.__setattr__(self, "_log_posteriors", values)

    def __setattr__(self, key, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    @classmethod
    def from_mapping(
            cls,
            state_log_posteriors: Mapping[CopyNumberLike, float],
            log_base: float = math.e
    ) -> "CopyNumberPosteriorDistribution":
        """
        Build distribution from {state: log-probability}. The states must be exactly the contiguous integers 0..K.
        """
        if not state_log_posteriors:
            raise InvalidPosteriorError("Copy-number posterior distribution must contain at least one state")
        try:
            states = {IntegerCopyNumberState(state).copy_number: value for state, value in state_log_posteriors.items()}
        except ValueError as value_error:
            raise InvalidPosteriorError(str(value_error)) from value_error
        max_state = max(states)
        missing = sorted(set(range(max_state + 1)).difference(states))
        if missing:
            raise InvalidPosteriorError(
                f"Copy-number states must be contiguous from 0 to {max_state}, missing states {missing}"
            )
        return cls([states[state] for state in range(max_state + 1)], log_base=log_base)

    @property
    def log_posteriors(self) -> numpy.ndarray:
        return self._log_posteriors

    @property
    def num_states(self) -> int:
        return self._log_posteriors.size

    @property
    def max_copy_number(self) -> int:
        return self._log_posteriors.size - 1

    def __len__(self) -> int:
        return self._log_posteriors.size

    def __iter__(self) -> Iterator[IntegerCopyNumberState]:
        return (IntegerCopyNumberState(state) for state in range(self._log_posteriors.size))

    def __getitem__(self, state: CopyNumberLike) -> float:
        return float(self._log_posteriors[self.state_index(state)])

    def state_index(self, state: CopyNumberLike) -> int:
        """ Index of state in log_posteriors, raising InvalidPosteriorError for unsupported states """
        try:
            copy_number = IntegerCopyNumberState(state).copy_number
        except ValueError as value_error:
            raise InvalidPosteriorError(str(value_error)) from value_error
        if copy_number > self.max_copy_number:
            raise InvalidPosteriorError(
                f"Copy-number state {copy_number} is outside the supported range [0, {self.max_copy_number}]"
            )
        return copy_number

    def __eq__(self, other) -> bool:
        if isinstance(other, CopyNumberPosteriorDistribution):
            return numpy.array_equal(self._log_posteriors, other._log_posteriors)
        return NotImplemented

    def __hash__(self):
        return hash(self._log_posteriors.tobytes())

    def __repr__(self):
        return f"CopyNumberPosteriorDistribution({self._log_posteriors.tolist()})"


class Interval(NamedTuple):
    """ Genomic interval with 1-based, inclusive coordinates """
    contig: Text
    start: int
    end: int

    def __str__(self):
        return f"{self.contig}:{self.start}-{self.end}"


class IntervalGenotypingRecord(NamedTuple):
    interval: Interval
    posterior: CopyNumberPosteriorDistribution
    baseline_copy_number: IntegerCopyNumberState


class SegmentRecord(NamedTuple):
    """
    Segment from the external segmentation engine. The quality metrics are phred-scaled and only passed through:
        quality_all_called -> QA, quality_some_called -> QS, quality_start -> QSS, quality_end -> QSE
    """
    interval: Interval
    call_copy_number: IntegerCopyNumberState
    num_points: int
    quality_some_called: int
    quality_all_called: int
    quality_start: int
    quality_end: int
    baseline_copy_number: Optional[IntegerCopyNumberState] = None


class DenoisedCopyRatioRecord(NamedTuple):
    interval: Interval
    linear_copy_ratio: float
