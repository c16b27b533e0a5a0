import enum
import math
import logging
from types import MappingProxyType
from typing import NamedTuple, Optional, Mapping, Iterable, Iterator, Tuple, Text, FrozenSet
import numpy
from scipy.special import logsumexp

from gcnv_utils import shards
from gcnv_utils.copy_number import (
    IntegerCopyNumberState, CopyNumberPosteriorDistribution, IntervalGenotypingRecord, Interval, CopyNumberLike
)
from gcnv_utils.genomics_io import SequenceDictionary


class Default:
    autosomal_ref_copy_number = 2
    max_phred_quality = 9999  # cap for phred scores whose error probability is zero in floating point
    phred_scale = -10.0 / math.log(10.0)  # converts natural-log probability to phred


class AltKind(enum.Enum):
    """ Closed set of outcomes for a copy-number call relative to the reference copy number """
    REF = 0
    DEL = 1
    DUP = 2

    @property
    def genotype_index(self) -> int:
        """ index into the allele list (REF, <DEL>, <DUP>) """
        return self.value

    @property
    def symbol(self) -> Optional[str]:
        return None if self == AltKind.REF else f"<{self.name}>"


class SampleContext(NamedTuple):
    """
    Sample-wide settings, constructed once at startup and passed to every component.
    """
    sample_name: Text
    sequence_dictionary: SequenceDictionary
    autosomal_ref_copy_number: IntegerCopyNumberState
    allosomal_contigs: FrozenSet[str] = frozenset()
    contig_ploidy: Mapping[str, int] = MappingProxyType({})

    @classmethod
    def build(
            cls,
            sample_name: Text,
            sequence_dictionary: SequenceDictionary,
            autosomal_ref_copy_number: CopyNumberLike = Default.autosomal_ref_copy_number,
            allosomal_contigs: Iterable[str] = (),
            contig_ploidy: Optional[Mapping[str, int]] = None
    ) -> "SampleContext":
        allosomal_contigs = frozenset(allosomal_contigs)
        shards.validate_allosomal_contigs(allosomal_contigs, sequence_dictionary)
        return cls(
            sample_name=sample_name,
            sequence_dictionary=sequence_dictionary,
            autosomal_ref_copy_number=IntegerCopyNumberState(autosomal_ref_copy_number),
            allosomal_contigs=allosomal_contigs,
            contig_ploidy=MappingProxyType(dict(contig_ploidy or {}))
        )

    def is_allosomal(self, contig: Text) -> bool:
        return contig in self.allosomal_contigs


class IntervalGenotype(NamedTuple):
    interval: Interval
    called_state: IntegerCopyNumberState
    quality: int
    alt_kind: AltKind
    reference_copy_number: IntegerCopyNumberState
    phred_posteriors: Tuple[int, ...]

    @property
    def genotype_index(self) -> int:
        return self.alt_kind.genotype_index


def _to_phred(log_error_probability: float, max_phred_quality: int) -> int:
    quality = Default.phred_scale * log_error_probability
    if not math.isfinite(quality) or quality >= max_phred_quality:
        return max_phred_quality
    # round half up; non-negative since the error probability is at most 1
    return max(0, int(math.floor(quality + 0.5)))


def get_called_state(posterior: CopyNumberPosteriorDistribution) -> IntegerCopyNumberState:
    """ Most likely copy-number state. numpy.argmax returns the first maximum, so ties go to the lowest state """
    return IntegerCopyNumberState(int(numpy.argmax(posterior.log_posteriors)))


def get_phred_quality(
        posterior: CopyNumberPosteriorDistribution,
        state: Optional[CopyNumberLike] = None,
        max_phred_quality: int = Default.max_phred_quality
) -> int:
    f"""
    Phred-scaled probability that the call is wrong, round(-10 * log10(1 - p_state)) with p_state the normalized
    posterior probability of the state. Computed in log space as logsumexp(other states) - logsumexp(all states), so
    1 - p_state never cancels to zero unless every other state has zero probability.
    Args:
        posterior: CopyNumberPosteriorDistribution
            Posterior for one interval (need not be normalized)
        state: CopyNumberLike or None (Default=None)
            State to score, defaults to the called state
        max_phred_quality: int (Default={Default.max_phred_quality})
            Value returned when the quality is infinite or larger than this
    Returns:
        quality: int
            Phred-scaled quality, 0 <= quality <= max_phred_quality
    """
    if state is None:
        state = get_called_state(posterior)
    state_index = posterior.state_index(state)
    log_posteriors = posterior.log_posteriors
    other_log_posteriors = numpy.delete(log_posteriors, state_index)
    if other_log_posteriors.size == 0 or numpy.isneginf(other_log_posteriors).all():
        return max_phred_quality
    log_error_probability = logsumexp(other_log_posteriors) - logsumexp(log_posteriors)
    return _to_phred(min(0.0, float(log_error_probability)), max_phred_quality)


def get_phred_posteriors(
        posterior: CopyNumberPosteriorDistribution,
        max_phred_quality: int = Default.max_phred_quality
) -> Tuple[int, ...]:
    """ Phred-scaled normalized posterior probability of every copy-number state, -10 * log10(p_state) """
    log_posteriors = posterior.log_posteriors
    normalized = log_posteriors - logsumexp(log_posteriors)
    return tuple(_to_phred(min(0.0, float(value)), max_phred_quality) for value in normalized)


def get_reference_copy_number(
        contig: Text,
        context: SampleContext,
        baseline_copy_number: Optional[IntegerCopyNumberState] = None
) -> IntegerCopyNumberState:
    """
    Reference copy number depends only on the contig: the autosomal constant unless the contig is allosomal, in which
    case it is the sample's baseline copy number (its karyotype). If an allosomal record carries no baseline, use the
    contig ploidy call.
    """
    if not context.is_allosomal(contig):
        return context.autosomal_ref_copy_number
    if baseline_copy_number is not None:
        return baseline_copy_number
    if contig in context.contig_ploidy:
        return IntegerCopyNumberState(context.contig_ploidy[contig])
    raise ValueError(
        f"No baseline copy number or contig ploidy call available for allosomal contig {contig}"
    )


def get_alt_kind(called_state: CopyNumberLike, reference_copy_number: CopyNumberLike) -> AltKind:
    called_state = IntegerCopyNumberState(called_state)
    reference_copy_number = IntegerCopyNumberState(reference_copy_number)
    if called_state < reference_copy_number:
        return AltKind.DEL
    elif called_state > reference_copy_number:
        return AltKind.DUP
    else:
        return AltKind.REF


def genotype_interval(
        record: IntervalGenotypingRecord,
        context: SampleContext,
        max_phred_quality: int = Default.max_phred_quality
) -> IntervalGenotype:
    posterior = record.posterior
    called_state = get_called_state(posterior)
    reference_copy_number = get_reference_copy_number(
        record.interval.contig, context, baseline_copy_number=record.baseline_copy_number
    )
    return IntervalGenotype(
        interval=record.interval,
        called_state=called_state,
        quality=get_phred_quality(posterior, called_state, max_phred_quality=max_phred_quality),
        alt_kind=get_alt_kind(called_state, reference_copy_number),
        reference_copy_number=reference_copy_number,
        phred_posteriors=get_phred_posteriors(posterior, max_phred_quality=max_phred_quality)
    )


def iter_genotype_intervals(
        records: Iterable[IntervalGenotypingRecord],
        context: SampleContext,
        max_phred_quality: int = Default.max_phred_quality
) -> Iterator[IntervalGenotype]:
    num_records = 0
    for record in records:
        num_records += 1
        yield genotype_interval(record, context, max_phred_quality=max_phred_quality)
    logging.debug(f"Genotyped {num_records} intervals")
