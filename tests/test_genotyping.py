import math
import numpy
import pytest

from gcnv_utils import genotyping
from gcnv_utils.copy_number import (
    IntegerCopyNumberState, CopyNumberPosteriorDistribution, IntervalGenotypingRecord, Interval
)
from gcnv_utils.errors import InvalidPosteriorError, InconsistentShardError
from gcnv_utils.genotyping import AltKind, SampleContext

import common_test_utils


class Default:
    max_phred_quality = genotyping.Default.max_phred_quality
    context = SampleContext.build(
        sample_name=common_test_utils.Default.sample_name,
        sequence_dictionary=common_test_utils.Default.sequence_dictionary,
        autosomal_ref_copy_number=2,
        allosomal_contigs=["X"],
        contig_ploidy={"1": 2, "X": 1}
    )


def _posterior(called_copy_number: int, p_called: float = 0.9) -> CopyNumberPosteriorDistribution:
    return CopyNumberPosteriorDistribution(common_test_utils.peaked_log_posterior(called_copy_number, p_called))


def test_called_state_ties_go_to_lowest_state():
    posterior = CopyNumberPosteriorDistribution(numpy.log([0.1, 0.4, 0.4, 0.1]))
    assert genotyping.get_called_state(posterior) == IntegerCopyNumberState(1)
    # reproducible
    assert all(genotyping.get_called_state(posterior) == IntegerCopyNumberState(1) for __ in range(10))


@pytest.mark.parametrize("called_copy_number", [0, 1, 2, 3, 5])
def test_called_state(called_copy_number: int):
    assert genotyping.get_called_state(_posterior(called_copy_number)).copy_number == called_copy_number


def test_phred_quality_values():
    assert genotyping.get_phred_quality(CopyNumberPosteriorDistribution(numpy.log([0.1, 0.9]))) == 10
    assert genotyping.get_phred_quality(CopyNumberPosteriorDistribution(numpy.log([0.01, 0.99]))) == 20
    # posteriors need not be normalized
    assert genotyping.get_phred_quality(CopyNumberPosteriorDistribution(numpy.log([9.0, 1.0]))) == 10
    # quality of a state other than the called one
    assert genotyping.get_phred_quality(CopyNumberPosteriorDistribution(numpy.log([0.1, 0.9])), state=0) == 0


def test_phred_quality_is_monotone():
    p_called_values = [0.3, 0.5, 0.8, 0.9, 0.99, 0.999, 0.99999, 1.0 - 1e-12]
    qualities = [genotyping.get_phred_quality(_posterior(2, p_called)) for p_called in p_called_values]
    assert qualities == sorted(qualities)
    assert all(0 <= quality <= Default.max_phred_quality for quality in qualities)


@pytest.mark.parametrize(
    "log_posteriors",
    [[0.0, -1.0e6], [0.0, -math.inf, -math.inf], [0.0]]
)
def test_phred_quality_is_clamped(log_posteriors):
    quality = genotyping.get_phred_quality(CopyNumberPosteriorDistribution(log_posteriors))
    assert quality == Default.max_phred_quality
    assert genotyping.get_phred_quality(CopyNumberPosteriorDistribution(log_posteriors), max_phred_quality=60) == 60


def test_phred_quality_state_outside_range():
    with pytest.raises(InvalidPosteriorError):
        genotyping.get_phred_quality(_posterior(2), state=common_test_utils.Default.max_copy_number + 1)


def test_phred_posteriors():
    posterior = CopyNumberPosteriorDistribution([math.log(0.9), math.log(0.1), -math.inf])
    phred_posteriors = genotyping.get_phred_posteriors(posterior)
    assert phred_posteriors == (0, 10, Default.max_phred_quality)


@pytest.mark.parametrize(
    "called_copy_number,alt_kind",
    [(0, AltKind.DEL), (1, AltKind.DEL), (2, AltKind.REF), (3, AltKind.DUP), (5, AltKind.DUP)]
)
def test_alt_kind(called_copy_number: int, alt_kind: AltKind):
    assert genotyping.get_alt_kind(called_copy_number, 2) == alt_kind


def test_genotype_index_at_reference_boundaries():
    reference = Default.context.autosomal_ref_copy_number.copy_number
    genotype_indices = [
        genotyping.genotype_interval(
            IntervalGenotypingRecord(Interval("1", 1001, 2000), _posterior(called), IntegerCopyNumberState(2)),
            Default.context
        ).genotype_index
        for called in (reference - 1, reference, reference + 1)
    ]
    assert genotype_indices == [1, 0, 2]


def test_allosomal_reference_is_baseline():
    def _genotype(contig: str, called: int, baseline: int) -> genotyping.IntervalGenotype:
        return genotyping.genotype_interval(
            IntervalGenotypingRecord(Interval(contig, 1001, 2000), _posterior(called), IntegerCopyNumberState(baseline)),
            Default.context
        )

    assert _genotype("X", 1, 1).alt_kind == AltKind.REF
    assert _genotype("X", 2, 1).alt_kind == AltKind.DUP
    assert _genotype("X", 0, 1).alt_kind == AltKind.DEL
    assert _genotype("X", 1, 1).reference_copy_number == IntegerCopyNumberState(1)
    # autosomal contigs ignore the baseline
    assert _genotype("1", 1, 1).alt_kind == AltKind.DEL
    assert _genotype("1", 1, 1).reference_copy_number == IntegerCopyNumberState(2)


def test_genotype_interval_fields():
    genotype = genotyping.genotype_interval(
        IntervalGenotypingRecord(Interval("2", 501, 1000), _posterior(3, 0.99), IntegerCopyNumberState(2)),
        Default.context
    )
    assert genotype.interval == Interval("2", 501, 1000)
    assert genotype.called_state == IntegerCopyNumberState(3)
    assert genotype.quality == 20
    assert genotype.genotype_index == AltKind.DUP.genotype_index
    assert len(genotype.phred_posteriors) == common_test_utils.Default.max_copy_number + 1
    assert genotype.phred_posteriors[3] == 0


def test_reference_copy_number_falls_back_to_contig_ploidy():
    assert genotyping.get_reference_copy_number("X", Default.context) == IntegerCopyNumberState(1)
    context = SampleContext.build(
        sample_name=common_test_utils.Default.sample_name,
        sequence_dictionary=common_test_utils.Default.sequence_dictionary,
        allosomal_contigs=["X"]
    )
    with pytest.raises(ValueError):
        genotyping.get_reference_copy_number("X", context)


def test_sample_context_rejects_unknown_allosomal_contig():
    with pytest.raises(InconsistentShardError):
        SampleContext.build(
            sample_name=common_test_utils.Default.sample_name,
            sequence_dictionary=common_test_utils.Default.sequence_dictionary,
            allosomal_contigs=["Y"]
        )


def test_iter_genotype_intervals_preserves_order():
    intervals = [Interval("1", 1 + 100 * index, 100 * (index + 1)) for index in range(20)]
    records = [
        IntervalGenotypingRecord(interval, _posterior(index % 4), IntegerCopyNumberState(2))
        for index, interval in enumerate(intervals)
    ]
    genotypes = list(genotyping.iter_genotype_intervals(iter(records), Default.context))
    assert [genotype.interval for genotype in genotypes] == intervals
    assert [genotype.called_state.copy_number for genotype in genotypes] == [index % 4 for index in range(20)]
