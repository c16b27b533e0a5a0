import os
import pysam
import pytest

from gcnv_utils import variant_composer, segmentation, genotyping
from gcnv_utils.copy_number import (
    Interval, IntegerCopyNumberState, CopyNumberPosteriorDistribution, IntervalGenotypingRecord
)
from gcnv_utils.genotyping import SampleContext

import common_test_utils


class Default:
    resources_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "resources")
    segments_file = os.path.join(resources_dir, "copy_number_segments.tsv")
    sample_name = "SAMPLE_001"
    alleles = ("N", "<DEL>", "<DUP>")


def _segments_context(segments: segmentation.CopyNumberSegments) -> SampleContext:
    return SampleContext.build(
        sample_name=segments.sample_name, sequence_dictionary=segments.sequence_dictionary,
        autosomal_ref_copy_number=2, allosomal_contigs=["X"]
    )


def _genotypes(context: SampleContext, intervals, called_copy_numbers):
    records = [
        IntervalGenotypingRecord(
            interval,
            CopyNumberPosteriorDistribution(common_test_utils.peaked_log_posterior(called_copy_number, 0.99)),
            IntegerCopyNumberState(1 if interval.contig == "X" else 2)
        )
        for interval, called_copy_number in zip(intervals, called_copy_numbers)
    ]
    return genotyping.iter_genotype_intervals(records, context)


def _intervals_context() -> SampleContext:
    return SampleContext.build(
        sample_name=Default.sample_name, sequence_dictionary=common_test_utils.Default.sequence_dictionary,
        allosomal_contigs=["X"]
    )


def test_get_vcf_write_mode():
    assert variant_composer.get_vcf_write_mode("calls.vcf") == "w"
    assert variant_composer.get_vcf_write_mode("calls.vcf.gz") == "wz"
    assert variant_composer.get_vcf_write_mode("calls.bcf") == "wb"


def test_variant_id():
    assert variant_composer.get_variant_id(Interval("2", 230925, 231288)) == "CNV_2_230925_231288"


def test_write_segments_vcf(tmpdir, segments_file: str = Default.segments_file):
    segments = segmentation.read_copy_number_segments(segments_file)
    context = _segments_context(segments)
    output_vcf = os.path.join(tmpdir, "genotyped-segments.vcf")
    num_records = variant_composer.write_segments_vcf(output_vcf, segments, context, command_line="test")
    assert num_records == len(segments)

    with pysam.VariantFile(output_vcf, 'r') as f_in:
        assert list(f_in.header.samples) == [Default.sample_name]
        assert list(f_in.header.contigs) == ["1", "2", "X"]
        records = list(f_in)
    assert len(records) == len(segments)
    assert [(record.contig, record.pos, record.stop) for record in records] == [
        (segment.interval.contig, segment.interval.start, segment.interval.end) for segment in segments
    ]
    assert all(record.alleles == Default.alleles for record in records)

    deletion = records[2]
    assert deletion.id == "CNV_2_230925_231288"
    deletion_sample = deletion.samples[Default.sample_name]
    assert deletion_sample["GT"] == (1,)
    assert deletion_sample["CN"] == 0
    assert deletion_sample["NP"] == 2
    assert (deletion_sample["QA"], deletion_sample["QS"], deletion_sample["QSE"], deletion_sample["QSS"]) == \
        (91, 93, 52, 23)

    reference = records[0].samples[Default.sample_name]
    assert reference["GT"] == (0,)
    assert reference["CN"] == 2
    assert (reference["NP"], reference["QA"], reference["QS"], reference["QSE"], reference["QSS"]) == \
        (102, 68, 3077, 178, 173)

    # every segment carries its qualities through unchanged
    assert [
        tuple(record.samples[Default.sample_name][key] for key in ("NP", "QA", "QS", "QSE", "QSS"))
        for record in records
    ] == [
        (segment.num_points, segment.quality_all_called, segment.quality_some_called, segment.quality_end,
         segment.quality_start)
        for segment in segments
    ]

    # allosomal segments are called against the baseline copy number
    assert [record.samples[Default.sample_name]["GT"] for record in records[4:]] == [(0,), (2,)]


def test_write_intervals_vcf(tmpdir):
    context = _intervals_context()
    intervals = [Interval("1", 1, 1000), Interval("1", 1001, 2000), Interval("2", 1, 1000), Interval("X", 501, 501)]
    called_copy_numbers = [1, 2, 3, 1]
    output_vcf = os.path.join(tmpdir, "genotyped-intervals.vcf.gz")
    num_records = variant_composer.write_intervals_vcf(
        output_vcf, _genotypes(context, intervals, called_copy_numbers), context
    )
    assert num_records == len(intervals)
    assert os.path.isfile(output_vcf + ".tbi")

    with pysam.VariantFile(output_vcf, 'r') as f_in:
        records = list(f_in)
    assert [(record.contig, record.pos, record.stop) for record in records] == \
        [(interval.contig, interval.start, interval.end) for interval in intervals]
    samples = [record.samples[Default.sample_name] for record in records]
    assert [sample["GT"] for sample in samples] == [(1,), (0,), (2,), (0,)]
    assert [sample["CN"] for sample in samples] == called_copy_numbers
    assert all(sample["NP"] == 1 for sample in samples)
    assert all(sample["QA"] == 20 for sample in samples)
    assert all(len(sample["CNLP"]) == common_test_utils.Default.max_copy_number + 1 for sample in samples)
    assert [sample["CNLP"][called] for sample, called in zip(samples, called_copy_numbers)] == [0, 0, 0, 0]


def test_write_intervals_vcf_does_not_leave_partial_output(tmpdir):
    context = _intervals_context()

    def _failing_genotypes():
        yield from _genotypes(context, [Interval("1", 1, 1000)], [2])
        raise ValueError("posterior file is corrupt")

    output_vcf = os.path.join(tmpdir, "genotyped-intervals.vcf")
    with pytest.raises(ValueError):
        variant_composer.write_intervals_vcf(output_vcf, _failing_genotypes(), context)
    assert os.listdir(tmpdir) == []
