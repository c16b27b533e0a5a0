import logging
from types import MappingProxyType
from typing import Iterable, Dict, Any, Text, Optional, Sequence, Tuple, Callable
import pysam

from gcnv_utils import common
from gcnv_utils.copy_number import Interval, SegmentRecord
from gcnv_utils.genomics_io import SequenceDictionary
from gcnv_utils.genotyping import (
    SampleContext, IntervalGenotype, AltKind, get_alt_kind, get_reference_copy_number
)


class VcfKeys:
    end = "END"
    gt = "GT"
    cn = "CN"
    np = "NP"
    qa = "QA"
    qs = "QS"
    qse = "QSE"
    qss = "QSS"
    cnlp = "CNLP"


class Default:
    ref_allele = "N"
    alleles = (ref_allele, AltKind.DEL.symbol, AltKind.DUP.symbol)
    variant_id_prefix = "CNV"
    source = "gcnv-utils"
    index_output_vcf = True
    alt_descriptions = MappingProxyType({
        AltKind.DEL.name: "Deletion below the reference copy number",
        AltKind.DUP.name: "Duplication above the reference copy number"
    })
    # (id, number, type, description)
    interval_formats = (
        (VcfKeys.gt, 1, "String", "Genotype: 0 for reference, 1 for <DEL>, 2 for <DUP>"),
        (VcfKeys.cn, 1, "Integer", "Copy number maximum a posteriori value"),
        (VcfKeys.np, 1, "Integer", "Number of points (i.e. targets or bins) in the variant"),
        (VcfKeys.qa, 1, "Integer", "Complementary Phred-scaled probability that the copy-number call is correct"),
        (VcfKeys.cnlp, ".", "Integer", "Copy number log posterior (in Phred-scale) for every copy-number state"),
    )
    segment_formats = (
        (VcfKeys.gt, 1, "String", "Genotype: 0 for reference, 1 for <DEL>, 2 for <DUP>"),
        (VcfKeys.cn, 1, "Integer", "Segment most-likely copy-number call"),
        (VcfKeys.np, 1, "Integer", "Number of points (i.e. targets or bins) in the segment"),
        (VcfKeys.qa, 1, "Integer", "Complementary Phred-scaled probability that all points (i.e. targets or bins) "
                                   "in the segment agree with the segment copy-number call"),
        (VcfKeys.qs, 1, "Integer", "Complementary Phred-scaled probability that at least one point (i.e. target or "
                                   "bin) in the segment agrees with the segment copy-number call"),
        (VcfKeys.qse, 1, "Integer", "Complementary Phred-scaled probability that the segment end position is a "
                                    "genuine copy-number changepoint"),
        (VcfKeys.qss, 1, "Integer", "Complementary Phred-scaled probability that the segment start position is a "
                                    "genuine copy-number changepoint"),
    )


def get_variant_id(interval: Interval) -> str:
    return f"{Default.variant_id_prefix}_{interval.contig}_{interval.start}_{interval.end}"


def get_interval_format_fields(genotype: IntervalGenotype) -> Dict[str, Any]:
    """ FORMAT values for one genotyped interval, in header order. An interval is always a single point """
    return {
        VcfKeys.gt: genotype.genotype_index,
        VcfKeys.cn: genotype.called_state.copy_number,
        VcfKeys.np: 1,
        VcfKeys.qa: genotype.quality,
        VcfKeys.cnlp: genotype.phred_posteriors
    }


def get_segment_format_fields(segment: SegmentRecord, context: SampleContext) -> Dict[str, Any]:
    """
    FORMAT values for one segment. GT and CN are re-derived from the segment call and the reference copy number of the
    contig; the quality metrics are passed through unchanged.
    """
    reference_copy_number = get_reference_copy_number(
        segment.interval.contig, context, baseline_copy_number=segment.baseline_copy_number
    )
    return {
        VcfKeys.gt: get_alt_kind(segment.call_copy_number, reference_copy_number).genotype_index,
        VcfKeys.cn: segment.call_copy_number.copy_number,
        VcfKeys.np: segment.num_points,
        VcfKeys.qa: segment.quality_all_called,
        VcfKeys.qs: segment.quality_some_called,
        VcfKeys.qse: segment.quality_end,
        VcfKeys.qss: segment.quality_start
    }


def make_vcf_header(
        sample_name: Text,
        sequence_dictionary: SequenceDictionary,
        format_lines: Sequence[Tuple[str, Any, str, str]],
        command_line: Optional[Text] = None
) -> pysam.VariantHeader:
    header = pysam.VariantHeader()
    header.add_meta("source", value=Default.source)
    if command_line:
        header.add_meta("gcnv_utils_command", value=command_line)
    for sequence_record in sequence_dictionary:
        header.contigs.add(sequence_record.name, length=sequence_record.length)
    for alt_id, description in Default.alt_descriptions.items():
        header.add_meta("ALT", items=[("ID", alt_id), ("Description", description)])
    header.info.add(VcfKeys.end, 1, "Integer", "End coordinate of the variant")
    for format_id, number, field_type, description in format_lines:
        header.formats.add(format_id, number, field_type, description)
    header.add_sample(sample_name)
    return header


def make_intervals_vcf_header(context: SampleContext, command_line: Optional[Text] = None) -> pysam.VariantHeader:
    return make_vcf_header(context.sample_name, context.sequence_dictionary, Default.interval_formats,
                           command_line=command_line)


def make_segments_vcf_header(context: SampleContext, command_line: Optional[Text] = None) -> pysam.VariantHeader:
    return make_vcf_header(context.sample_name, context.sequence_dictionary, Default.segment_formats,
                           command_line=command_line)


def compose_variant_record(
        header: pysam.VariantHeader,
        interval: Interval,
        sample_name: Text,
        format_fields: Dict[str, Any]
) -> pysam.VariantRecord:
    """
    Build a VCF record with the fixed allele set (N, <DEL>, <DUP>). GT is haploid: the index of the called allele.
    """
    record = header.new_record(
        contig=interval.contig, start=interval.start - 1, stop=interval.end, alleles=Default.alleles,
        id=get_variant_id(interval)
    )
    # symbolic alleles: the reference length, and hence END, comes from stop
    record.stop = interval.end
    sample = record.samples[sample_name]
    for key, value in format_fields.items():
        sample[key] = (value,) if key == VcfKeys.gt else value
    return record


def compose_interval_record(
        header: pysam.VariantHeader,
        genotype: IntervalGenotype,
        context: SampleContext
) -> pysam.VariantRecord:
    return compose_variant_record(header, genotype.interval, context.sample_name, get_interval_format_fields(genotype))


def compose_segment_record(
        header: pysam.VariantHeader,
        segment: SegmentRecord,
        context: SampleContext
) -> pysam.VariantRecord:
    return compose_variant_record(header, segment.interval, context.sample_name,
                                  get_segment_format_fields(segment, context))


def get_vcf_write_mode(output_vcf: Text) -> str:
    if output_vcf.endswith(".bcf"):
        return "wb"
    return "wz" if output_vcf.endswith(".gz") else "w"


def _write_vcf(
        output_vcf: Text,
        header: pysam.VariantHeader,
        records: Iterable[Any],
        compose: Callable[[pysam.VariantHeader, Any], pysam.VariantRecord],
        index_output_vcf: bool
) -> int:
    # records are written to a temporary file that only replaces output_vcf once every record has been composed
    with common.atomic_output_file(output_vcf) as temporary_vcf:
        with pysam.VariantFile(temporary_vcf, get_vcf_write_mode(output_vcf), header=header) as f_out:
            num_records = 0
            for record in records:
                f_out.write(compose(f_out.header, record))
                num_records += 1
    if index_output_vcf:
        index_vcf(output_vcf)
    return num_records


def index_vcf(output_vcf: Text):
    # only bgzipped VCFs can be tabix-indexed
    if output_vcf.endswith(".gz"):
        pysam.tabix_index(output_vcf, preset="vcf", force=True)


def write_intervals_vcf(
        output_vcf: Text,
        genotypes: Iterable[IntervalGenotype],
        context: SampleContext,
        command_line: Optional[Text] = None,
        index_output_vcf: bool = Default.index_output_vcf
) -> int:
    """ Write one record per genotyped interval, in input order. Returns the number of records written """
    logging.info(f"Writing intervals VCF file to {output_vcf}...")
    return _write_vcf(
        output_vcf, make_intervals_vcf_header(context, command_line=command_line), genotypes,
        lambda header, genotype: compose_interval_record(header, genotype, context),
        index_output_vcf=index_output_vcf
    )


def write_segments_vcf(
        output_vcf: Text,
        segments: Iterable[SegmentRecord],
        context: SampleContext,
        command_line: Optional[Text] = None,
        index_output_vcf: bool = Default.index_output_vcf
) -> int:
    """ Write one record per segment, in input order. Returns the number of records written """
    logging.info(f"Writing segments VCF file to {output_vcf}...")
    return _write_vcf(
        output_vcf, make_segments_vcf_header(context, command_line=command_line), segments,
        lambda header, segment: compose_segment_record(header, segment, context),
        index_output_vcf=index_output_vcf
    )
