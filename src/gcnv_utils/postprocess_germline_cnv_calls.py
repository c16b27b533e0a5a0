#!/usr/bin/env python
import os
import sys
import shlex
import logging
import argparse
import tempfile
from typing import List, Text, Optional, Sequence, Collection, NamedTuple

from gcnv_utils import common, genomics_io, shards, concatenate, genotyping, segmentation, variant_composer
from gcnv_utils.errors import InconsistentShardError
from gcnv_utils.genotyping import SampleContext
from gcnv_utils.segmentation import SegmentationEngine, SubprocessSegmentationEngine, SegmentsFileEngine


class Default:
    sample_index = 0
    autosomal_ref_copy_number = genotyping.Default.autosomal_ref_copy_number
    max_phred_quality = genotyping.Default.max_phred_quality
    index_output_vcf = variant_composer.Default.index_output_vcf
    segmentation_command = segmentation.Default.segmentation_command
    log_level = "INFO"
    log_format = "%(asctime)s - %(message)s"


class PostprocessSummary(NamedTuple):
    sample_name: str
    num_shards: int
    num_intervals: int
    num_segments: int
    num_copy_ratios: int


def validate_output_paths(*output_paths: Text):
    """ Fail before any processing if an output could not be created """
    for output_path in output_paths:
        output_dir = os.path.dirname(os.path.abspath(output_path))
        if not os.path.isdir(output_dir):
            raise FileNotFoundError(f"Output directory does not exist for {output_path}: {output_dir}")


def get_contig_ploidy(ploidy_calls_path: Optional[Text], sample_index: int) -> dict:
    if ploidy_calls_path is None:
        return {}
    contig_ploidy_file = genomics_io.get_contig_ploidy_file(ploidy_calls_path, sample_index)
    if not os.path.isfile(contig_ploidy_file):
        logging.warning(f"No contig ploidy calls found at {contig_ploidy_file}")
        return {}
    return genomics_io.read_contig_ploidy(contig_ploidy_file)


def validate_segments(segments: segmentation.CopyNumberSegments, context: SampleContext):
    """ Segments must describe the same sample, over the same contigs, as the shards """
    if segments.sample_name is not None and segments.sample_name != context.sample_name:
        raise InconsistentShardError(
            None, "sample name",
            f"The segments file names sample {segments.sample_name} but the shards name {context.sample_name}."
        )
    if len(segments.sequence_dictionary) > 0 and segments.sequence_dictionary != context.sequence_dictionary:
        raise InconsistentShardError(
            None, "sequence dictionary",
            "The sequence dictionary of the segments file differs from that of the shards."
        )
    for segment in segments:
        if segment.interval.contig not in context.sequence_dictionary:
            raise InconsistentShardError(
                None, "sequence dictionary",
                f"Segment {segment.interval} is on a contig that is not in the sequence dictionary of the shards."
            )


def postprocess_germline_cnv_calls(
        calls_shard_paths: Sequence[Text],
        model_shard_paths: Sequence[Text],
        ploidy_calls_path: Optional[Text],
        output_genotyped_intervals: Text,
        output_genotyped_segments: Text,
        output_denoised_copy_ratios: Text,
        segmentation_engine: SegmentationEngine,
        sample_index: int = Default.sample_index,
        autosomal_ref_copy_number: int = Default.autosomal_ref_copy_number,
        allosomal_contigs: Collection[str] = (),
        max_phred_quality: int = Default.max_phred_quality,
        index_output_vcf: bool = Default.index_output_vcf,
        command_line: Optional[Text] = None
) -> PostprocessSummary:
    f"""
    Merge the sharded calls of one sample into a genotyped-intervals VCF, a genotyped-segments VCF and a denoised
    copy-ratio table. Shards may be passed in any order; they are put in genome order by their interval lists.
    Either all three outputs are written or, if anything fails, none of them is.
    Args:
        calls_shard_paths: Sequence[Text]
            Caller output directories, one per shard
        model_shard_paths: Sequence[Text]
            Caller model directories, one per shard
        ploidy_calls_path: Text or None
            Contig-ploidy calls directory
        output_genotyped_intervals: Text
            Path to output intervals VCF
        output_genotyped_segments: Text
            Path to output segments VCF
        output_denoised_copy_ratios: Text
            Path to output denoised copy-ratio table
        segmentation_engine: SegmentationEngine
            Produces the segments of the sample
        sample_index: int (Default={Default.sample_index})
            Index of the sample in the call-set
        autosomal_ref_copy_number: int (Default={Default.autosomal_ref_copy_number})
            Reference copy number on autosomal contigs
        allosomal_contigs: Collection[str] (Default=())
            Contigs whose reference copy number is the sample's baseline copy number
        max_phred_quality: int (Default={Default.max_phred_quality})
            Cap for phred-scaled qualities
        index_output_vcf: bool (Default={Default.index_output_vcf})
            If True, tabix-index bgzipped output VCFs
        command_line: Text or None
            Recorded in the VCF headers
    Returns:
        summary: PostprocessSummary
            Record counts of each output
    """
    if sample_index < 0:
        raise ValueError(f"Sample index must be non-negative, got {sample_index}")
    validate_output_paths(output_genotyped_intervals, output_genotyped_segments, output_denoised_copy_ratios)

    sorted_shards = shards.sort_shards(calls_shard_paths, model_shard_paths)
    sequence_dictionary, sample_name = shards.validate_shards(
        sorted_shards, sample_index, allosomal_contigs=allosomal_contigs
    )
    context = SampleContext.build(
        sample_name=sample_name, sequence_dictionary=sequence_dictionary,
        autosomal_ref_copy_number=autosomal_ref_copy_number, allosomal_contigs=allosomal_contigs,
        contig_ploidy=get_contig_ploidy(ploidy_calls_path, sample_index)
    )
    logging.info(f"Postprocessing calls of sample {sample_name} (index {sample_index}) from {len(sorted_shards)} "
                 "shards")

    with tempfile.TemporaryDirectory(prefix="gcnv_segments_") as segments_output_path:
        segments = segmentation_engine.segment(
            ploidy_calls_path=ploidy_calls_path,
            model_shard_paths=[shard.model_path for shard in sorted_shards],
            calls_shard_paths=[shard.calls_path for shard in sorted_shards],
            sample_index=sample_index,
            output_path=segments_output_path
        )
    validate_segments(segments, context)
    copy_ratios = concatenate.concatenate_denoised_copy_ratios(sorted_shards, sample_index, sample_name)

    # outputs only appear once all three are complete
    with common.atomic_output_files(
            output_genotyped_intervals, output_genotyped_segments, output_denoised_copy_ratios
    ) as (temporary_intervals, temporary_segments, temporary_copy_ratios):
        num_intervals = variant_composer.write_intervals_vcf(
            temporary_intervals,
            genotyping.iter_genotype_intervals(
                concatenate.iter_genotyping_records(sorted_shards, sample_index, sample_name), context,
                max_phred_quality=max_phred_quality
            ),
            context, command_line=command_line, index_output_vcf=False
        )
        num_segments = variant_composer.write_segments_vcf(
            temporary_segments, segments, context, command_line=command_line, index_output_vcf=False
        )
        logging.info(f"Writing denoised copy ratios to {output_denoised_copy_ratios}...")
        genomics_io.write_denoised_copy_ratios(temporary_copy_ratios, copy_ratios, sample_name, sequence_dictionary)
    if index_output_vcf:
        variant_composer.index_vcf(output_genotyped_intervals)
        variant_composer.index_vcf(output_genotyped_segments)

    logging.info(f"Wrote {num_intervals} intervals, {num_segments} segments and {len(copy_ratios)} copy ratios")
    return PostprocessSummary(sample_name=sample_name, num_shards=len(sorted_shards), num_intervals=num_intervals,
                              num_segments=num_segments, num_copy_ratios=len(copy_ratios))


def __parse_arguments(argv: List[Text]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Merge sharded germline CNV calls of one sample into genotyped-intervals and genotyped-segments "
                    "VCFs and a denoised copy-ratio table",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        prog=argv[0]
    )
    parser.add_argument("--calls-shard-path", type=str, action="append", required=True,
                        help="caller output directory of one shard. Pass once per shard, in any order")
    parser.add_argument("--model-shard-path", type=str, action="append", required=True,
                        help="caller model directory of one shard. Pass once per shard, in any order")
    parser.add_argument("--contig-ploidy-calls", type=str, required=True,
                        help="contig-ploidy calls directory")
    parser.add_argument("--sample-index", type=int, default=Default.sample_index,
                        help="index of the sample in the call-set")
    parser.add_argument("--autosomal-ref-copy-number", type=int, default=Default.autosomal_ref_copy_number,
                        help="reference copy number on autosomal contigs")
    parser.add_argument("--allosomal-contig", type=str, action="append", default=[],
                        help="contig whose reference copy number follows the sample karyotype. Pass once per contig")
    parser.add_argument("--max-phred-quality", type=int, default=Default.max_phred_quality,
                        help="cap for phred-scaled qualities")
    parser.add_argument("--output-genotyped-intervals", type=str, required=True,
                        help="output VCF with one record per interval")
    parser.add_argument("--output-genotyped-segments", type=str, required=True,
                        help="output VCF with one record per segment")
    parser.add_argument("--output-denoised-copy-ratios", type=str, required=True,
                        help="output table of denoised copy ratios")
    parser.add_argument("--segmentation-command", type=str, default=Default.segmentation_command,
                        help="command that runs the segmentation engine")
    parser.add_argument("--segments-file", type=str, default=None,
                        help="use an existing copy-number segments file instead of running the segmentation engine")
    parser.add_argument("--index-output-vcf", action=argparse.BooleanOptionalAction, default=Default.index_output_vcf,
                        help="if true, create tabix index for bgzipped output VCFs")
    parser.add_argument("--log-level", type=str, default=Default.log_level,
                        help="Specify level of logging information, ie. info, warning, error (not case-sensitive)")
    return parser.parse_args(argv[1:] if len(argv) > 1 else ["--help"])


def main(argv: Optional[List[Text]] = None):
    argv = sys.argv if argv is None else argv
    args = __parse_arguments(argv)
    numeric_level = getattr(logging, args.log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {args.log_level}")
    logging.basicConfig(level=numeric_level, format=Default.log_format)

    segmentation_engine = SubprocessSegmentationEngine(args.segmentation_command) if args.segments_file is None \
        else SegmentsFileEngine(args.segments_file)
    postprocess_germline_cnv_calls(
        calls_shard_paths=args.calls_shard_path,
        model_shard_paths=args.model_shard_path,
        ploidy_calls_path=args.contig_ploidy_calls,
        output_genotyped_intervals=args.output_genotyped_intervals,
        output_genotyped_segments=args.output_genotyped_segments,
        output_denoised_copy_ratios=args.output_denoised_copy_ratios,
        segmentation_engine=segmentation_engine,
        sample_index=args.sample_index,
        autosomal_ref_copy_number=args.autosomal_ref_copy_number,
        allosomal_contigs=args.allosomal_contig,
        max_phred_quality=args.max_phred_quality,
        index_output_vcf=args.index_output_vcf,
        command_line=' '.join(shlex.quote(arg) for arg in argv)
    )


if __name__ == "__main__":
    main()
