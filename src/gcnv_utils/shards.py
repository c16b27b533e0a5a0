import os
import logging
from typing import NamedTuple, List, Sequence, Text, Tuple, Collection

from gcnv_utils import common, genomics_io
from gcnv_utils.copy_number import Interval
from gcnv_utils.genomics_io import ShardIntervals, SequenceDictionary
from gcnv_utils.errors import ShardMismatchError, InconsistentShardError


class Shard(NamedTuple):
    """ Calls directory and model directory covering the same genomic region, identified by their interval list """
    calls_path: Text
    model_path: Text
    calls_intervals: ShardIntervals
    model_intervals: ShardIntervals

    @property
    def intervals(self) -> Tuple[Interval, ...]:
        return self.calls_intervals.intervals

    @property
    def sequence_dictionary(self) -> SequenceDictionary:
        return self.calls_intervals.sequence_dictionary


def read_shard_intervals(shard_paths: Sequence[Text]) -> List[ShardIntervals]:
    """ Read the interval list at the root of each shard directory, in the order given """
    shard_intervals = []
    for shard_path in shard_paths:
        interval_list_file = genomics_io.get_interval_list_file(shard_path)
        if not os.path.isfile(interval_list_file):
            raise FileNotFoundError(f"Interval list not found for shard {shard_path}: {interval_list_file}")
        try:
            shard_intervals.append(genomics_io.read_interval_list(interval_list_file))
        except ValueError as value_error:
            common.add_exception_context(value_error, f"Reading intervals of shard {shard_path}")
            raise
    return shard_intervals


def get_shard_sort_order(shard_intervals: Sequence[ShardIntervals], kind: str = "") -> List[int]:
    """
    Permutation putting shards in genome order, keyed by the first interval of each shard (contig order from the
    shard's sequence dictionary, then start, then end). The path of the shard is never used.
    """
    for index, intervals in enumerate(shard_intervals):
        if not intervals.intervals:
            raise ShardMismatchError(f"{kind}shard {index} ({intervals.path}) has an empty interval list")
    return sorted(
        range(len(shard_intervals)),
        key=lambda index: shard_intervals[index].location_sort_key(shard_intervals[index].intervals[0])
    )


def sort_shards(
        calls_shard_paths: Sequence[Text],
        model_shard_paths: Sequence[Text]
) -> List[Shard]:
    """
    Put calls and model shards (supplied in arbitrary order) in genome order, and pair them up.
    Args:
        calls_shard_paths: Sequence[Text]
            caller output directories, one per shard
        model_shard_paths: Sequence[Text]
            caller model directories, one per shard
    Returns:
        shards: List[Shard]
            shards in genome order
    Raises:
        ShardMismatchError: the number of calls and model shards differ, or their interval lists are not the same
    """
    if len(calls_shard_paths) != len(model_shard_paths):
        raise ShardMismatchError(
            "The number of input call shards must match the number of input model shards "
            f"({len(calls_shard_paths)} calls shards, {len(model_shard_paths)} model shards)."
        )
    if not calls_shard_paths:
        raise ShardMismatchError("At least one calls shard and one model shard must be provided.")

    calls_intervals = read_shard_intervals(calls_shard_paths)
    model_intervals = read_shard_intervals(model_shard_paths)
    calls_order = get_shard_sort_order(calls_intervals, kind="calls ")
    model_order = get_shard_sort_order(model_intervals, kind="model ")

    shards = []
    for shard_index, (calls_index, model_index) in enumerate(zip(calls_order, model_order)):
        if calls_intervals[calls_index].intervals != model_intervals[model_index].intervals:
            raise ShardMismatchError(
                f"The interval lists found in model and call shards do not match at sorted shard {shard_index} "
                f"(calls: {calls_shard_paths[calls_index]}, model: {model_shard_paths[model_index]}). Make sure "
                "that every calls shard has exactly one model shard."
            )
        shards.append(
            Shard(calls_path=calls_shard_paths[calls_index], model_path=model_shard_paths[model_index],
                  calls_intervals=calls_intervals[calls_index], model_intervals=model_intervals[model_index])
        )
    logging.info(f"Sorted {len(shards)} shards")
    return shards


def validate_sequence_dictionaries(shards: Sequence[Shard]) -> SequenceDictionary:
    """ Every calls and model shard must share the first calls shard's sequence dictionary exactly """
    sequence_dictionary = shards[0].sequence_dictionary
    for shard_index, shard in enumerate(shards):
        if shard.calls_intervals.sequence_dictionary != sequence_dictionary:
            raise InconsistentShardError(
                shard_index, "sequence dictionary",
                f"The sequence dictionary of calls shard {shard.calls_path} differs from that of shard 0."
            )
        if shard.model_intervals.sequence_dictionary != sequence_dictionary:
            raise InconsistentShardError(
                shard_index, "sequence dictionary",
                f"The sequence dictionary of model shard {shard.model_path} differs from that of the calls shards."
            )
    return sequence_dictionary


def get_shard_sample_name(shard: Shard, sample_index: int) -> str:
    sample_name_file = genomics_io.get_sample_name_file(shard.calls_path, sample_index)
    if not os.path.isfile(sample_name_file):
        raise FileNotFoundError(f"Sample name text file not found: {sample_name_file}")
    return genomics_io.read_sample_name(sample_name_file)


def validate_sample_names(shards: Sequence[Shard], sample_index: int) -> str:
    """ The sample-identity marker of every calls shard must name the same sample """
    sample_name = get_shard_sample_name(shards[0], sample_index)
    if not sample_name:
        raise InconsistentShardError(0, "sample name", "The sample name text file is empty.")
    for shard_index, shard in enumerate(shards[1:], start=1):
        shard_sample_name = get_shard_sample_name(shard, sample_index)
        if shard_sample_name != sample_name:
            raise InconsistentShardError(
                shard_index, "sample name",
                f"The sample name is not the same for all of the shards (found: {shard_sample_name}, expected: "
                f"{sample_name})."
            )
    return sample_name


def validate_allosomal_contigs(allosomal_contigs: Collection[str], sequence_dictionary: SequenceDictionary):
    unknown_contigs = set(allosomal_contigs).difference(sequence_dictionary.contig_names)
    if unknown_contigs:
        raise InconsistentShardError(
            None, "allosomal contigs",
            "The specified allosomal contigs must be contained in the sequence dictionary of the call-set "
            f"(unknown allosomal contigs: [{', '.join(sorted(unknown_contigs))}], "
            f"all contigs: [{', '.join(sequence_dictionary.contig_names)}])"
        )


def validate_no_overlap(shards: Sequence[Shard], sequence_dictionary: SequenceDictionary):
    """ Sorted shards must tile the genome without overlap: each shard ends before the next one begins """
    for shard_index, (shard, next_shard) in enumerate(common.iter_pairs(shards), start=1):
        last_interval = shard.intervals[-1]
        next_interval = next_shard.intervals[0]
        last_end = (sequence_dictionary.contig_index(last_interval.contig), last_interval.end)
        next_start = (sequence_dictionary.contig_index(next_interval.contig), next_interval.start)
        if last_end >= next_start:
            raise InconsistentShardError(
                shard_index, "overlapping shards",
                f"Shard {next_shard.calls_path} begins at {next_interval} before the previous shard "
                f"{shard.calls_path} ends at {last_interval}."
            )


def validate_shards(
        shards: Sequence[Shard],
        sample_index: int,
        allosomal_contigs: Collection[str] = ()
) -> Tuple[SequenceDictionary, str]:
    """
    Certify sorted shards before any output is written.
    Args:
        shards: Sequence[Shard]
            shards in genome order (output of sort_shards)
        sample_index: int
            index of the sample in the call-set
        allosomal_contigs: Collection[str]
            contigs whose reference copy number follows the sample karyotype
    Returns:
        sequence_dictionary: SequenceDictionary
            dictionary shared by all shards
        sample_name: str
            sample name shared by all shards
    Raises:
        InconsistentShardError: naming the offending shard and the mismatch
    """
    sequence_dictionary = validate_sequence_dictionaries(shards)
    sample_name = validate_sample_names(shards, sample_index)
    if allosomal_contigs:
        validate_allosomal_contigs(allosomal_contigs, sequence_dictionary)
    else:
        logging.warning("Allosomal contigs were not specified; setting ref copy-number allele to the autosomal "
                        "ref copy-number for all intervals.")
    validate_no_overlap(shards, sequence_dictionary)
    return sequence_dictionary, sample_name
