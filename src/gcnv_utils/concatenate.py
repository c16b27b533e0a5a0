import logging
from typing import List, Sequence, Text, Optional, Iterator

from gcnv_utils import genomics_io
from gcnv_utils.copy_number import IntervalGenotypingRecord, DenoisedCopyRatioRecord
from gcnv_utils.errors import LengthMismatchError, InconsistentShardError
from gcnv_utils.shards import Shard


def _validate_file_sample_name(
        file_sample_name: Optional[str],
        sample_name: str,
        shard_index: int,
        data_file: Text
):
    if file_sample_name != sample_name:
        raise InconsistentShardError(
            shard_index, "sample name",
            f"Sample name found in the header of {data_file} is different from the expected sample name (found: "
            f"{file_sample_name}, expected: {sample_name})."
        )


def _validate_length(num_records: int, num_intervals: int, shard_index: int, stream_name: str):
    if num_records != num_intervals:
        raise LengthMismatchError(
            shard_index=shard_index, stream_name=stream_name, num_records=num_records, num_intervals=num_intervals
        )


def get_shard_genotyping_records(
        shard: Shard,
        shard_index: int,
        sample_index: int,
        sample_name: str
) -> List[IntervalGenotypingRecord]:
    """
    Zip the interval list, copy-number posteriors and baseline copy numbers of one calls shard into genotyping records.
    Args:
        shard: Shard
            sorted shard
        shard_index: int
            position of the shard in genome order (for error messages)
        sample_index: int
            index of the sample in the call-set
        sample_name: str
            expected sample name
    Returns:
        records: List[IntervalGenotypingRecord]
            one record per interval, in interval-list order
    Raises:
        LengthMismatchError: posterior or baseline file has a different number of rows than the interval list
    """
    posterior_file = genomics_io.get_copy_number_posterior_file(shard.calls_path, sample_index)
    posterior_sample_name, posteriors = genomics_io.read_copy_number_posteriors(posterior_file)
    _validate_file_sample_name(posterior_sample_name, sample_name, shard_index, posterior_file)

    baseline_file = genomics_io.get_baseline_copy_number_file(shard.calls_path, sample_index)
    baseline_sample_name, baselines = genomics_io.read_baseline_copy_numbers(baseline_file)
    _validate_file_sample_name(baseline_sample_name, sample_name, shard_index, baseline_file)

    intervals = shard.intervals
    _validate_length(len(posteriors), len(intervals), shard_index, "copy-number posterior")
    _validate_length(len(baselines), len(intervals), shard_index, "baseline copy-number")
    return [
        IntervalGenotypingRecord(interval=interval, posterior=posterior, baseline_copy_number=baseline)
        for interval, posterior, baseline in zip(intervals, posteriors, baselines)
    ]


def iter_genotyping_records(
        shards: Sequence[Shard],
        sample_index: int,
        sample_name: str
) -> Iterator[IntervalGenotypingRecord]:
    """ Genome-ordered genotyping records; only one shard's records are held in memory at a time """
    num_shards = len(shards)
    for shard_index, shard in enumerate(shards):
        logging.info(f"Analyzing shard {shard_index} / {num_shards}...")
        yield from get_shard_genotyping_records(shard, shard_index, sample_index, sample_name)


def get_shard_denoised_copy_ratios(
        shard: Shard,
        shard_index: int,
        sample_index: int,
        sample_name: str
) -> List[DenoisedCopyRatioRecord]:
    copy_ratio_file = genomics_io.get_denoised_copy_ratio_file(shard.calls_path, sample_index)
    file_sample_name, copy_ratios = genomics_io.read_denoised_copy_ratios(copy_ratio_file)
    _validate_file_sample_name(file_sample_name, sample_name, shard_index, copy_ratio_file)
    intervals = shard.intervals
    _validate_length(len(copy_ratios), len(intervals), shard_index, "denoised copy ratio")
    return [
        DenoisedCopyRatioRecord(interval=interval, linear_copy_ratio=copy_ratio)
        for interval, copy_ratio in zip(intervals, copy_ratios)
    ]


def concatenate_denoised_copy_ratios(
        shards: Sequence[Shard],
        sample_index: int,
        sample_name: str
) -> List[DenoisedCopyRatioRecord]:
    """
    Append every shard's (interval, denoised copy ratio) pairs in shard order. No deduplication is performed: shards are
    already certified not to overlap.
    """
    concatenated = []
    for shard_index, shard in enumerate(shards):
        concatenated.extend(get_shard_denoised_copy_ratios(shard, shard_index, sample_index, sample_name))
    logging.info(f"Concatenated {len(concatenated)} denoised copy ratios from {len(shards)} shards")
    return concatenated
