import random
import pytest

from gcnv_utils import concatenate, shards
from gcnv_utils.copy_number import Interval, IntegerCopyNumberState
from gcnv_utils.errors import LengthMismatchError, InconsistentShardError

import common_test_utils


class Default:
    sample_index = common_test_utils.Default.sample_index
    sample_name = common_test_utils.Default.sample_name
    shard_intervals = (
        ("shard-a", [Interval("1", 1, 1000), Interval("1", 1001, 2000), Interval("1", 2001, 3000)]),
        ("shard-b", [Interval("2", 1, 1000)]),
        ("shard-c", [Interval("10", 1, 500), Interval("10", 501, 1000)]),
        ("shard-d", [Interval("X", 1, 1000), Interval("X", 1001, 2000)]),
    )
    random_seed = 1


def _sorted_shards(tmpdir, shard_intervals=Default.shard_intervals, shuffle: bool = True, shard_kwargs=None):
    shard_kwargs = shard_kwargs or {}
    calls_paths, model_paths = [], []
    for shard_number, (shard_name, intervals) in enumerate(shard_intervals):
        calls_path, model_path = common_test_utils.make_shard(
            str(tmpdir), shard_name, intervals,
            copy_ratios=[shard_number + 0.125 * index for index in range(len(intervals))],
            **shard_kwargs.get(shard_name, {})
        )
        calls_paths.append(calls_path)
        model_paths.append(model_path)
    if shuffle:
        rng = random.Random(Default.random_seed)
        calls_paths = rng.sample(calls_paths, len(calls_paths))
        model_paths = rng.sample(model_paths, len(model_paths))
    return shards.sort_shards(calls_paths, model_paths)


def test_concatenate_denoised_copy_ratios(tmpdir):
    sorted_shards = _sorted_shards(tmpdir)
    copy_ratios = concatenate.concatenate_denoised_copy_ratios(sorted_shards, Default.sample_index,
                                                               Default.sample_name)
    expected_intervals = [interval for __, intervals in Default.shard_intervals for interval in intervals]
    assert len(copy_ratios) == sum(len(shard.intervals) for shard in sorted_shards)
    assert [record.interval for record in copy_ratios] == expected_intervals
    expected_copy_ratios = [
        shard_number + 0.125 * index
        for shard_number, (__, intervals) in enumerate(Default.shard_intervals) for index in range(len(intervals))
    ]
    assert [record.linear_copy_ratio for record in copy_ratios] == pytest.approx(expected_copy_ratios)


def test_iter_genotyping_records(tmpdir):
    called_copy_numbers = [0, 1, 3]
    sorted_shards = _sorted_shards(
        tmpdir,
        shard_kwargs={
            "shard-a": {"called_copy_numbers": called_copy_numbers},
            "shard-d": {"baseline_copy_numbers": [1, 1]}
        }
    )
    records = list(concatenate.iter_genotyping_records(sorted_shards, Default.sample_index, Default.sample_name))
    assert [record.interval for record in records] == [
        interval for __, intervals in Default.shard_intervals for interval in intervals
    ]
    assert [
        int(record.posterior.log_posteriors.argmax()) for record in records[:len(called_copy_numbers)]
    ] == called_copy_numbers
    assert [record.baseline_copy_number for record in records[-2:]] == [IntegerCopyNumberState(1)] * 2


def test_posterior_length_mismatch(tmpdir):
    sorted_shards = _sorted_shards(tmpdir, shard_kwargs={"shard-c": {"num_posterior_rows": 1}})
    with pytest.raises(LengthMismatchError) as exception_info:
        list(concatenate.iter_genotyping_records(sorted_shards, Default.sample_index, Default.sample_name))
    assert exception_info.value.shard_index == 2
    assert exception_info.value.num_records == 1
    assert exception_info.value.num_intervals == 2


def test_copy_ratio_length_mismatch(tmpdir):
    sorted_shards = _sorted_shards(tmpdir, shuffle=False)
    common_test_utils.make_shard(str(tmpdir), "shard-b", Default.shard_intervals[1][1], copy_ratios=[1.0, 1.0])
    with pytest.raises(LengthMismatchError) as exception_info:
        concatenate.concatenate_denoised_copy_ratios(sorted_shards, Default.sample_index, Default.sample_name)
    assert exception_info.value.shard_index == 1


def test_file_sample_name_mismatch(tmpdir):
    sorted_shards = _sorted_shards(tmpdir)
    with pytest.raises(InconsistentShardError):
        list(concatenate.iter_genotyping_records(sorted_shards, Default.sample_index, "SOME_OTHER_SAMPLE"))
