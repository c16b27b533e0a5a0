from typing import Optional


class GermlineCNVPostprocessError(ValueError):
    """ Base class for problems with the caller output that make it impossible to produce a consistent call set """
    pass


class ShardMismatchError(GermlineCNVPostprocessError):
    """ Calls shards and model shards do not describe the same set of genomic regions """
    pass


class InconsistentShardError(GermlineCNVPostprocessError):
    """
    A sorted shard disagrees with the first shard (sequence dictionary, sample name), or the shards together are not a
    valid partition of the genome
    """
    def __init__(self, shard_index: Optional[int], mismatch: str, message: str):
        self.shard_index = shard_index
        self.mismatch = mismatch
        location = "" if shard_index is None else f"shard {shard_index}: "
        super().__init__(f"{location}{mismatch} mismatch: {message}")


class InvalidPosteriorError(GermlineCNVPostprocessError):
    pass


class LengthMismatchError(GermlineCNVPostprocessError):
    """ Parallel per-shard record streams (intervals, posteriors, baselines, copy ratios) have unequal length """
    def __init__(self, shard_index: int, stream_name: str, num_records: int, num_intervals: int):
        self.shard_index = shard_index
        self.stream_name = stream_name
        self.num_records = num_records
        self.num_intervals = num_intervals
        super().__init__(
            f"shard {shard_index}: the number of entries in the {stream_name} file does not match the number of entries "
            f"in the shard interval list ({stream_name} list size: {num_records}, interval list size: {num_intervals})"
        )


class ExternalEngineFailure(RuntimeError):
    def __init__(self, command: str, return_code: int, stderr: str = ""):
        self.command = command
        self.return_code = return_code
        self.stderr = stderr
        message = f"Segmentation engine exited with non-zero return code {return_code}: {command}"
        if stderr:
            message += f"\n{stderr.rstrip()}"
        super().__init__(message)
