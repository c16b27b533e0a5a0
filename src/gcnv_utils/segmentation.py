import abc
import os
import shlex
import logging
import subprocess
import numpy
from typing import List, Sequence, Text, Optional, Union

from gcnv_utils import genomics_io
from gcnv_utils.copy_number import Interval, IntegerCopyNumberState, SegmentRecord
from gcnv_utils.genomics_io import Columns, SequenceDictionary
from gcnv_utils.errors import ExternalEngineFailure


class Default:
    segmentation_command = "python segment_gcnv_calls.py"


_required_segment_columns = (
    Columns.contig, Columns.start, Columns.end, Columns.num_points, Columns.call_copy_number,
    Columns.quality_some_called, Columns.quality_all_called, Columns.quality_start, Columns.quality_end
)


class CopyNumberSegments:
    """ Contents of a copy-number segments file """
    __slots__ = ("sample_name", "sequence_dictionary", "records")

    def __init__(self, sample_name: Optional[str], sequence_dictionary: SequenceDictionary,
                 records: Sequence[SegmentRecord]):
        self.sample_name = sample_name
        self.sequence_dictionary = sequence_dictionary
        self.records = tuple(records)

    def __len__(self):
        return len(self.records)

    def __iter__(self):
        return iter(self.records)


def _get_integer(row: dict, column: str, data_file: Text, row_number: int) -> int:
    value = row[column]
    if isinstance(value, (int, numpy.integer)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, (float, numpy.floating)) and float(value).is_integer():
        return int(value)
    raise ValueError(f"{data_file}: row {row_number} has non-integer {column} value {value!r}")


def read_copy_number_segments(data_file: Text) -> CopyNumberSegments:
    """
    Load segments written by the segmentation engine. BASELINE_COPY_NUMBER is optional; the integer columns are passed
    through unchanged, and a value with a fractional part (or a missing value) is an error.
    """
    header, df = genomics_io.read_gcnv_table(data_file, dtype={Columns.contig: str})
    missing = [column for column in _required_segment_columns if column not in df.columns]
    if missing:
        raise ValueError(f"{data_file} is missing required columns: {','.join(missing)}")
    has_baseline = Columns.baseline_copy_number in df.columns
    records = []
    for row_number, row in enumerate(df.to_dict(orient="records"), start=1):
        def _integer(column: str) -> int:
            return _get_integer(row, column, data_file, row_number)

        records.append(
            SegmentRecord(
                interval=Interval(contig=row[Columns.contig], start=_integer(Columns.start),
                                  end=_integer(Columns.end)),
                call_copy_number=IntegerCopyNumberState(_integer(Columns.call_copy_number)),
                num_points=_integer(Columns.num_points),
                quality_some_called=_integer(Columns.quality_some_called),
                quality_all_called=_integer(Columns.quality_all_called),
                quality_start=_integer(Columns.quality_start),
                quality_end=_integer(Columns.quality_end),
                baseline_copy_number=IntegerCopyNumberState(_integer(Columns.baseline_copy_number))
                if has_baseline else None
            )
        )
    for record in records:
        if header.sequence_dictionary and record.interval.contig not in header.sequence_dictionary:
            raise ValueError(f"{data_file}: segment {record.interval} is on a contig missing from the sequence "
                             "dictionary")
    return CopyNumberSegments(sample_name=header.sample_name, sequence_dictionary=header.sequence_dictionary,
                              records=records)


class SegmentationEngine(abc.ABC):
    """
    Out-of-process collaborator that groups contiguous same-call intervals into segments and scores them.
    """
    @abc.abstractmethod
    def segment(
            self,
            ploidy_calls_path: Optional[Text],
            model_shard_paths: Sequence[Text],
            calls_shard_paths: Sequence[Text],
            sample_index: int,
            output_path: Text
    ) -> CopyNumberSegments:
        """
        Segment the calls of one sample.
        Args:
            ploidy_calls_path: Text or None
                contig-ploidy calls directory
            model_shard_paths: Sequence[Text]
                model shards, in genome order
            calls_shard_paths: Sequence[Text]
                calls shards, in genome order
            sample_index: int
                index of the sample in the call-set
            output_path: Text
                directory for the engine's output
        Returns:
            segments: CopyNumberSegments
        Raises:
            ExternalEngineFailure: the engine did not succeed
        """
        raise NotImplementedError


class SubprocessSegmentationEngine(SegmentationEngine):
    """
    Run the segmentation script and wait for it to finish. A non-zero exit status is fatal and is not retried.
    """
    __slots__ = ("command",)

    def __init__(self, command: Union[Text, Sequence[Text]] = Default.segmentation_command):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)

    def get_arguments(
            self,
            ploidy_calls_path: Optional[Text],
            model_shard_paths: Sequence[Text],
            calls_shard_paths: Sequence[Text],
            sample_index: int,
            output_path: Text
    ) -> List[str]:
        # without contig-ploidy calls the script is left to its own default
        ploidy_arguments = [] if ploidy_calls_path is None \
            else ["--ploidy_calls_path", os.path.realpath(ploidy_calls_path)]
        return (
            self.command
            + ploidy_arguments
            + ["--model_shards"] + [os.path.realpath(path) for path in model_shard_paths]
            + ["--calls_shards"] + [os.path.realpath(path) for path in calls_shard_paths]
            + ["--output_path", os.path.realpath(output_path)]
            + ["--sample_index", str(sample_index)]
        )

    def segment(
            self,
            ploidy_calls_path: Optional[Text],
            model_shard_paths: Sequence[Text],
            calls_shard_paths: Sequence[Text],
            sample_index: int,
            output_path: Text
    ) -> CopyNumberSegments:
        arguments = self.get_arguments(
            ploidy_calls_path, model_shard_paths, calls_shard_paths, sample_index, output_path
        )
        command = ' '.join(shlex.quote(argument) for argument in arguments)
        logging.info(f"Running segmentation: {command}")
        try:
            result = subprocess.run(arguments, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        except OSError as os_error:
            raise ExternalEngineFailure(command, -1, str(os_error)) from os_error
        if result.returncode != 0:
            raise ExternalEngineFailure(command, result.returncode,
                                        result.stderr.decode(genomics_io.Default.encoding, errors="replace"))
        segments_file = genomics_io.get_copy_number_segments_file(output_path, sample_index)
        if not os.path.isfile(segments_file):
            raise FileNotFoundError(f"Segmentation finished but produced no segments file at {segments_file}")
        return read_copy_number_segments(segments_file)


class SegmentsFileEngine(SegmentationEngine):
    """ Stand-in for the segmentation engine that serves an existing segments file without spawning a process """
    __slots__ = ("segments_file",)

    def __init__(self, segments_file: Text):
        self.segments_file = segments_file

    def segment(
            self,
            ploidy_calls_path: Optional[Text],
            model_shard_paths: Sequence[Text],
            calls_shard_paths: Sequence[Text],
            sample_index: int,
            output_path: Text
    ) -> CopyNumberSegments:
        logging.info(f"Reading precomputed segments from {self.segments_file}")
        return read_copy_number_segments(self.segments_file)

