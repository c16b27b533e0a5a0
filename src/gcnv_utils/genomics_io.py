#!/usr/bin/env python
import io
import os
import gzip
from types import MappingProxyType
from typing import Text, Tuple, Mapping, Optional, Dict, Sequence, List, Iterable, NamedTuple, TextIO
import numpy
import pandas

from gcnv_utils import common
from gcnv_utils.copy_number import (
    Interval, IntegerCopyNumberState, CopyNumberPosteriorDistribution, DenoisedCopyRatioRecord
)
from gcnv_utils.errors import InvalidPosteriorError


class FileNames:
    interval_list = "interval_list.tsv"
    copy_number_posterior = "log_q_c_tc.tsv"
    baseline_copy_number = "baseline_copy_number_t.tsv"
    denoised_copy_ratio_mean = "mu_denoised_copy_ratio_t.tsv"
    sample_name = "sample_name.txt"
    contig_ploidy = "contig_ploidy.tsv"
    copy_number_segments = "copy_number_segments.tsv"


class Columns:
    contig = "CONTIG"
    start = "START"
    end = "END"
    copy_number_prefix = "COPY_NUMBER_"
    baseline_copy_number = "BASELINE_COPY_NUMBER"
    linear_copy_ratio = "LINEAR_COPY_RATIO"
    ploidy = "PLOIDY"
    ploidy_gq = "PLOIDY_GQ"
    num_points = "NUM_POINTS_COPY_NUMBER"
    call_copy_number = "CALL_COPY_NUMBER"
    quality_some_called = "QUALITY_SOME_CALLED"
    quality_all_called = "QUALITY_ALL_CALLED"
    quality_start = "QUALITY_START"
    quality_end = "QUALITY_END"


class HeaderTags:
    header_start = "@"
    header_line = "@HD"
    sequence = "@SQ"
    read_group = "@RG"
    sequence_name = "SN"
    sequence_length = "LN"
    sample = "SM"
    read_group_id = "ID"


class Default:
    sample_prefix = "SAMPLE_"
    encoding = "utf-8"
    sam_version = "1.6"
    read_group_id = "GATKCopyNumber"
    float_format = "%.6f"
    location_columns = (Columns.contig, Columns.start, Columns.end)
    location_dtypes = MappingProxyType({Columns.contig: str, Columns.start: numpy.int64, Columns.end: numpy.int64})


class SequenceRecord(NamedTuple):
    name: Text
    length: int
    attributes: Tuple[Tuple[Text, Text], ...] = ()

    def to_header_line(self) -> str:
        fields = [HeaderTags.sequence, f"{HeaderTags.sequence_name}:{self.name}",
                  f"{HeaderTags.sequence_length}:{self.length}"]
        fields.extend(f"{tag}:{value}" for tag, value in self.attributes)
        return '\t'.join(fields)


class SequenceDictionary:
    """
    Ordered list of contigs (name, length and any other @SQ attributes). Equality is exact over every field, and
    contig order defines genome order.
    """
    __slots__ = ("records", "_contig_index")

    def __init__(self, records: Iterable[SequenceRecord]):
        self.records = tuple(records)
        self._contig_index = MappingProxyType({record.name: index for index, record in enumerate(self.records)})
        if len(self._contig_index) != len(self.records):
            raise ValueError("Sequence dictionary contains duplicate contig names")

    @property
    def contig_names(self) -> Tuple[str, ...]:
        return tuple(record.name for record in self.records)

    def contig_index(self, contig: Text) -> int:
        try:
            return self._contig_index[contig]
        except KeyError:
            raise ValueError(f"Contig {contig} is not in the sequence dictionary")

    def __contains__(self, contig: Text) -> bool:
        return contig in self._contig_index

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def __eq__(self, other) -> bool:
        if isinstance(other, SequenceDictionary):
            return self.records == other.records
        return NotImplemented

    def __hash__(self):
        return hash(self.records)

    def __repr__(self):
        return f"SequenceDictionary({','.join(f'{record.name}:{record.length}' for record in self.records)})"


class SamHeader(NamedTuple):
    sequence_dictionary: SequenceDictionary
    sample_name: Optional[Text]


class ShardIntervals(NamedTuple):
    """ Contents of one shard's interval list """
    path: Text
    sequence_dictionary: SequenceDictionary
    intervals: Tuple[Interval, ...]

    def location_sort_key(self, interval: Interval) -> Tuple[int, int, int]:
        return self.sequence_dictionary.contig_index(interval.contig), interval.start, interval.end


def _open_text(path: Text) -> TextIO:
    if path.endswith(".gz"):
        return gzip.open(path, mode="rt", encoding=Default.encoding)
    return open(path, 'r', encoding=Default.encoding)


def _parse_header_fields(line: str) -> Dict[str, str]:
    return dict(
        field.split(':', 1) for field in line.rstrip('\n').split('\t')[1:] if ':' in field
    )


def parse_sam_header(header_lines: Sequence[str]) -> SamHeader:
    """
    Extract sequence dictionary (from @SQ lines) and sample name (from the SM tag of the @RG line) out of the SAM-style
    header that begins every gCNV table.
    """
    sequence_records = []
    sample_name = None
    for line in header_lines:
        tag = line.split('\t', 1)[0]
        if tag == HeaderTags.sequence:
            fields = _parse_header_fields(line)
            try:
                name = fields.pop(HeaderTags.sequence_name)
                length = int(fields.pop(HeaderTags.sequence_length))
            except (KeyError, ValueError):
                raise ValueError(f"Malformed sequence dictionary line: {line.rstrip()}")
            sequence_records.append(SequenceRecord(name=name, length=length, attributes=tuple(fields.items())))
        elif tag == HeaderTags.read_group:
            sample_name = _parse_header_fields(line).get(HeaderTags.sample, sample_name)
    return SamHeader(sequence_dictionary=SequenceDictionary(sequence_records), sample_name=sample_name)


def read_gcnv_table(
        data_file: Text,
        dtype: Optional[Mapping[str, type]] = None
) -> Tuple[SamHeader, pandas.DataFrame]:
    """
    Load a tab-delimited gCNV table: SAM-style header lines starting with "@", then a line of column names, then one
    row per record.
    Args:
        data_file: Text
            Path to table (may be gzipped)
        dtype: Mapping[str, type] or None
            Passed to pandas.read_csv
    Returns:
        header: SamHeader
            Sequence dictionary and sample name from the header
        df: pandas.DataFrame
            Table of data
    """
    if not os.path.isfile(data_file):
        raise FileNotFoundError(f"{data_file} does not exist")
    # handle header manually, then load remaining file into buffer and call pandas.read_csv on the buffer
    with _open_text(data_file) as f_in:
        lines = f_in.readlines()
    num_header_lines = 0
    while num_header_lines < len(lines) and lines[num_header_lines].startswith(HeaderTags.header_start):
        num_header_lines += 1
    header_lines = lines[:num_header_lines]
    buffer = io.StringIO(''.join(lines[num_header_lines:]))
    try:
        df = pandas.read_csv(buffer, sep="\t", engine="c", comment=None, dtype=None if dtype is None else dict(dtype))
    except pandas.errors.EmptyDataError:
        raise ValueError(f"{data_file} has no column header")
    try:
        header = parse_sam_header(header_lines)
    except ValueError as value_error:
        common.add_exception_context(value_error, data_file)
        raise
    return header, df


def _require_columns(df: pandas.DataFrame, columns: Iterable[str], data_file: Text):
    missing = [column for column in columns if column not in df.columns]
    if missing:
        raise ValueError(f"{data_file} is missing required columns: {','.join(missing)}")


def get_sample_directory(shard_path: Text, sample_index: int) -> str:
    return os.path.join(shard_path, f"{Default.sample_prefix}{sample_index}")


def get_interval_list_file(shard_path: Text) -> str:
    return os.path.join(shard_path, FileNames.interval_list)


def get_copy_number_posterior_file(calls_shard_path: Text, sample_index: int) -> str:
    return os.path.join(get_sample_directory(calls_shard_path, sample_index), FileNames.copy_number_posterior)


def get_baseline_copy_number_file(calls_shard_path: Text, sample_index: int) -> str:
    return os.path.join(get_sample_directory(calls_shard_path, sample_index), FileNames.baseline_copy_number)


def get_denoised_copy_ratio_file(calls_shard_path: Text, sample_index: int) -> str:
    return os.path.join(get_sample_directory(calls_shard_path, sample_index), FileNames.denoised_copy_ratio_mean)


def get_sample_name_file(calls_shard_path: Text, sample_index: int) -> str:
    return os.path.join(get_sample_directory(calls_shard_path, sample_index), FileNames.sample_name)


def get_contig_ploidy_file(ploidy_calls_path: Text, sample_index: int) -> str:
    return os.path.join(get_sample_directory(ploidy_calls_path, sample_index), FileNames.contig_ploidy)


def get_copy_number_segments_file(segments_output_path: Text, sample_index: int) -> str:
    return os.path.join(get_sample_directory(segments_output_path, sample_index), FileNames.copy_number_segments)


def _to_intervals(df: pandas.DataFrame) -> Tuple[Interval, ...]:
    return tuple(
        Interval(contig=contig, start=int(start), end=int(end))
        for contig, start, end in zip(df[Columns.contig], df[Columns.start], df[Columns.end])
    )


def read_interval_list(data_file: Text) -> ShardIntervals:
    """ Load the intervals (and the sequence dictionary from the header) of one shard """
    header, df = read_gcnv_table(data_file, dtype=Default.location_dtypes)
    _require_columns(df, Default.location_columns, data_file)
    intervals = _to_intervals(df)
    for interval in intervals:
        if interval.contig not in header.sequence_dictionary:
            raise ValueError(f"{data_file}: interval {interval} is on a contig missing from the sequence dictionary")
        if interval.start > interval.end:
            raise ValueError(f"{data_file}: interval {interval} has START > END")
    shard_intervals = ShardIntervals(path=data_file, sequence_dictionary=header.sequence_dictionary, intervals=intervals)
    # shard boundaries are taken from the first and last intervals
    for previous, interval in common.iter_pairs(intervals):
        if shard_intervals.location_sort_key(previous) >= shard_intervals.location_sort_key(interval):
            raise ValueError(f"{data_file}: intervals are not in genome order, {previous} precedes {interval}")
    return shard_intervals


def _copy_number_column_states(columns: Iterable[str], data_file: Text) -> List[int]:
    states = []
    for column in columns:
        if not column.startswith(Columns.copy_number_prefix):
            raise InvalidPosteriorError(f"{data_file}: unexpected column {column} in copy-number posterior file")
        try:
            states.append(IntegerCopyNumberState(int(column[len(Columns.copy_number_prefix):])).copy_number)
        except ValueError:
            raise InvalidPosteriorError(f"{data_file}: column {column} does not name a valid copy-number state")
    if not states:
        raise InvalidPosteriorError(f"{data_file}: copy-number posterior file has no copy-number columns")
    if states != list(range(len(states))):
        raise InvalidPosteriorError(
            f"{data_file}: copy-number columns must be the contiguous states 0..{len(states) - 1} in order, found "
            f"{states}"
        )
    return states


def read_copy_number_posteriors(
        data_file: Text
) -> Tuple[Optional[str], List[CopyNumberPosteriorDistribution]]:
    """
    Load per-interval copy-number posteriors (natural log) for one sample in one shard.
    Returns:
        sample_name: str or None
            Sample name from the header
        posteriors: List[CopyNumberPosteriorDistribution]
            One distribution per row, in file order
    """
    header, df = read_gcnv_table(data_file)
    _copy_number_column_states(df.columns, data_file)
    values = df.to_numpy(dtype=numpy.float64)
    posteriors = []
    for row_index, row in enumerate(values):
        try:
            posteriors.append(CopyNumberPosteriorDistribution(row))
        except InvalidPosteriorError as posterior_error:
            common.add_exception_context(posterior_error, f"{data_file} row {row_index}")
            raise
    return header.sample_name, posteriors


def read_baseline_copy_numbers(data_file: Text) -> Tuple[Optional[str], List[IntegerCopyNumberState]]:
    header, df = read_gcnv_table(data_file)
    _require_columns(df, (Columns.baseline_copy_number,), data_file)
    values = df[Columns.baseline_copy_number]
    if values.empty:
        return header.sample_name, []
    if not pandas.api.types.is_integer_dtype(values):
        raise ValueError(f"{data_file}: {Columns.baseline_copy_number} must contain integers")
    return header.sample_name, [IntegerCopyNumberState(int(value)) for value in values]


def read_denoised_copy_ratios(data_file: Text) -> Tuple[Optional[str], List[float]]:
    header, df = read_gcnv_table(data_file)
    if len(df.columns) != 1:
        raise ValueError(f"{data_file}: expected a single copy-ratio column, found {','.join(df.columns)}")
    return header.sample_name, df.iloc[:, 0].astype(numpy.float64).tolist()


def read_sample_name(data_file: Text) -> str:
    """ Sample name is the first line of the sample-identity marker file """
    try:
        with open(data_file, 'r', encoding=Default.encoding) as f_in:
            return f_in.readline().strip()
    except OSError as os_error:
        common.add_exception_context(os_error, f"Could not read the sample name text file at {data_file}")
        raise


def read_contig_ploidy(data_file: Text) -> Dict[str, int]:
    """ Load {contig: ploidy} from contig-ploidy calls """
    __, df = read_gcnv_table(data_file, dtype={Columns.contig: str})
    _require_columns(df, (Columns.contig, Columns.ploidy), data_file)
    return {contig: int(ploidy) for contig, ploidy in zip(df[Columns.contig], df[Columns.ploidy])}


def format_sam_header(sequence_dictionary: SequenceDictionary, sample_name: Optional[Text]) -> str:
    lines = [f"{HeaderTags.header_line}\tVN:{Default.sam_version}"]
    lines.extend(record.to_header_line() for record in sequence_dictionary)
    if sample_name is not None:
        lines.append(f"{HeaderTags.read_group}\t{HeaderTags.read_group_id}:{Default.read_group_id}\t"
                     f"{HeaderTags.sample}:{sample_name}")
    return '\n'.join(lines) + '\n'


def denoised_copy_ratios_to_pandas(records: Sequence[DenoisedCopyRatioRecord]) -> pandas.DataFrame:
    return pandas.DataFrame(
        {
            Columns.contig: [record.interval.contig for record in records],
            Columns.start: numpy.array([record.interval.start for record in records], dtype=numpy.int64),
            Columns.end: numpy.array([record.interval.end for record in records], dtype=numpy.int64),
            Columns.linear_copy_ratio: numpy.array([record.linear_copy_ratio for record in records],
                                                   dtype=numpy.float64)
        },
        columns=[Columns.contig, Columns.start, Columns.end, Columns.linear_copy_ratio]
    )


def write_denoised_copy_ratios(
        data_file: Text,
        records: Sequence[DenoisedCopyRatioRecord],
        sample_name: Text,
        sequence_dictionary: SequenceDictionary,
        float_format: str = Default.float_format
):
    f"""
    Save concatenated denoised copy ratios as a table with a SAM-style header identifying the sample and the
    sequence dictionary.
    Args:
        data_file: Text
            Full path to save file
        records: Sequence[DenoisedCopyRatioRecord]
            Copy ratios in genome order
        sample_name: Text
            Written to the @RG header line
        sequence_dictionary: SequenceDictionary
            Written as @SQ header lines
        float_format: str (Default={Default.float_format})
            Format for copy-ratio values
    """
    df = denoised_copy_ratios_to_pandas(records)
    with common.atomic_output_file(data_file) as temporary_file:
        with open(temporary_file, 'w', encoding=Default.encoding) as f_out:
            f_out.write(format_sam_header(sequence_dictionary, sample_name))
            df.to_csv(f_out, sep='\t', index=False, header=True, float_format=float_format)
