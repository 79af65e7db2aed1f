"""
Reads the two subscriber billing inputs.

Each file starts with a header line, followed by ``msisdn,prepaid`` lines.
Fields are trimmed; blank lines are skipped.
"""
import csv
from pathlib import Path
from typing import List, Union

from ..core.exceptions import ConfigurationError
from ..core.schemas import Record
from ..setup.logging import logger

TRUE_LITERALS = frozenset({"true", "t", "1", "yes", "y"})
FALSE_LITERALS = frozenset({"false", "f", "0", "no", "n"})


def parse_flag(value: str) -> bool:
    """Convert a boolean/integer literal to bool."""
    literal = value.strip().lower()
    if literal in TRUE_LITERALS:
        return True
    if literal in FALSE_LITERALS:
        return False
    raise ValueError(f"Invalid prepaid flag {value!r}")


def read_records(file_path: Union[str, Path], encoding: str = "utf-8") -> List[Record]:
    """
    Read one input file into records, dropping its header line.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid text
            in ``encoding``, or a line is malformed.
    """
    file_path = Path(file_path)
    if not file_path.is_file():
        raise ConfigurationError(f"File does not exist: {file_path}")

    try:
        with file_path.open("r", encoding=encoding, newline="") as handle:
            return _parse_rows(file_path, csv.reader(handle))
    except (UnicodeDecodeError, OSError) as e:
        raise ConfigurationError(f"{file_path}: {e}") from e


def _parse_rows(file_path: Path, reader) -> List[Record]:
    records = []
    next(reader, None)
    for line_number, row in enumerate(reader, start=2):
        if not row or all(not field.strip() for field in row):
            continue
        if len(row) < 2:
            raise ConfigurationError(f"{file_path}:{line_number}: expected 'msisdn,prepaid'")
        msisdn = row[0].strip()
        if not msisdn:
            raise ConfigurationError(f"{file_path}:{line_number}: empty msisdn")
        try:
            prepaid = parse_flag(row[1])
        except ValueError as e:
            raise ConfigurationError(f"{file_path}:{line_number}: {e}") from e
        records.append(Record(msisdn, prepaid))
    return records


def load_sources(true_file: Union[str, Path], false_file: Union[str, Path]) -> List[Record]:
    """Concatenate both inputs, prepaid file first."""
    records = read_records(true_file) + read_records(false_file)
    logger.info(f"[RecordSource] Loaded {len(records)} msisdns from {true_file} and {false_file}")
    return records
