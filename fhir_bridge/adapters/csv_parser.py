"""Tabular Parser Adapter.

Turns raw delimited-text bytes (uploaded CSV files, the citizenship
reference table) into ordered sequences of flat records.

Security Impact:
    - A malformed row fails the whole parse; no partial batch is returned
    - Error messages name line numbers and columns, never cell values
    - Undecodable bytes are rejected before pandas sees them

Architecture:
    - Adapter layer: depends only on domain records and errors
    - pandas ``read_csv`` does the lexing; every column is read as text so
      that identifiers like ``007`` keep their leading zeros
    - Header names map case-insensitively onto model aliases or field names;
      unknown columns are ignored
"""

import csv
import io
import logging
import re
from datetime import date, datetime
from typing import Any, Generic, Optional, TypeVar

import pandas as pd
from pydantic import BaseModel, ValidationError as PydanticValidationError

from fhir_bridge.domain.ports import ParseError
from fhir_bridge.domain.records import Citizenship, PatientCsv

logger = logging.getLogger(__name__)

ModelT = TypeVar('ModelT', bound=BaseModel)

# Accepted date layouts, tried in order
DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y")

# pandas reports tokenizer errors as "... Expected 3 fields in line 4, saw 5"
_PANDAS_LINE = re.compile(r"line (\d+)")


def parse_date(value: str) -> date:
    """Parse a date in one of DATE_FORMATS.

    Raises:
        ValueError: If no format matches
    """
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date '{value}'")


class TabularParser(Generic[ModelT]):
    """Generic header-mapped parser for one record type.

    Parameters:
        record_type: Pydantic model each data row becomes
        required_columns: Headers (aliases) that must be present
        date_columns: Fields (names) parsed with ``parse_date``
        delimiter: Field separator
        encoding: Byte encoding of the input
    """

    record_type: type[ModelT]
    required_columns: tuple[str, ...] = ()
    date_columns: tuple[str, ...] = ()

    def __init__(self, delimiter: str = ",", encoding: str = "utf-8-sig"):
        self.delimiter = delimiter
        self.encoding = encoding

    def _column_map(self, headers: list[str]) -> dict[str, str]:
        """Map source headers to model field names."""
        lookup: dict[str, str] = {}
        for name, model_field in self.record_type.model_fields.items():
            lookup[name.lower()] = name
            if model_field.alias:
                lookup[model_field.alias.lower()] = name

        mapping = {}
        for header in headers:
            field_name = lookup.get(str(header).strip().lower())
            if field_name:
                mapping[header] = field_name

        mapped_fields = set(mapping.values())
        for column in self.required_columns:
            if lookup[column.lower()] not in mapped_fields:
                raise ParseError(f"Missing required column '{column}'", line=1, column=column)
        return mapping

    def _decode(self, data: bytes) -> str:
        try:
            return data.decode(self.encoding)
        except UnicodeDecodeError as e:
            line = data[:e.start].count(b"\n") + 1
            raise ParseError(f"Input is not valid {self.encoding} text", line=line) from e

    def _row_lines(self, text: str) -> list[int]:
        """Check every row has the header's width; return data row line numbers."""
        reader = csv.reader(io.StringIO(text), delimiter=self.delimiter)
        width: Optional[int] = None
        lines: list[int] = []
        for fields in reader:
            if not fields:
                continue
            if width is None:
                width = len(fields)
                continue
            if len(fields) != width:
                raise ParseError(
                    f"Malformed row: expected {width} columns, got {len(fields)}",
                    line=reader.line_num,
                )
            lines.append(reader.line_num)
        return lines

    def _read_frame(self, text: str) -> Optional[pd.DataFrame]:
        try:
            return pd.read_csv(
                io.StringIO(text),
                sep=self.delimiter,
                dtype=str,
                keep_default_na=False,
                index_col=False,
                skip_blank_lines=True,
            )
        except pd.errors.EmptyDataError:
            return None
        except pd.errors.ParserError as e:
            match = _PANDAS_LINE.search(str(e))
            line = int(match.group(1)) if match else None
            raise ParseError("Malformed row: wrong number of columns", line=line) from e

    def _row_values(self, row: dict[str, Any], mapping: dict[str, str], line: int) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for header, field_name in mapping.items():
            cell = row[header]
            if not isinstance(cell, str):
                # pandas fills cells missing from short rows with NaN
                raise ParseError("Malformed row: too few columns", line=line, column=str(header))
            cell = cell.strip()
            if not cell:
                values[field_name] = None
            elif field_name in self.date_columns:
                try:
                    values[field_name] = parse_date(cell)
                except ValueError as e:
                    raise ParseError(f"Unparseable date in column '{header}'", line=line, column=str(header)) from e
            else:
                values[field_name] = cell
        return values

    def parse(self, data: bytes) -> list[ModelT]:
        """Parse delimited bytes into records, preserving row order.

        Parameters:
            data: Raw file contents; the first line is the header

        Returns:
            list: One record per data row; ``[]`` for blank or header-only input

        Raises:
            ParseError: On undecodable bytes, a missing required column, a row
                with the wrong number of columns or an unparseable date
        """
        text = self._decode(data)
        if not text.strip():
            return []

        lines = self._row_lines(text)
        frame = self._read_frame(text)
        if frame is None or frame.empty:
            return []

        mapping = self._column_map(list(frame.columns))
        records: list[ModelT] = []
        for line, row in zip(lines, frame.to_dict(orient="records")):
            values = self._row_values(row, mapping, line)
            try:
                records.append(self.record_type.model_validate(values))
            except PydanticValidationError as e:
                column = e.errors()[0]["loc"][0] if e.errors() else None
                raise ParseError(f"Invalid row for {self.record_type.__name__}", line=line, column=column) from e

        logger.info(f"Parsed {len(records)} {self.record_type.__name__} row(s)")
        return records


class PatientCsvParser(TabularParser[PatientCsv]):
    """Parser for uploaded patient CSV files.

    Expected header (case-insensitive, any order)::

        Identifier,FirstName,LastName,BirthDate,Gender,Citizenship,MaritalStatus,Phone,Email
    """

    record_type = PatientCsv
    required_columns = ("Identifier",)
    date_columns = ("birth_date",)


class CitizenshipTableParser(TabularParser[Citizenship]):
    """Parser for the ``Code,Explanation,From,Through`` citizenship table."""

    record_type = Citizenship
    required_columns = ("Code", "Explanation")
    date_columns = ("valid_from", "valid_through")
