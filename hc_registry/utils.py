import datetime
import io
import json

import pandas as pd
import pytz


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def parse_import_file(filename: str | None, content: str) -> pd.DataFrame:
    """Parse the import file content into a pandas DataFrame.

    Supports both CSV and JSON formats.

    Args:
        filename (str | None): The original filename (used to determine file type)
        content (str): The file content as a string

    Returns:
        pd.DataFrame: Parsed data as a pandas DataFrame

    Raises:
        ValueError: If the file format is not supported or parsing fails
    """
    file_type = None
    if filename:
        filename_lower = filename.lower()
        if filename_lower.endswith(".csv"):
            file_type = "csv"
        elif filename_lower.endswith(".json"):
            file_type = "json"

    # If we can't determine from filename, try to parse as JSON first, then CSV
    if file_type is None:
        try:
            json.loads(content)
            file_type = "json"
        except json.JSONDecodeError:
            file_type = "csv"

    try:
        if file_type == "csv":
            return pd.read_csv(io.StringIO(content))

        json_data = json.loads(content)

        # Array of objects: [{"col1": "val1", "col2": "val2"}, ...]
        if isinstance(json_data, list):
            if not json_data:
                raise ValueError("JSON file contains an empty array")
            if not all(isinstance(item, dict) for item in json_data):
                raise ValueError("JSON array must contain only objects")
            return pd.DataFrame(json_data)

        # Object of arrays: {"col1": ["val1", "val2"], "col2": ["val3", "val4"]}
        if isinstance(json_data, dict):
            return pd.DataFrame(json_data)

        raise ValueError(
            "JSON format not supported. Use array of objects or object with arrays format."
        )

    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON format: {str(e)}")
    except pd.errors.EmptyDataError:
        raise ValueError("The uploaded file is empty")
    except pd.errors.ParserError as e:
        raise ValueError(f"Error parsing CSV file: {str(e)}")
