import os
import datetime
from pathlib import Path

import numpy as np
import pandas as pd

SEASON_MONTHS = {
    'Winter': ['12', '01', '02'],
    'Spring': ['03', '04', '05'],
    'Summer': ['06', '07', '08'],
    'Fall': ['09', '10', '11'],
}

DATE_FORMAT = '%Y-%m-%d'
DAYS_PER_YEAR = 365

_SEQUENCE_TYPES = (list, tuple, np.ndarray, pd.Series, pd.Index)
_DATE_TYPES = (datetime.date, np.datetime64)


def ensure_dir_exists(dir_path):
    if dir_path in (None, ''):
        return
    Path(dir_path).mkdir(parents=True, exist_ok=True)


def load_data(path, verbose=True):
    """Read a CSV file into a DataFrame, optionally reporting its dimensions."""
    if not isinstance(path, (str, os.PathLike)):
        raise TypeError('`path` must be a single string or path-like object.')
    if not isinstance(verbose, bool):
        raise TypeError('`verbose` must be a single boolean value (True or False).')
    if not os.path.exists(path):
        raise FileNotFoundError(f'File does not exist: {path}')

    if verbose:
        print(f'Loading dataset from: {path}')
    df = pd.read_csv(path)
    if verbose:
        print(f'Dataset dimensions: {df.shape[0]} rows, {df.shape[1]} columns')
    return df


def require_columns(data, columns, name):
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise ValueError(f'{name}: missing columns: {missing}')
    return list(columns)


def _is_missing(value):
    if value is None or value is pd.NA or value is pd.NaT:
        return True
    if isinstance(value, float) and np.isnan(value):
        return True
    if isinstance(value, np.datetime64) and np.isnat(value):
        return True
    return False


def _as_object_series(values):
    # keeps the caller's index so results line up with DataFrame columns
    if isinstance(values, pd.Series):
        return values.astype(object)
    return pd.Series(list(values), dtype=object)


def _to_timestamp(value):
    if _is_missing(value):
        return pd.NaT
    if isinstance(value, str):
        return pd.to_datetime(value, format=DATE_FORMAT, exact=False, errors='coerce')
    return pd.Timestamp(value)


def _reference_timestamp(reference_date):
    if reference_date is None:
        return pd.Timestamp.today().normalize()
    if not isinstance(reference_date, (str,) + _DATE_TYPES):
        raise TypeError('`reference_date` must be a date object or character string.')
    return pd.Timestamp(reference_date).normalize()


def calculate_age_years(dob, reference_date=None):
    """
    Convert dates of birth to whole years of age.

    `dob` may be a single date (a date object or a 'YYYY-MM-DD' string) or a
    sequence of them; missing and unparseable entries give a missing age.
    Age is the number of days to `reference_date` divided by 365 and truncated
    toward zero. Pass `reference_date` explicitly for reproducible output.
    """
    if dob is None:
        raise ValueError('`dob` cannot be None.')

    is_sequence = isinstance(dob, _SEQUENCE_TYPES)
    if not is_sequence and not (isinstance(dob, (str,) + _DATE_TYPES) or _is_missing(dob)):
        raise TypeError('`dob` must be a string, a date object or a sequence of them.')

    reference = _reference_timestamp(reference_date)

    if not is_sequence:
        birth = _to_timestamp(dob)
        if pd.isna(birth):
            return pd.NA
        return int((reference - birth.normalize()).days / DAYS_PER_YEAR)

    values = _as_object_series(dob)

    bad = [v for v in values if not (isinstance(v, (str,) + _DATE_TYPES) or _is_missing(v))]
    if bad:
        raise TypeError(f'`dob` must only contain strings or date objects, got: {bad[:5]}')

    births = pd.to_datetime(values.map(_to_timestamp)).dt.normalize()
    days = (reference - births).dt.days
    return np.trunc(days / DAYS_PER_YEAR).astype('Int64')


def _month_key(value):
    if _is_missing(value):
        return None
    if isinstance(value, (bool, np.bool_)):
        raise TypeError('`month` must be a character or numeric value.')
    if isinstance(value, (int, np.integer)):
        value = str(int(value))
    elif isinstance(value, (float, np.floating)):
        value = str(int(value)) if float(value).is_integer() else str(value)
    elif not isinstance(value, str):
        raise TypeError('`month` must be a character or numeric value.')
    if len(value) == 1:
        value = '0' + value
    return value


def assign_season(month):
    """Map month numbers (1-12 or '01'-'12') to Winter, Spring, Summer, Fall or Unknown."""
    if isinstance(month, _SEQUENCE_TYPES):
        values = _as_object_series(month)
        if values.empty:
            return values
        keys = values.map(_month_key)

        conditions = [keys.isin(months) for months in SEASON_MONTHS.values()]
        choices = list(SEASON_MONTHS.keys())
        seasons = np.select(conditions, choices, default='Unknown')
        return pd.Series(seasons, index=values.index, dtype=object)

    if not (isinstance(month, (str, int, float, np.integer, np.floating)) or _is_missing(month)) \
            or isinstance(month, bool):
        raise TypeError('`month` must be a character or numeric value.')

    key = _month_key(month)
    for season, months in SEASON_MONTHS.items():
        if key in months:
            return season
    return 'Unknown'


def group_rare_categories(data, column_name, rare_categories, other_name='Other'):
    if column_name not in data.columns:
        raise ValueError(f"Column '{column_name}' not found in the data frame")
    if isinstance(rare_categories, str):
        rare_categories = [rare_categories]
    if not isinstance(rare_categories, (list, tuple, set, frozenset, np.ndarray, pd.Series)) \
            or not all(isinstance(c, str) for c in rare_categories):
        raise TypeError('`rare_categories` must be a collection of strings.')
    if not isinstance(other_name, str):
        raise TypeError('`other_name` must be a single string.')

    result = data.copy()
    column = result[column_name]
    is_rare = column.isin(list(rare_categories))
    if not is_rare.any():
        return result

    if isinstance(column.dtype, pd.CategoricalDtype):
        grouped = column.astype(object).where(~is_rare, other_name)
        result[column_name] = grouped.astype('category')
    else:
        result[column_name] = column.where(~is_rare, other_name)
    return result


def convert_to_factors(data, columns):
    """Return a copy of `data` with the named columns converted to the category dtype."""
    if isinstance(columns, str):
        columns = [columns]
    if not isinstance(columns, (list, tuple)) or not all(isinstance(c, str) for c in columns):
        raise TypeError('`columns` must be a list of column names.')

    missing_cols = [c for c in columns if c not in data.columns]
    if missing_cols:
        raise ValueError(
            f"The following columns do not exist in the data frame: {', '.join(missing_cols)}"
        )

    result = data.copy()
    for col in columns:
        result[col] = result[col].astype('category')
    return result
