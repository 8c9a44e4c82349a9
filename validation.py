from datetime import datetime
import math
import pandas as pd
import numpy as np
import time
import os
import concurrent.futures as cf
from tqdm import tqdm
from iso_timestamp import Iso8601, TimestampError
from structured import TimestampField, TimestampRecord
from utils import convert_value_to_string, flatten_timestamp_record, is_scalar_empty

def normalize(value):
    """Canonical RFC 3339 form of a timestamp cell, or its raw text if it is not a valid timestamp."""
    raw = convert_value_to_string(value)
    try:
        return Iso8601(raw).to_instant().rfc3339()
    except TimestampError:
        return raw

def is_expected_undefined(value):
    if value in [None, ""]:
        return True
    if isinstance(value, float):
        return math.isnan(value)
    return False

def validate_record(values, fields=None, record_id=None) -> TimestampRecord:
    """ Checks every named timestamp of one record.

        'values' - dict or pandas Series mapping field name to the timestamp as received
        'fields' - names to check, all keys of 'values' if None

        Empty values (None, "", "-", NaN) are recorded without canonical form and without error.
        Invalid timestamps never raise, the diagnostic is stored in the field's 'error'.
    """
    if fields is None:
        fields = list(values.keys())

    checked = []
    for name in fields:
        value = values.get(name)
        if is_scalar_empty(value):
            checked.append(TimestampField(name=name))
            continue

        raw = convert_value_to_string(value)
        try:
            canonical = Iso8601(raw).to_instant().rfc3339()
            checked.append(TimestampField(name=name, raw=raw, canonical=canonical))
        except TimestampError as e:
            checked.append(TimestampField(name=name, raw=raw, error=str(e)))

    return TimestampRecord(record_id=record_id, fields=checked)

def compare_results(expected, actual):
    """
    Compares an expected (labeled) timestamp with the actual (reported) one by meaning:
    two timestamps written differently but denoting the same instant are Correct.

    Returns a dict with keys 'Correct', 'Incorrect', 'Missing', 'Spurious', 'Invalid' mapping to lists.
    Correct and Incorrect hold the canonical form of the actual value, Invalid holds the raw text
    of whichever side could not be parsed.

        label       result                   Cor        Inc        Mis    Spu    Inv
        a           a (any format)           [a]
        a           b                                   [b]
        a                                                          [a]
        -           a                                                     [a]
        a           boo                                                          [boo]
        -                                    []         []         []     []     []
                    a                        None       None       None   None   None
    """
    output = {'Correct': [], 'Incorrect': [], 'Missing': [], 'Spurious': [], 'Invalid': []}

    if is_expected_undefined(expected):
        return {key: None for key in output}

    if is_scalar_empty(expected) and is_scalar_empty(actual):
        return output

    if is_scalar_empty(expected):
        output['Spurious'] = [normalize(actual)]
        return output

    if is_scalar_empty(actual):
        output['Missing'] = [normalize(expected)]
        return output

    expected_ts = Iso8601(convert_value_to_string(expected))
    actual_ts = Iso8601(convert_value_to_string(actual))

    # meaning equality is never true for an invalid timestamp, report it separately
    invalid = [ts.raw for ts in (expected_ts, actual_ts) if not ts.is_valid()]
    if invalid:
        output['Invalid'] = invalid
    elif expected_ts == actual_ts:
        output['Correct'] = [normalize(actual)]
    else:
        output['Incorrect'] = [normalize(actual)]

    return output

def compare_results_all(df, fields):
    """ For each case from df and for each field from 'fields' compares 'field' with 'Res: '+field
        and adds columns 'Cor: '+field, 'Inc: '+field, 'Mis: '+field, 'Spu: '+field, 'Inv: '+field
        with counts, plus the same columns suffixed with ' items' holding the compared values.
    """
    fields = [f for f in fields if f in df]

    if df.empty:
        return df.copy()

    modified_rows = []
    for i, row in df.iterrows():
        row_out = row.to_dict()

        for field in fields:
            if 'Res: ' + field not in row:
                continue

            res_items = compare_results(row[field], row['Res: ' + field])

            # Convert lists to counts, preserving None values
            res = {key: len(value) if value is not None else None for key, value in res_items.items()}

            for key, value in res.items():
                row_out[key[:3] + ': ' + field] = value

            for key, value in res_items.items():
                row_out[key[:3] + ': ' + field + ' items'] = value

        modified_rows.append(row_out)

    res_df = pd.DataFrame(modified_rows, index=df.index)

    return _reorder_result_columns(res_df)

def calculate_metrics(cor, inc, spu, mis):
    """
    Computes precision, recall, F1 and F2 score.
    Invalid timestamps are expected to be counted in 'inc' by the caller.
    """
    # arithmetic operations with None cause exception
    # arithmetic operations with NaN result in NaN without exception
    if cor is None:
        cor = np.nan

    if inc is None:
        inc = np.nan

    if spu is None:
        spu = np.nan

    if mis is None:
        mis = np.nan

    denominator_precision = cor + inc + spu
    if denominator_precision > 0:
        # Of all timestamps reported, how many denote the labeled instant?
        precision = cor / denominator_precision
    else:
        precision = np.nan

    denominator_recall = cor + inc + mis
    if denominator_recall > 0:
        # Of all labeled timestamps, how many were reported correctly?
        recall = cor / denominator_recall
    else:
        recall = np.nan

    if precision == 0 or recall == 0:
        f1_score = f2_score = 0
    else:
        # F_beta = (1 + beta^2) * (precision * recall) / ((beta^2 * precision) + recall)
        f1_score = 2 * precision * recall / (precision + recall) if (precision + recall) > 0 else np.nan
        f2_score = 5 * precision * recall / (4 * precision + recall) if (precision + recall) > 0 else np.nan

    return precision, recall, f1_score, f2_score

def _column_sum(df, column):
    if column not in df:
        return None
    return int(pd.to_numeric(df[column], errors='coerce').sum())

def get_metrics(res_df, fields):
    """ For results dataframe generated by validate
        produces dataframe with one row of metrics per field (plus the exceptions row)
    """
    metrics_list = []

    total_cases = len(res_df.index)

    if 'Sys: exception' in res_df.columns:
        exceptions_no = int(res_df['Sys: exception'].notna().sum())
        clean_df = res_df[res_df['Sys: exception'].isna()]
    else:
        exceptions_no = None
        clean_df = res_df

    metrics_list.append({
        'field': 'exceptions',
        'total cases': total_cases,
        'positive cases': exceptions_no,
    })

    for field in fields:
        if field in clean_df:
            total_cases = int(clean_df[field].apply(lambda x: not is_expected_undefined(x)).sum())
            positive_cases = int(clean_df[field].apply(lambda x: not is_scalar_empty(x)).sum())
        else:
            total_cases = positive_cases = None

        valid = invalid = reformatted = None
        if 'Can: ' + field in clean_df:
            valid = int(clean_df['Can: ' + field].notna().sum())
            invalid = int(clean_df['Err: ' + field].notna().sum()) if 'Err: ' + field in clean_df else None

            if 'Res: ' + field in clean_df:
                raw = clean_df['Res: ' + field].apply(convert_value_to_string)
                canonical = clean_df['Can: ' + field]
                reformatted = int((canonical.notna() & (canonical != raw)).sum())

        cor = _column_sum(clean_df, 'Cor: ' + field)
        inc = _column_sum(clean_df, 'Inc: ' + field)
        mis = _column_sum(clean_df, 'Mis: ' + field)
        spu = _column_sum(clean_df, 'Spu: ' + field)
        inv = _column_sum(clean_df, 'Inv: ' + field)

        precision = recall = f1_score = f2_score = None
        if cor is not None:
            precision, recall, f1_score, f2_score = calculate_metrics(cor, inc + (inv or 0), spu, mis)

        metrics_list.append({
            'field': field,
            'total cases': total_cases,
            'positive cases': positive_cases,
            'valid': valid,
            'invalid': invalid,
            'reformatted': reformatted,
            'cor': cor,
            'inc': inc,
            'mis': mis,
            'spu': spu,
            'inv': inv,
            'precision': precision,
            'recall': recall,
            'F1 score': f1_score,
            'F2 score': f2_score,
        })

    metrics = pd.DataFrame(metrics_list)

    metrics.dropna(axis=1, how="all", inplace=True)

    return metrics

def sort_by_timestamp(df, column, ascending=True):
    """ Stable sort of the rows of 'df' by the timestamps in 'column'.

        Uses the total sort order of Iso8601: rows whose timestamp is invalid or empty are
        equal to each other and come first when ascending, last when descending,
        always in their original relative order.
    """
    if column not in df.columns:
        raise ValueError(f"Column {column!r} is missing from df")

    keys = [(0,) if is_scalar_empty(value) else Iso8601(convert_value_to_string(value)).sort_key()
            for value in df[column]]

    # reverse=True keeps equal keys in their original order
    order = sorted(range(len(keys)), key=keys.__getitem__, reverse=not ascending)

    return df.iloc[order]

def _single_row_worker(row_tuple):
    """Runs in a separate process / thread.
       Accepts (i, row, fields, source_prefix) because
       top-level, pickle-friendly functions are required for ProcessPools.
    """
    i, row_in, fields, source_prefix = row_tuple
    row_out = {}

    row_start_time = time.time()
    try:
        values = {field: row_in.get(source_prefix + field) for field in fields}
        record = validate_record(values, fields, record_id=i)
        flat = flatten_timestamp_record(record, include_raw=False)

        for field in fields:
            row_out['Can: ' + field] = flat.get(f"{field.strip()} canonical")
            row_out['Err: ' + field] = flat.get(f"{field.strip()} error")

        row_out["Sys: exception"] = np.nan          # keep column dtype homogeneous

    except Exception as e:
        row_out['Sys: exception'] = e

    row_out['Sys: time taken'] = time.time() - row_start_time

    row_out["_orig_index"] = i                      # re-index later
    return row_out

def _reorder_result_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Column order:
      1. Columns that don't belong to any field group
      2. For each field (a column with a matching 'Res: ', 'Can: ' or 'Err: ' column) in original order:
           the field, Res:, Can:, Err:, count columns, item columns
      3. System columns (Sys:)
      4. Any stragglers
    """
    if df.empty:
        return df

    cols = list(df.columns)

    value_prefixes = ['Res: ', 'Can: ', 'Err: ']
    metric_prefixes = ['Cor: ', 'Inc: ', 'Mis: ', 'Spu: ', 'Inv: ']

    label_bases = [c for c in cols if any(p + c in cols for p in value_prefixes)]

    grouped = set(label_bases)
    for base in label_bases:
        grouped.update(p + base for p in value_prefixes)
        grouped.update(p + base for p in metric_prefixes)
        grouped.update(p + base + ' items' for p in metric_prefixes)

    used = set()
    new_order = []

    def add(c):
        if c in cols and c not in used:
            new_order.append(c)
            used.add(c)

    # 1. Columns outside any group
    for c in cols:
        if c in grouped or c.startswith('Sys: '):
            continue
        add(c)

    # 2. Field groups
    for base in label_bases:
        add(base)
        for p in value_prefixes:
            add(p + base)
        for p in metric_prefixes:
            add(p + base)
        for p in metric_prefixes:
            add(p + base + ' items')

    # 3. System columns
    for c in cols:
        if c.startswith('Sys: '):
            add(c)

    # 4. Stragglers
    for c in cols:
        add(c)

    return df[new_order]

def normalize_all(df: pd.DataFrame,
                  fields,
                  source_prefix: str       = "Res: ",
                  max_workers: int | None  = 1,
                  use_threads: bool        = True):
    """ For each case from df validates the timestamp in column source_prefix + field
        for every field and adds columns:
            'Can: ' + field - canonical RFC 3339 timestamp (empty if invalid)
            'Err: ' + field - why the timestamp was not recognized (empty if valid)
            'Sys: exception' - exception information if there was an exception
            'Sys: time taken' - time taken in seconds

        ``use_threads=False`` -> processes       (best for CPU work)
        ``use_threads=True``  -> ThreadPoolExec (best for I/O work)

        To enable parallelism set max_workers = None

        If use_threads = False dont forget to wrap outer code in
            if __name__ == "__main__":
                main()
    """
    missing_columns = [source_prefix + f for f in fields if source_prefix + f not in df.columns]
    if missing_columns:
        raise ValueError(f"The following columns are missing from df: {missing_columns}")

    # prepare data once to avoid pickling the whole DataFrame for every task
    tasks = [(i, row, fields, source_prefix) for i, row in df.iterrows()]

    Executor = cf.ThreadPoolExecutor if use_threads else cf.ProcessPoolExecutor
    max_workers = max_workers or os.cpu_count()

    results = []
    with Executor(max_workers=max_workers) as pool:
        # tqdm + as_completed gives a responsive progress bar
        for f in tqdm(cf.as_completed([pool.submit(_single_row_worker, t) for t in tasks]),
                      total=len(tasks),
                      desc="Processing rows"):
            results.append(f.result())

    if results:
        res_df = pd.DataFrame(results).set_index("_orig_index")
    else:
        new_columns = [p + f for f in fields for p in ('Can: ', 'Err: ')] + ['Sys: exception', 'Sys: time taken']
        res_df = pd.DataFrame(columns=new_columns, index=df.index)

    res_df = df.join(res_df, how="left")            # preserve original cols & order

    return _reorder_result_columns(res_df)


def validate(source_df, fields=None, output_folder=None, drop_columns=(),
             file_prefix=None,
             sort_by=None,
             max_workers: int | None = 1,
             use_threads: bool = True):
    """
    Validates the timestamps reported in a dataset against labeled timestamps and evaluates them.

    Every reported timestamp (column 'Res: ' + field) is canonicalized, compared by meaning with
    the labeled timestamp (column field), and summarized in metrics. When an output folder is given
    two CSV files are written there, each prefixed with 'file_prefix' (current time by default):

    1. **results.csv**: case-by-case canonical forms, diagnostics and comparison counts.
    2. **metrics.csv**: aggregated counts and precision/recall per field.

    ### Parameters:
    - **source_df (Data Frame)**:
        Dataframe with labeled and reported timestamps. Must have a unique index.

    - **fields (list of str, optional)**:
        Label columns to evaluate. If None, every column X with a matching 'Res: X' column is used.

    - **output_folder (str, optional)**:
        Directory where the output CSV files will be saved.

    - **drop_columns (list of str, optional)**:
        Columns to exclude from the results.

    - **sort_by (str, optional)**:
        Column whose timestamps order the result rows (invalid and empty timestamps first).

    ### Returns:
    - **tuple (pd.DataFrame, pd.DataFrame)**: the results and the metrics.
    """

    if source_df.index.has_duplicates:
        raise ValueError("Please remove duplicate values in index column")

    if fields is None:
        fields = [c for c in source_df.columns if not c.startswith('Res: ') and f'Res: {c}' in source_df.columns]

        if not fields:
            raise ValueError("Cannot infer fields: no columns found with both base field and corresponding 'Res: ' columns")

    missing_fields = [field for field in fields if field not in source_df.columns]
    if missing_fields:
        raise ValueError(f"The following fields are missing from source_df: {missing_fields}")

    missing_res_columns = [f"Res: {field}" for field in fields if f"Res: {field}" not in source_df.columns]
    if missing_res_columns:
        raise ValueError(f"The following result columns must be present in source_df: {missing_res_columns}")

    if output_folder:
        os.makedirs(output_folder, exist_ok=True)

    file_prefix = file_prefix or datetime.now().strftime("%Y-%m-%d %H-%M-%S")

    ###################################
    # Canonicalize every reported timestamp
    res_df = normalize_all(source_df, fields, "Res: ", max_workers, use_threads)
    res_df = res_df.drop(columns=list(drop_columns))

    ###################################
    # Compare with the labels
    res_df = compare_results_all(res_df, fields)

    if sort_by is not None:
        res_df = sort_by_timestamp(res_df, sort_by)

    if output_folder:
        res_df.to_csv(os.path.join(output_folder, f"{file_prefix} results.csv"))

    ###################################
    # Calculate metrics for each field
    metrics_df = get_metrics(res_df, fields)

    if output_folder:
        metrics_df.to_csv(os.path.join(output_folder, f"{file_prefix} metrics.csv"), index=False)

    return res_df, metrics_df
