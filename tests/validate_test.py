import math
import os
import pandas as pd
import pytest
import validation as v
from structured import TimestampField, TimestampRecord
from utils import flatten_timestamp_record
pd.options.display.width = 0

def _is_none_or_nan(x):
    return x is None or (isinstance(x, float) and math.isnan(x))

def get_test_df():
    created = [
        "2018-10-11T11:23:38Z",     # same instant, other offset -> correct
        "2018-10-11T11:23:38Z",     # one second off -> incorrect
        "2018-10-11",               # same instant, compact format -> correct
        "-",                        # no timestamp expected -> spurious
        "2018-10-11T11:23:38Z",     # unparsable result -> invalid
        None,                       # not labeled
        "2018-10-11T11:23:38Z",     # nothing reported -> missing
    ]
    res_created = [
        "2018-10-11T03:23:38-08:00",
        "2018-10-11 11:23:39",
        "20181011",
        "2018-10-11",
        "boo",
        "2018-10-11",
        None,
    ]
    return pd.DataFrame({
        'note': list('abcdefg'),
        'created': created,
        'Res: created': res_created,
    })

def test_validate_record():
    record = v.validate_record({'a': "2018-10-11 03:23:38", 'b': "boo", 'c': None}, record_id=7)

    assert isinstance(record, TimestampRecord)
    assert record.record_id == 7
    assert record.fields == [
        TimestampField(name='a', raw="2018-10-11 03:23:38", canonical="2018-10-11T03:23:38+00:00"),
        TimestampField(name='b', raw="boo", error='Failed to find RFC 3339 or ISO 8601 timestamp in "boo"'),
        TimestampField(name='c'),
    ]

    flat = flatten_timestamp_record(record)
    assert flat['record id'] == 7
    assert flat['a'] == "2018-10-11 03:23:38"
    assert flat['a canonical'] == "2018-10-11T03:23:38+00:00"
    assert flat['a error'] is None
    assert flat['b canonical'] is None
    assert flat['c'] is None

def test_validate_record_selected_fields_from_series():
    row = pd.Series({'created': "2018-10-11", 'updated': "boo", 'note': "x"})

    record = v.validate_record(row, ['created', 'missing'])

    assert [f.name for f in record.fields] == ['created', 'missing']
    assert record.fields[0].canonical == "2018-10-11T00:00:00+00:00"
    assert record.fields[1].raw is None

def test_normalize_all():
    df = pd.DataFrame({'ts': ["2018-10-11 03:23:38", "boo", None, "2015-02-18 235960.234567 −05"]},
                      index=[10, 20, 30, 40])

    res_df = v.normalize_all(df, ['ts'], source_prefix='', max_workers=2, use_threads=True)

    assert list(res_df.index) == [10, 20, 30, 40]
    assert list(res_df.columns[:3]) == ['ts', 'Can: ts', 'Err: ts']
    assert res_df.loc[10, 'Can: ts'] == "2018-10-11T03:23:38+00:00"
    assert _is_none_or_nan(res_df.loc[10, 'Err: ts'])
    assert _is_none_or_nan(res_df.loc[20, 'Can: ts'])
    assert res_df.loc[20, 'Err: ts'] == 'Failed to find RFC 3339 or ISO 8601 timestamp in "boo"'
    assert _is_none_or_nan(res_df.loc[30, 'Can: ts'])
    assert _is_none_or_nan(res_df.loc[30, 'Err: ts'])
    assert res_df.loc[40, 'Can: ts'] == "2015-02-18T23:59:60.234567-05:00"
    assert res_df['Sys: exception'].isna().all()
    assert 'Sys: time taken' in res_df.columns

def test_normalize_all_in_processes():
    df = pd.DataFrame({'Res: created': ["2018-10-11 03:23:38", "boo"]}, index=['x', 'y'])

    res_df = v.normalize_all(df, ['created'], max_workers=2, use_threads=False)

    assert list(res_df.index) == ['x', 'y']
    assert res_df.loc['x', 'Can: created'] == "2018-10-11T03:23:38+00:00"
    assert res_df.loc['y', 'Err: created'] == 'Failed to find RFC 3339 or ISO 8601 timestamp in "boo"'
    assert res_df['Sys: exception'].isna().all()

def test_normalize_all_missing_column():
    df = pd.DataFrame({'created': ["2018-10-11"]})

    with pytest.raises(ValueError):
        v.normalize_all(df, ['created'])

def test_normalize_all_empty():
    df = pd.DataFrame({'Res: created': []})

    res_df = v.normalize_all(df, ['created'])

    assert res_df.empty
    assert 'Can: created' in res_df.columns

def test_compare_results_all():
    df = get_test_df()
    df = v.normalize_all(df, ['created'])

    res_df = v.compare_results_all(df, ['created'])

    assert res_df.loc[0, 'Cor: created'] == 1
    assert res_df.loc[0, 'Cor: created items'] == ["2018-10-11T03:23:38-08:00"]
    assert res_df.loc[1, 'Inc: created'] == 1
    assert res_df.loc[1, 'Inc: created items'] == ["2018-10-11T11:23:39+00:00"]
    assert res_df.loc[2, 'Cor: created'] == 1
    assert res_df.loc[3, 'Spu: created'] == 1
    assert res_df.loc[4, 'Inv: created'] == 1
    assert res_df.loc[4, 'Inv: created items'] == ["boo"]
    assert _is_none_or_nan(res_df.loc[5, 'Cor: created'])
    assert res_df.loc[6, 'Mis: created'] == 1
    assert res_df.loc[6, 'Cor: created'] == 0

    # grouped column order
    assert list(res_df.columns[:9]) == [
        'note', 'created', 'Res: created', 'Can: created', 'Err: created',
        'Cor: created', 'Inc: created', 'Mis: created', 'Spu: created',
    ]
    assert list(res_df.columns[-2:]) == ['Sys: exception', 'Sys: time taken']

def test_get_metrics():
    df = v.normalize_all(get_test_df(), ['created'])
    res_df = v.compare_results_all(df, ['created'])

    metrics = v.get_metrics(res_df, ['created'])

    assert list(metrics['field']) == ['exceptions', 'created']
    exceptions = metrics.iloc[0]
    assert exceptions['total cases'] == 7
    assert exceptions['positive cases'] == 0

    m = metrics.iloc[1]
    assert m['total cases'] == 6
    assert m['positive cases'] == 5
    assert m['valid'] == 5
    assert m['invalid'] == 1
    assert m['reformatted'] == 4
    assert m['cor'] == 2
    assert m['inc'] == 1
    assert m['mis'] == 1
    assert m['spu'] == 1
    assert m['inv'] == 1
    assert m['precision'] == pytest.approx(0.4)
    assert m['recall'] == pytest.approx(0.4)
    assert m['F1 score'] == pytest.approx(0.4)

def test_sort_by_timestamp():
    df = pd.DataFrame({'ts': ["2018-10-11T03:23:39-08:00", "boo", "2018-10-11T03:23:39+11:00", None, "20181011 032339"]},
                      index=list('abcde'))

    ascending = v.sort_by_timestamp(df, 'ts')
    assert list(ascending.index) == ['b', 'd', 'c', 'e', 'a']

    descending = v.sort_by_timestamp(df, 'ts', ascending=False)
    assert list(descending.index) == ['a', 'e', 'c', 'b', 'd']

    with pytest.raises(ValueError):
        v.sort_by_timestamp(df, 'missing')

def test_validate(tmp_path):
    df = get_test_df()

    res_df, metrics_df = v.validate(df, output_folder=str(tmp_path), file_prefix="run",
                                    drop_columns=['note'], sort_by='Res: created')

    assert os.path.exists(tmp_path / "run results.csv")
    assert os.path.exists(tmp_path / "run metrics.csv")

    assert 'note' not in res_df.columns
    # invalid and empty results first, then chronological
    assert list(res_df.index) == [4, 6, 2, 3, 5, 0, 1]

    saved = pd.read_csv(tmp_path / "run metrics.csv")
    assert list(saved['field']) == ['exceptions', 'created']
    assert metrics_df.iloc[1]['cor'] == 2

def test_validate_errors():
    df = get_test_df()

    with pytest.raises(ValueError):
        v.validate(pd.concat([df, df]))

    with pytest.raises(ValueError):
        v.validate(df, ['updated'])

    with pytest.raises(ValueError):
        v.validate(df[['note', 'created']])

    with pytest.raises(ValueError):
        v.validate(df[['note', 'created']], ['created'])
