import datetime as dt
import pandas as pd
import pytest

from adaptive_dash.utils.time import (
    parse_date, date_key, end_of_day, start_of_day, period_key, to_timezone, now_in_tz, cfg_timezone,
)

@pytest.mark.parametrize("raw", ["2024-03-05", "05/03/2024", "05-03-2024"])
def test_three_formats_parse_to_same_day(raw):
    assert parse_date(raw).date() == dt.date(2024, 3, 5)

def test_iso_with_time_and_zulu_is_naive_utc():
    d = parse_date("2024-03-05T10:30:00Z")
    assert d == dt.datetime(2024, 3, 5, 10, 30)
    assert d.tzinfo is None
    d2 = parse_date("2024-03-05T10:30:00-03:00")
    assert d2 == dt.datetime(2024, 3, 5, 13, 30)

@pytest.mark.parametrize("raw", ["n/a", "", "   ", None, True, float("nan"), "99/99/2024"])
def test_unparseable_values_yield_none(raw):
    assert parse_date(raw) is None

def test_epoch_seconds_and_milliseconds():
    secs = 1709596800  # 2024-03-05T00:00:00Z
    assert parse_date(secs) == dt.datetime(2024, 3, 5)
    assert parse_date(secs * 1000) == dt.datetime(2024, 3, 5)

def test_datetime_like_inputs():
    assert parse_date(dt.date(2024, 3, 5)) == dt.datetime(2024, 3, 5)
    assert parse_date(pd.Timestamp("2024-03-05 08:00")) == dt.datetime(2024, 3, 5, 8)
    aware = dt.datetime(2024, 3, 5, 12, tzinfo=dt.timezone(dt.timedelta(hours=2)))
    assert parse_date(aware) == dt.datetime(2024, 3, 5, 10)

def test_generic_fallback_parses_month_names():
    assert parse_date("March 5, 2024").date() == dt.date(2024, 3, 5)

def test_day_bounds_and_keys():
    d = dt.datetime(2024, 3, 5, 15, 0)
    assert date_key(d) == "2024-03-05"
    assert start_of_day(d) == dt.datetime(2024, 3, 5)
    assert end_of_day(dt.date(2024, 3, 5)).time() == dt.time.max

def test_period_keys_for_each_grain():
    wed = dt.datetime(2024, 3, 6)
    assert period_key(wed, "day") == "2024-03-06"
    assert period_key(wed, "week") == "2024-03-04"  # Monday
    assert period_key(wed, "month") == "2024-03-01"

def test_timezone_conversion_localize_and_convert():
    naive = dt.datetime(2024, 1, 1, 12, 0, 0)
    central = to_timezone(naive, "America/Chicago")
    assert central.tzinfo is not None
    back = to_timezone(central, "UTC")
    assert back.hour == 18

def test_now_in_tz_is_naive():
    assert now_in_tz("America/Sao_Paulo").tzinfo is None

def test_aware_values_land_on_the_local_calendar_day():
    late = "2024-03-05T23:30:00-03:00"  # 02:30 UTC on the 6th
    assert parse_date(late).date() == dt.date(2024, 3, 6)
    assert parse_date(late, "America/Sao_Paulo") == dt.datetime(2024, 3, 5, 23, 30)
    secs = 1709596800  # 2024-03-05T00:00:00Z
    assert parse_date(secs, "America/Sao_Paulo") == dt.datetime(2024, 3, 4, 21)
    # naive values are already local
    assert parse_date("2024-03-05 23:30", "America/Sao_Paulo") == dt.datetime(2024, 3, 5, 23, 30)
    assert cfg_timezone(None) == "UTC"
