"""Shared utilities for patternloop."""

from patternloop.utils.time import days_between, parse_timestamp, utc_now

__all__ = ["days_between", "parse_timestamp", "utc_now"]
