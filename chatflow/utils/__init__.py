"""Shared helpers for executors: Spanish date parsing and formatting."""

from chatflow.utils.date_parser import format_date_spanish, parse_natural_date, today_in

__all__ = ["format_date_spanish", "parse_natural_date", "today_in"]
