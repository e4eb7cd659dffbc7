"""Rollcall: attendance tracking and absence alerts."""
