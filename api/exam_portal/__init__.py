"""Exam Portal: practice exams, spreadsheet import and result reports."""

__version__ = "1.0.0"
