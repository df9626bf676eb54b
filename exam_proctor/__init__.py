"""Proctoring engine for timed multiple-choice examinations."""
