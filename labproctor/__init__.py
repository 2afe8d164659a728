"""
labproctor - Proctored Lab Assessment Supervision

Captures screen and camera during a timed lab assessment, samples frames for
automated behaviour analysis, enforces the escalating warning policy and lets
reviewers replay recorded evidence against the violation timeline.
"""

__version__ = "1.0.0"
