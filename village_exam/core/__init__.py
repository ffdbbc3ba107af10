"""Exam-taking core: eligibility, integrity gate, answer auto-save, timer and attempt lifecycle."""
