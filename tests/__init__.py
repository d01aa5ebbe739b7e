"""
Ingestion Core Test Package

TEST AXIOMS:
=============
1. Determinism: same submission + same clock = same outcome
2. Explicit failure: bad input becomes a rejected acknowledgment, never an exception
3. No loss without a log line: every record is persisted, dead-lettered or dropped loudly
"""
