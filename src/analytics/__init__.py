"""Pure numeric routines shared by the benchmark comparator and dashboards.

No I/O and no shared state. Deterministic.
"""
