"""
trust_ingestion -- bank statement parsing for the staging queue.

Turns bank CSV exports with heterogeneous headers into ``StatementRow``
values and hands them to the kernel's staging queue.

Architecture:
    trust_ingestion/ is a top-level package.  It imports from trust_kernel;
    nothing in trust_kernel or trust_engines imports from ingestion.
"""
