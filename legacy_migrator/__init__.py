"""
Legacy Migration Scheduler

Scans a legacy ASP.NET WebForms solution, schedules its files for migration
into separate data-access and business-logic projects, and tracks each file
until an external transformation agent has produced its output.

Main Entry Points:
    - main.py: CLI interface
    - orchestrator.py: Operation facade
    - analysis/: Classification, relatedness and batching
    - tracking/: Filesystem probe and state tracker
    - storage/: Store gateway implementations
    - utils/: Shared utilities
"""

__version__ = "1.0.0"
