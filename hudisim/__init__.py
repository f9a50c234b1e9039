"""
Hudisim: Copy-on-Write / Merge-on-Read Table Simulator

An in-process model of a table that accumulates base and delta files
per partition, records writes and table services on a timeline of
instants, and answers row-count reads as of any instant.
"""

from hudisim.table import Table
from hudisim.writer import OperationKind, WriteMode

__version__ = "0.1.0"

__all__ = ["Table", "WriteMode", "OperationKind"]
