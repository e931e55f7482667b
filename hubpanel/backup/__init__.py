"""
SQL dump generation, statement splitting and import
"""

from .splitter import split_statements
from .ordering import SchemaAnalyzer
from .dump import DumpGenerator, dump_filename
from .importer import import_sql, validate_import_filename

__all__ = [
    'split_statements',
    'SchemaAnalyzer',
    'DumpGenerator',
    'dump_filename',
    'import_sql',
    'validate_import_filename',
]
