# dbxl/defaults.py
"""Default settings - no imports to avoid circular dependencies."""

settings = {
    'date_token': '##Date##',       # replaced in output file names at export time
    'date_token_format': '%Y%m%d',
    'timezone': None,               # None = process local zone for timestamps
    'xls_flush_rows': 1000,         # rows buffered by the .xls backend before flushing
    'max_column_width': 60,
    'min_column_width': 6,
    'max_cell_text': 32767,         # spreadsheet limit on characters per cell
    'debug_sql': False,             # log every statement at DEBUG level before running it
    'logging': {
        'directory': './logs',
        'level': 'INFO',
        'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        'timestamp_format': '%Y-%m-%d %H:%M:%S',
        'filename_format': '%Y%m%d_%H%M%S',  # Set to '' for single log file (no timestamp)
        'split_errors': True,
        'console': True,
        'retention_days': 30,
    }
}
