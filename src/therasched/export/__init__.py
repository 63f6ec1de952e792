from therasched.export.session_export import COLUMNS, write_sessions_csv

__all__ = ["COLUMNS", "write_sessions_csv"]
