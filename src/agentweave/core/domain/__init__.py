"""
Core Domain Layer

Pure business logic: executor lifecycle, workflow composition, sessions and
memories. Nothing in this package performs file or network I/O.
"""
