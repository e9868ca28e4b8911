"""Utility functions for Thematic Analyzer.

Import submodules directly (``utils.file_io``, ``utils.retry``,
``utils.text_processing``); ``file_io`` depends on the data model, which in
turn depends on ``retry`` and ``text_processing``.
"""
