"""File I/O utilities for Thematic Analyzer."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from ..exceptions import InvalidSourceError
from ..models import ExtractionResult


def ensure_directory_exists(directory: str) -> None:
    """Ensure that a directory exists, creating it if necessary."""
    if directory:
        os.makedirs(directory, exist_ok=True)


def load_sources(path: str) -> List[Dict[str, Any]]:
    """Load raw source records from a JSON or CSV file.

    JSON files hold either a list of records or an object with a ``sources``
    list. CSV files need ``id``, ``content`` and ``content_type`` columns;
    other columns except ``title`` become metadata.

    Args:
        path: Path to the input file

    Returns:
        List of record dictionaries (validated later by ``Source.from_dict``)
    """
    suffix = Path(path).suffix.lower()
    if suffix == '.csv':
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
        missing = {'id', 'content', 'content_type'} - set(df.columns)
        if missing:
            raise InvalidSourceError(f"CSV file {path} is missing columns: {', '.join(sorted(missing))}")
        records = []
        for row in df.to_dict(orient='records'):
            metadata = {k: v for k, v in row.items() if k not in ('id', 'content', 'content_type', 'title') and v != ''}
            records.append({
                'id': row['id'],
                'content': row['content'],
                'content_type': row['content_type'],
                'title': row.get('title', ''),
                'metadata': metadata,
            })
        return records

    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('sources')
    if not isinstance(data, list):
        raise InvalidSourceError(f"{path} must contain a list of sources or an object with a 'sources' list")
    return data


def save_result(result: ExtractionResult, out_path: str) -> str:
    """Save an extraction result as JSON.

    Args:
        result: Extraction result
        out_path: Path to the JSON file

    Returns:
        Path to the saved file
    """
    ensure_directory_exists(os.path.dirname(out_path))
    with open(out_path, 'w', encoding='utf-8') as f:
        json.dump(result.to_dict(), f, indent=2, default=str)
    return out_path


def save_themes_csv(result: ExtractionResult, out_path: str) -> str:
    """Save one row per final theme to a CSV file."""
    rows = []
    for theme in result.themes:
        rows.append({
            'id': theme.id,
            'label': theme.label,
            'description': theme.description,
            'keywords': '; '.join(theme.keywords),
            'codes': theme.size,
            'sources': len(theme.source_ids),
            'coherence': theme.coherence,
            'threshold': theme.threshold,
            'source_ids': '; '.join(theme.source_ids),
        })
    ensure_directory_exists(os.path.dirname(out_path))
    df = pd.DataFrame(rows, columns=['id', 'label', 'description', 'keywords', 'codes',
                                     'sources', 'coherence', 'threshold', 'source_ids'])
    df.to_csv(out_path, index=False)
    return out_path
