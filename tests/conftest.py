"""Shared fixtures."""

from pathlib import Path
from typing import List

import pytest

from mpq_builder import StoredFile, build_archive


@pytest.fixture
def make_archive(tmp_path):
    """Return a function that writes an archive into tmp_path."""
    counter = iter(range(1000))

    def _make(files: List[StoredFile], **kwargs) -> Path:
        return build_archive(tmp_path / f"test{next(counter)}.mpq", files, **kwargs)

    return _make
