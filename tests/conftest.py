"""Pytest fixtures for the crop server tests."""

import os
import tempfile
from pathlib import Path

import pytest

# crop_server reads its directories at import time
_WORK_DIR = Path(tempfile.mkdtemp(prefix="crop-server-tests-"))
os.environ.setdefault("UPLOAD_DIR", str(_WORK_DIR / "uploads"))
os.environ.setdefault("OUTPUT_DIR", str(_WORK_DIR / "output"))


@pytest.fixture
def upload_dir() -> Path:
    return Path(os.environ["UPLOAD_DIR"])


@pytest.fixture
def output_dir() -> Path:
    return Path(os.environ["OUTPUT_DIR"])
