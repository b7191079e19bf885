import os
from pathlib import Path

# Read from environment, default to "data" for production
DATA_DIR = Path(os.environ.get("DATA_DIR", "data"))


def get_data_dir() -> Path:
    """Get the directory holding the service's database files."""
    return DATA_DIR


def get_database_path(name: str) -> Path:
    """Get the sqlite file backing database ``name``."""
    return DATA_DIR / f"{name}.db"
