"""
utils/file_utils.py
File I/O helper functions for the API report stages.

All reads and writes of run JSON, rendered documents, sidecars and the
directory scans of Temp/ go through here.
"""
import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Per-suite documents written by the suite builder (or dated copies of them)
RE_SUITE_DOCUMENT = re.compile(r"(_latest|_\d{8}_\d{6})\.html$", re.IGNORECASE)


# -----------------------------------------------
# Read helpers
# -----------------------------------------------
def load_json_file(path: Path) -> Dict:
    """Load JSON file"""
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def load_text_file(path: Path) -> str:
    """Load text file"""
    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        return f.read()


def load_template(templates_path: Path, template_name: str) -> str:
    """Load an HTML layout from the templates folder."""
    template_path = Path(templates_path) / template_name
    if not template_path.exists():
        raise FileNotFoundError(f"Template not found: {template_path}")
    return load_text_file(template_path)


def load_json_safe(path: Path, warnings: List[str]) -> Optional[Dict]:
    """Load an optional JSON file; problems are recorded in warnings instead of raised."""
    try:
        if not path.exists():
            return None
        return load_json_file(path)
    except (OSError, ValueError) as e:
        warnings.append(f"Error loading {path}: {e}")
        return None


# -----------------------------------------------
# Write helpers
# -----------------------------------------------
def save_text_file(path: Path, content: str) -> Path:
    """Save text file, creating parent folders as needed"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(content)
    return path


def save_json_file(path: Path, data: Dict) -> Path:
    """Save JSON file, creating parent folders as needed"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return path


# -----------------------------------------------
# Directory scans
# -----------------------------------------------
def is_suite_document(path: Path) -> bool:
    return RE_SUITE_DOCUMENT.search(path.name) is not None


def discover_suite_documents(temp_root: Path) -> List[Path]:
    """
    Recursively find per-suite HTML documents under the Temp folder.

    Matches both '<Module>_latest.html' and dated '<Module>_YYYYMMDD_HHMMSS.html'
    copies. Returns a sorted list; an absent folder yields an empty list.
    """
    temp_root = Path(temp_root)
    if not temp_root.is_dir():
        return []
    found = [p for p in temp_root.rglob("*") if p.is_file() and is_suite_document(p)]
    return sorted(found)


def sidecar_path_for(document_path: Path) -> Path:
    """The structured sidecar lives next to its document with a .json suffix."""
    return Path(document_path).with_suffix(".json")
