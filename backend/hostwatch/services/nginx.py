"""Server names declared in nginx configuration files."""
import logging
import os
import re
from typing import Iterable, List

logger = logging.getLogger(__name__)

SERVER_NAME_PATTERN = re.compile(r"server_name\s+([^;]+);", re.IGNORECASE)
COMMENT_PATTERN = re.compile(r"#.*$", re.MULTILINE)


def extract_server_names(content: str) -> List[str]:
    """Concrete host names of every server_name directive.

    Catch-all (`_`), wildcard and regex names are left out.
    """
    names = []
    for match in SERVER_NAME_PATTERN.finditer(COMMENT_PATTERN.sub("", content)):
        for name in match.group(1).split():
            if name in ("_", "default_server") or name.startswith("~") or "*" in name:
                continue
            if name not in names:
                names.append(name)
    return names


def _config_files(path: str) -> List[str]:
    if os.path.isfile(path):
        return [path]
    if not os.path.isdir(path):
        return []

    files = []
    for entry in sorted(os.listdir(path)):
        # Editor backups
        if entry.endswith("~") or entry.endswith(".bak"):
            continue
        full_path = os.path.join(path, entry)
        if os.path.isfile(full_path):
            files.append(full_path)
    return files


def scan_nginx_configs(paths: Iterable[str]) -> List[str]:
    """Server names found in the given config files and directories.

    Missing paths are ignored. Unreadable files are logged and skipped.
    """
    names = []
    for path in paths:
        for config_file in _config_files(path):
            try:
                with open(config_file, "r", encoding="utf-8", errors="replace") as f:
                    content = f.read()
            except OSError as e:
                logger.warning(f"Could not read nginx config {config_file}: {e}")
                continue
            for name in extract_server_names(content):
                if name not in names:
                    names.append(name)
    logger.debug(f"Found {len(names)} server names in nginx configs")
    return names
