"""
Log directory housekeeping.

Keeps the per-day log folder from growing without bound by pruning the
oldest run directories.
"""
from os import remove, scandir, path
from shutil import rmtree


def clear_latest_items(dir_path: str, n_to_keep: int) -> int:
    """
    Clears items (files or folders) in the specified directory, keeping only
    the `n_to_keep` most recent ones.

    Items are sorted by modification time (oldest first) and removed from the
    front of that list until only `n_to_keep` remain.

    Args:
        dir_path (str): The directory containing the items.
        n_to_keep (int): Number of most recent items to keep.

    Returns:
        int: Number of items removed.

    Raises:
        FileNotFoundError: If `dir_path` does not exist.
        OSError: If the directory cannot be scanned.
    """
    if not path.exists(dir_path):
        raise FileNotFoundError(f"Path not found: {dir_path}")

    try:
        all_items = sorted(scandir(dir_path), key=lambda entry: entry.stat().st_mtime)
    except OSError as e:
        raise OSError(f"Error scanning directory {dir_path}: {e}") from e

    removed = 0
    for item in all_items[:max(len(all_items) - n_to_keep, 0)]:
        try:
            if item.is_file() or item.is_symlink():
                remove(item.path)
            elif item.is_dir():
                rmtree(item.path)
            else:
                continue
            removed += 1
        except OSError:
            # Another process may be pruning the same folder
            continue
    return removed
