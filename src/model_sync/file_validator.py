"""Local file checks used around every model download.

These helpers never talk to S3. They decide which keys are worth syncing,
verify staged downloads and clean up files on the local mirror.
"""

import hashlib
import os
import shutil
from typing import Optional

from model_sync.logging_config import create_logger

logger = create_logger(__name__)

# Binary model formats plus the config files shipped next to them
MODEL_EXTENSIONS = frozenset({
    ".pth",
    ".bin",
    ".onnx",
    ".safetensors",
    ".pkl",
    ".json",
    ".txt",
})

HASH_CHUNK_SIZE = 1024 * 1024


def is_model_file(key: str, extensions=MODEL_EXTENSIONS) -> bool:
    """Check whether an object key names a model or config file.

    Args:
        key: S3 object key or local path
        extensions: Recognised suffixes, lowercase with leading dot

    Returns:
        True if the lowercased key ends with one of the extensions
    """
    lower_key = key.lower()
    return any(lower_key.endswith(ext) for ext in extensions)


def calculate_sha256(file_path: str) -> str:
    """Calculate the SHA256 hex digest of a file.

    Args:
        file_path: File to hash

    Returns:
        Lowercase hex digest

    Raises:
        OSError: If the file cannot be read
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def verify_file_integrity(
    file_path: str,
    expected_size: Optional[int] = None,
    expected_hash: Optional[str] = None,
) -> bool:
    """Verify a downloaded file against the remote object's attributes.

    Never raises: a missing or unreadable file is a failed verification.

    Args:
        file_path: File to verify
        expected_size: Size in bytes the file must have (optional)
        expected_hash: SHA256 hex digest the file must have (optional)

    Returns:
        True if every requested check passed
    """
    try:
        stats = os.stat(file_path)
    except FileNotFoundError:
        if expected_size is not None:
            logger.warning(
                f"File size mismatch: expected {expected_size}, file does not exist "
                f"({file_path})"
            )
        else:
            logger.warning(f"File to verify does not exist: {file_path}")
        return False
    except OSError as e:
        logger.error(f"Error verifying file integrity: {e} ({file_path})")
        return False

    if expected_size is not None and stats.st_size != expected_size:
        logger.warning(
            f"File size mismatch: expected {expected_size}, got {stats.st_size} "
            f"({file_path})"
        )
        return False

    if expected_hash:
        try:
            actual_hash = calculate_sha256(file_path)
        except OSError as e:
            logger.error(f"Error hashing file {file_path}: {e}")
            return False

        if actual_hash != expected_hash.lower():
            logger.warning(
                f"File hash mismatch: expected {expected_hash}, got {actual_hash} "
                f"({file_path})"
            )
            return False

    logger.debug(f"File integrity verified successfully: {file_path}")
    return True


def check_disk_space(target_dir: str, required_bytes: int = 0) -> bool:
    """Check that the filesystem holding target_dir can take required_bytes.

    Returns False, with an error logged, when the directory cannot be
    inspected.
    """
    try:
        usage = shutil.disk_usage(target_dir)
    except OSError as e:
        logger.error(f"Error checking disk space for {target_dir}: {e}")
        return False

    if usage.free < required_bytes:
        logger.error(
            f"Insufficient disk space in {target_dir}: "
            f"{required_bytes} bytes required, {usage.free} available"
        )
        return False
    return True


def cleanup_file(file_path: str) -> None:
    """Remove a file if present.

    Absence is not an error and any other failure is only logged, so this
    is safe to call from an error path.
    """
    try:
        os.remove(file_path)
        logger.debug(f"Removed file: {file_path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove file {file_path}: {e}")
