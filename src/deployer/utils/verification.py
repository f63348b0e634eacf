"""SHA-256 verification utilities for artifact integrity checking."""

import hashlib
from pathlib import Path
import logging


def compute_sha256(file_path: Path, chunk_size: int = 64 * 1024) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to file to hash
        chunk_size: Read buffer size

    Returns:
        64-character lowercase hex digest

    Raises:
        FileNotFoundError: If file doesn't exist
        OSError: If file read fails
    """
    logger = logging.getLogger("deployer.verification")
    sha256_hash = hashlib.sha256()

    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            sha256_hash.update(chunk)

    result = sha256_hash.hexdigest()
    logger.debug(f"Computed SHA-256 for {file_path.name}: {result}")
    return result


def verify_sha256(file_path: Path, expected_sha256: str) -> bool:
    """Verify file SHA-256 matches expected value.

    Raises:
        ValueError: If expected_sha256 format is invalid
    """
    logger = logging.getLogger("deployer.verification")

    if not isinstance(expected_sha256, str) or len(expected_sha256) != 64:
        raise ValueError(
            f"Invalid SHA-256 format: {expected_sha256} (must be 64-char hex)"
        )

    expected_sha256 = expected_sha256.lower()
    actual_sha256 = compute_sha256(file_path)

    match = actual_sha256 == expected_sha256
    if match:
        logger.info(f"SHA-256 verification passed for {file_path.name}")
    else:
        logger.error(
            f"SHA-256 mismatch for {file_path.name}: "
            f"expected {expected_sha256}, got {actual_sha256}"
        )

    return match


def verify_sha256_or_raise(file_path: Path, expected_sha256: str) -> None:
    """Verify file SHA-256, raise ValueError on mismatch."""
    if not verify_sha256(file_path, expected_sha256):
        actual_sha256 = compute_sha256(file_path)
        raise ValueError(
            f"SHA256_MISMATCH: expected {expected_sha256}, got {actual_sha256}"
        )
