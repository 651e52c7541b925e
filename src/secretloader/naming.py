"""
Environment variable name normalization.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import re

from secretloader.errors import FormatError

ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Docker secret file names (also rejects anything that could traverse paths)
SECRET_FILE_NAME_RE = re.compile(r"^[a-zA-Z0-9._-]+$")

_SEPARATORS_RE = re.compile(r"[ \-]")
_INVALID_RE = re.compile(r"[^A-Za-z0-9_]")


def normalize(prefix: str, label: str, uppercase: bool = True) -> str:
    """Convert a provider-supplied label into a valid env var name.

    Prepends ``prefix``, turns spaces and hyphens into underscores, drops
    every other character outside ``[A-Za-z0-9_]`` and upper-cases the
    result. A leading digit gets an underscore in front.

    Args:
        prefix: Env var prefix (may be empty)
        label: Secret label as named by the provider
        uppercase: Upper-case the result (default True)

    Returns:
        Env var name matching ``^[A-Za-z_][A-Za-z0-9_]*$``

    Raises:
        FormatError: If nothing usable is left of the label
    """
    name = _SEPARATORS_RE.sub("_", f"{prefix or ''}{label}")
    name = _INVALID_RE.sub("", name)
    if uppercase:
        name = name.upper()
    if not name:
        raise FormatError(f"label {label!r} does not normalize to an env var name")
    if name[0].isdigit():
        name = f"_{name}"
    return name


def is_valid_env_name(name: str) -> bool:
    return bool(name) and ENV_NAME_RE.match(name) is not None


def is_safe_secret_file_name(name: str) -> bool:
    """Check a Docker secret name before it is joined onto a directory."""
    if name in (".", ".."):
        return False
    return SECRET_FILE_NAME_RE.match(name) is not None


def docker_label(name: str) -> str:
    """Docker secret file names use dots too; map them like hyphens."""
    return name.replace(".", "_")


def file_ref_basename(target: str, reference: str) -> str:
    """Derive the tmpfs file name for an ``OP_<NAME>_FILE_REF`` binding.

    ``GOOGLE_APPLICATION_CREDENTIALS`` with ``op://Dev/GCP/sa-key.json``
    becomes ``google-application-credentials.json``.
    """
    stem = target.lower().replace("_", "-")
    field_name = reference.rstrip("/").rsplit("/", 1)[-1]
    if "." in field_name:
        ext = field_name.rsplit(".", 1)[-1]
        ext = _INVALID_RE.sub("", ext.replace("-", "_")).lower()
        if ext:
            return f"{stem}.{ext}"
    return stem
