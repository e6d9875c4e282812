"""Versioning package.

- models.py: Version, VersionRange and selection of the highest matching version
- parser.py: parsing of version-range specifications
"""

from .models import (
    ANY,
    INVALID,
    MASTER,
    MAX_RELEASE,
    MIN_RELEASE,
    Version,
    VersionRange,
    highest_matching,
)
from .parser import parse_version_spec

__all__ = [
    "ANY",
    "INVALID",
    "MASTER",
    "MAX_RELEASE",
    "MIN_RELEASE",
    "Version",
    "VersionRange",
    "highest_matching",
    "parse_version_spec",
]
