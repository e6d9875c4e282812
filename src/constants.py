"""Constants used in the project."""

from enum import Enum


class CacheLocation(Enum):
    """Cache roots a package can be stored under.

    Args:
        Enum (string): Location identifiers accepted in settings files.
    """

    LOCAL = "local"
    USER = "user"
    CUSTOM = "custom"


class SkipRegistry(Enum):
    """Which registries to leave out when building the registry list.

    Args:
        Enum (string): Values accepted for the ``skip_registry`` setting.
    """

    NONE = "none"
    STANDARD = "standard"
    CONFIGURED = "configured"
    ALL = "all"


class DependencyKind(Enum):
    """How strongly a dependency edge requires its target."""

    REQUIRED = "required"
    OPTIONAL_DEFAULT = "optional_default"
    OPTIONAL = "optional"


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_DEFAULT = "https://code.dlang.org/"
    RECIPE_FILE = "dub.json"
    SELECTIONS_FILE = "dub.selections.json"
    SELECTIONS_FILE_VERSION = 1
    SETTINGS_FILE = "dubpm.yml"
    LOCAL_CACHE_DIR = ".dub/packages"
    USER_CACHE_SUBDIR = "packages"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    ENV_LOG_LEVEL = "DUBPM_LOG_LEVEL"

    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    REGISTRY_METADATA_TTL_SEC = 24 * 60 * 60
    DOWNLOAD_CHUNK_SIZE = 64 * 1024

    LOCK_TIMEOUT_SEC = 30.0
    LOCK_POLL_INTERVAL_SEC = 0.1
    LOCK_SUFFIX = ".lock"
    STAGING_PREFIX = ".staging-"
    BROKEN_PREFIX = ".broken-"
    ENTRY_METADATA_FILE = ".dubpm-entry.json"

    RESOLVER_MAX_WORKERS = 8
    RESOLVER_LOOP_LIMIT = 100

    ENV_REGISTRY_URLS = "DUBPM_REGISTRY_URLS"
    ENV_SKIP_REGISTRY = "DUBPM_SKIP_REGISTRY"
    ENV_CACHE_DIR = "DUBPM_CACHE_DIR"
    ENV_LOCK_TIMEOUT = "DUBPM_LOCK_TIMEOUT"
