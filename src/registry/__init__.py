"""Registry clients.

- base.py: RegistryClient interface
- filesystem.py: directory of zip archives
- http.py: HTTP registry API client
- registry_list.py: prioritized list of registries
"""

from .base import RegistryClient
from .filesystem import FileSystemRegistry
from .http import HttpRegistry
from .registry_list import RegistryList

__all__ = ["RegistryClient", "FileSystemRegistry", "HttpRegistry", "RegistryList"]
