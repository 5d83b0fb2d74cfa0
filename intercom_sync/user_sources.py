"""
User sources for bulk synchronization.

A user source is any iterable of member dictionaries. The default source is the
whole member directory; named sources are registered in a UserSourceRegistry and
selected with the ``user_list`` setting (``%$ServiceName``).
"""

import logging
from typing import Dict, Any, Callable, Iterable, Iterator, List, Optional

from intercom_sync.config import ConfigurationError

logger = logging.getLogger(__name__)


class StaticDirectory:
    """Member directory held in memory, e.g. from the ``directory.members`` config list."""

    def __init__(self, members: Optional[List[Dict[str, Any]]] = None):
        self.members = list(members or [])

    def all_members(self) -> Iterator[Dict[str, Any]]:
        return iter(self.members)

    def __iter__(self):
        return self.all_members()

    def __len__(self):
        return len(self.members)


class UserSourceRegistry:
    """Maps user source names to zero-argument factories returning member iterables."""

    def __init__(self):
        self._factories: Dict[str, Callable[[], Iterable[Dict[str, Any]]]] = {}

    def register(self, name: str, factory: Callable[[], Iterable[Dict[str, Any]]]) -> None:
        """
        Register a named user source.

        Args:
            name: Service name referenced as %$name in user_list
            factory: Callable returning an iterable of member dictionaries
        """
        if not callable(factory):
            raise ConfigurationError(f"User source factory for '{name}' is not callable")
        if name in self._factories:
            logger.warning(f"Replacing registered user source '{name}'")
        self._factories[name] = factory
        logger.debug(f"Registered user source '{name}'")

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: str) -> bool:
        return name in self._factories

    def resolve(self, name: str) -> Iterable[Dict[str, Any]]:
        """
        Build the user source registered under name.

        Raises:
            ConfigurationError: If no source is registered under name
        """
        factory = self._factories.get(name)
        if factory is None:
            known = ', '.join(self.names()) or 'none'
            raise ConfigurationError(f"Unknown user source '{name}' (registered: {known})")
        return factory()


def create_directory(config: Dict[str, Any]):
    """
    Create the member directory described by the ``directory`` config section.

    Args:
        config: Directory configuration dictionary

    Returns:
        A StaticDirectory or LDAPDirectory
    """
    directory_type = config.get('type', 'static')
    if directory_type == 'ldap':
        from intercom_sync.ldap_directory import LDAPDirectory
        return LDAPDirectory(config)
    if directory_type == 'static':
        return StaticDirectory(config.get('members', []))
    raise ConfigurationError(f"Unknown directory type: {directory_type}")
