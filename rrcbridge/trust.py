"""Admin rights for privileged bridge commands."""

from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING

from .models import Person, ProviderId

if TYPE_CHECKING:
    from .service import BridgeService


class AuthManager:
    """
    Decides who may run privileged commands.

    A sender is an admin when:
    - auth is disabled in the config, or
    - the provider flags the sender as admin (in-band), or
    - the sender was promoted with /auth and is stored as an admin person.
    """

    def __init__(self, hub: BridgeService) -> None:
        self.hub = hub
        self.log = logging.getLogger("rrcbridge.trust")

    @property
    def enabled(self) -> bool:
        return bool(self.hub.config.auth_enabled)

    def has_admin_rights(self, sender: Person) -> bool:
        if not self.enabled:
            return True
        if sender.is_admin:
            return True
        person = self.hub.repository.find_person(sender.provider_id)
        return person is not None and person.is_admin

    def check_password(self, candidate: str | None) -> bool:
        password = self.hub.config.auth_password
        if candidate is None or not password:
            return False
        return secrets.compare_digest(
            candidate.encode("utf-8"), str(password).encode("utf-8")
        )

    def promote(self, sender: Person) -> bool:
        """Persist ``sender`` as an admin. Returns False if it already is one."""
        with self.hub.store.locked():
            person = self.hub.repository.find_person(sender.provider_id)
            if person is not None:
                if person.is_admin:
                    return False
                assert person.id is not None
                self.hub.repository.set_person_admin(person.id, True)
            else:
                self.hub.repository.insert_person(
                    Person(
                        provider_id=sender.provider_id,
                        display_name=sender.display_name,
                        profile_url=sender.profile_url,
                        is_admin=True,
                    )
                )
        self.log.info("Promoted %s to admin", sender.provider_id)
        return True

    def demote(self, provider_id: ProviderId) -> Person | None:
        """Forget a promoted admin. Returns the removed person, if any."""
        with self.hub.store.locked():
            person = self.hub.repository.find_person(provider_id)
            if person is None:
                return None
            self.hub.repository.delete_persons(provider_id)
        self.log.info("Demoted %s", provider_id)
        return person
