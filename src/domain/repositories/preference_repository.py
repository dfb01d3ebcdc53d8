"""Channel preference repository protocol."""

from typing import Protocol

from domain.entities.preference import ChannelPreference


class IPreferenceRepository(Protocol):
    """Repository interface for ChannelPreference entities."""

    async def get_for_channel(
        self,
        contact_id: str,
        channel: str,
        for_update: bool = False,
    ) -> ChannelPreference | None:
        """Get the preference of one contact on one channel.

        ``for_update`` takes a row lock where the database supports it.
        """
        ...

    async def list_for_contact(self, contact_id: str) -> list[ChannelPreference]:
        """Get every channel preference stored for a contact."""
        ...

    async def upsert(self, preference: ChannelPreference) -> ChannelPreference:
        """Create the preference or overwrite the stored one for (contact, channel)."""
        ...
