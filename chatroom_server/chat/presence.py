"""
Presence registry module.

Maps each live connection to the display name it claimed.
"""

from typing import Dict, List, Optional

from chatroom_common.protocol_definitions import coerce_text
from chatroom_server.chat.errors import EmptyNameError, NameTakenError


class PresenceRegistry:
    """
    Connection id -> claimed display name, in claim order.

    Names are compared exactly (case-sensitive) after trimming. None of the
    methods await, so a caller holding the coordinator lock sees each call
    as atomic.
    """

    def __init__(self):
        self.names: Dict[int, str] = {}

    def claim(self, connection_id: int, name) -> str:
        """Claim ``name`` for a connection and return the trimmed name."""
        name = coerce_text(name)
        if not name:
            raise EmptyNameError()
        for owner_id, claimed in self.names.items():
            if claimed == name and owner_id != connection_id:
                raise NameTakenError(name)
        self.names[connection_id] = name
        return name

    def release(self, connection_id: int) -> Optional[str]:
        """Drop the entry for a connection, returning the released name if any."""
        return self.names.pop(connection_id, None)

    def list_names(self) -> List[str]:
        """Snapshot of claimed names in claim order."""
        return list(self.names.values())

    def __len__(self):
        return len(self.names)
