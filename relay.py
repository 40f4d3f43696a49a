import asyncio
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Set

from auth import Identity, verify_token
from errors import Unauthenticated
from logging_config import get_logger

logger = get_logger(__name__)

JOIN_EVENT = "join-room"
LEAVE_EVENT = "leave-room"
SIGNAL_EVENT = "webrtc-signal"
JOINED_EVENT = "room-joined"
LEFT_EVENT = "room-left"


class Transport(Protocol):
    async def send_json(self, data: Any) -> None:
        ...


class ConnectionState(str, Enum):
    PENDING = "pending"
    ADMITTED = "admitted"
    CLOSED = "closed"


class Connection:
    def __init__(self, transport: Transport, connection_id: Optional[str] = None):
        self.connection_id = connection_id or str(uuid.uuid4())
        self.transport = transport
        self.identity: Optional[Identity] = None
        self.state = ConnectionState.PENDING
        self.channels: Set[str] = set()
        # Channel most recently joined; implicit target of webrtc-signal
        self.current_channel: Optional[str] = None

    async def send(self, event: str, data: Any) -> None:
        await self.transport.send_json({"event": event, "data": data})

    def __repr__(self):
        return f"<Connection {self.connection_id[:8]} {self.state.value}>"


# Per-process state, only touched from the event loop; replicas do not share channels
class ChannelRelay:
    def __init__(self, secret: Optional[str] = None):
        self.secret = secret
        self.connections: Dict[str, Connection] = {}
        # channel name -> connection ids
        self.channels: Dict[str, Set[str]] = {}

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    def channel_names(self) -> List[str]:
        return sorted(self.channels)

    def members(self, channel_name: str) -> Set[str]:
        return set(self.channels.get(channel_name, ()))

    def admit(self, connection: Connection, token: Optional[str]) -> Identity:
        """Attach the token's identity to a pending connection.

        Raises ``Unauthenticated`` and closes the connection when the token
        does not verify; a closed connection can never be admitted later.
        """
        if connection.state is not ConnectionState.PENDING:
            raise Unauthenticated(f"Connection is {connection.state.value}")

        try:
            if self.secret is None:
                identity = verify_token(token)
            else:
                identity = verify_token(token, secret=self.secret)
        except Unauthenticated as e:
            connection.state = ConnectionState.CLOSED
            logger.warning(f"Refused connection {connection.connection_id}: {e.message}")
            raise

        connection.identity = identity
        connection.state = ConnectionState.ADMITTED
        self.connections[connection.connection_id] = connection
        logger.info(f"Admitted connection {connection.connection_id} for user {identity.user_id}")
        return identity

    def join(self, connection: Connection, channel_name: str) -> bool:
        if connection.state is not ConnectionState.ADMITTED:
            raise Unauthenticated("Connection is not admitted")

        members = self.channels.setdefault(channel_name, set())
        connection.current_channel = channel_name
        if connection.connection_id in members:
            logger.debug(f"Connection {connection.connection_id} already in channel {channel_name}")
            return False

        members.add(connection.connection_id)
        connection.channels.add(channel_name)
        logger.info(f"Connection {connection.connection_id} joined channel {channel_name} ({len(members)} members)")
        return True

    def leave(self, connection: Connection, channel_name: str) -> bool:
        members = self.channels.get(channel_name)
        if not members or connection.connection_id not in members:
            return False

        members.discard(connection.connection_id)
        connection.channels.discard(channel_name)
        if connection.current_channel == channel_name:
            connection.current_channel = None
        if not members:
            del self.channels[channel_name]
            logger.debug(f"Channel {channel_name} is empty, discarded")
        logger.info(f"Connection {connection.connection_id} left channel {channel_name}")
        return True

    async def relay(self, connection: Connection, channel_name: str, signal: Any) -> int:
        """Send ``signal`` to every other member of ``channel_name``.

        A sender that is not a member gets a silent no-op. Returns the number
        of recipients the signal was dispatched to.
        """
        members = self.channels.get(channel_name)
        if (connection.state is not ConnectionState.ADMITTED
                or not members or connection.connection_id not in members):
            logger.debug(f"Dropped signal from {connection.connection_id}: not a member of {channel_name}")
            return 0

        # Snapshot so joins/leaves during the sends do not affect this relay
        recipients = [
            self.connections[conn_id]
            for conn_id in members
            if conn_id != connection.connection_id and conn_id in self.connections
        ]
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(recipient.send(SIGNAL_EVENT, signal) for recipient in recipients),
            return_exceptions=True,
        )
        for recipient, result in zip(recipients, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to relay signal to {recipient.connection_id} in {channel_name}: {result}")
        logger.debug(f"Relayed signal from {connection.connection_id} to {len(recipients)} members of {channel_name}")
        return len(recipients)

    def disconnect(self, connection: Connection) -> List[str]:
        left = sorted(connection.channels)
        for channel_name in left:
            members = self.channels.get(channel_name)
            if members is None:
                continue
            members.discard(connection.connection_id)
            if not members:
                del self.channels[channel_name]
                logger.debug(f"Channel {channel_name} is empty, discarded")

        connection.channels.clear()
        connection.current_channel = None
        was_registered = self.connections.pop(connection.connection_id, None) is not None
        connection.state = ConnectionState.CLOSED
        if was_registered:
            logger.info(f"Connection {connection.connection_id} disconnected, left {len(left)} channels")
        return left

    async def dispatch(self, connection: Connection, event: Optional[str], data: Any = None) -> None:
        if event == JOIN_EVENT:
            channel_name = _channel_name(data)
            if channel_name is None:
                logger.warning(f"Ignoring {JOIN_EVENT} without a room from {connection.connection_id}")
                return
            self.join(connection, channel_name)
            await connection.send(JOINED_EVENT, {
                "room": channel_name,
                "members": len(self.channels.get(channel_name, ())),
            })
        elif event == LEAVE_EVENT:
            channel_name = _channel_name(data) or connection.current_channel
            if channel_name is None:
                return
            if self.leave(connection, channel_name):
                await connection.send(LEFT_EVENT, {"room": channel_name})
        elif event == SIGNAL_EVENT:
            if connection.current_channel is None:
                logger.debug(f"Dropped signal from {connection.connection_id}: no room joined")
                return
            await self.relay(connection, connection.current_channel, data)
        else:
            logger.warning(f"Unknown event {event!r} from connection {connection.connection_id}")


def _channel_name(data: Any) -> Optional[str]:
    if data is None or isinstance(data, (dict, list)):
        return None
    name = str(data)
    return name if name else None
