from enum import Enum

class WebSocketMessageType(str, Enum):
    # client -> server
    SETUP = "setup"
    JOIN_CHAT = "join chat"
    LEAVE_CHAT = "leave chat"
    NEW_MESSAGE = "new message"
    TYPING = "typing"
    STOP_TYPING = "stop typing"
    USER_ONLINE = "user online"
    USER_OFFLINE = "user offline"

    # server -> client
    CONNECTED = "connected"
    MESSAGE_RECEIVED = "message received"
    USER_STATUS = "user status"
    ERROR = "error"

class DeliveryScope(str, Enum):
    # Delivered because the connection joined the room topic
    ROOM = "room"
    # Delivered to the member's personal topic (badges, chat list)
    USER = "user"
