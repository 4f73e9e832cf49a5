from .user import User
from .chat import Chat, ChatMember
from .message import Message, MessageRead
from .invite_code import InviteCode, InviteCodeRedemption

__all__ = ["User", "Chat", "ChatMember", "Message", "MessageRead", "InviteCode", "InviteCodeRedemption"]
