# blackgift_chat/api/__init__.py
from . import chat

__all__ = ["chat"]
