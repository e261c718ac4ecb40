"""Session registry, listener supervision and message composition."""

from .compositor import MessageCompositor
from .listener import EventListener
from .listeners import ListenerSet
from .registry import SessionRegistry

__all__ = ["EventListener", "ListenerSet", "MessageCompositor", "SessionRegistry"]
