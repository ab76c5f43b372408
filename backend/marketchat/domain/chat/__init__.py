"""Chat domain exports."""

from .service import get_history, list_conversations, mark_read, send_message, soft_delete

__all__ = [
	"get_history",
	"list_conversations",
	"mark_read",
	"send_message",
	"soft_delete",
]
