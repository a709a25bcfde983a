"""Apply moderation verdicts to the remote platform."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from comment_sentry.core.enums import ActionTaken
from comment_sentry.db.time import utcnow
from comment_sentry.models import Comment
from comment_sentry.services.platform import PlatformClient, PlatformError

logger = logging.getLogger(__name__)


@dataclass
class ActionOutcome:
    """Result of one platform call, stored as evidence."""

    action: str
    success: bool
    confirmation: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    def as_evidence(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.action, "success": self.success}
        data.update(self.confirmation)
        if self.error:
            data["error"] = self.error
        return data


class ActionExecutor:
    """Runs delete/hide/unhide calls and records their result on the comment.

    Platform failures are written to the comment's ``*_error`` column and
    returned as an unsuccessful outcome; they are never raised.
    """

    def __init__(self, client: PlatformClient) -> None:
        self.client = client

    async def execute(self, comment: Comment, action: ActionTaken, token: str | None) -> ActionOutcome:
        """Carry out ``action`` for ``comment``; flagged and allowed need no platform call."""
        if action == ActionTaken.DELETED:
            return await self.delete(comment, token)
        if action == ActionTaken.HIDDEN:
            return await self.hide(comment, token)
        return ActionOutcome(action=action.value, success=True, confirmation={"platform_call": None})

    async def delete(self, comment: Comment, token: str | None) -> ActionOutcome:
        if comment.is_deleted:
            return ActionOutcome(action="delete", success=True, confirmation={"already_deleted": True})
        try:
            self._require_token(token)
            if not await self.client.delete_comment(comment.remote_id, token):
                raise PlatformError("Platform did not confirm the delete")
        except PlatformError as e:
            logger.warning("Failed to delete comment %s: %s", comment.remote_id, e)
            comment.delete_error = str(e)
            return ActionOutcome(action="delete", success=False, error=str(e))

        now = utcnow()
        comment.is_deleted = True
        comment.deleted_at = now
        comment.delete_error = None
        return ActionOutcome(
            action="delete",
            success=True,
            confirmation={"remote_id": comment.remote_id, "confirmed_at": now.isoformat()},
        )

    async def hide(self, comment: Comment, token: str | None) -> ActionOutcome:
        return await self._set_hidden(comment, token, hidden=True)

    async def unhide(self, comment: Comment, token: str | None) -> ActionOutcome:
        return await self._set_hidden(comment, token, hidden=False)

    async def _set_hidden(self, comment: Comment, token: str | None, *, hidden: bool) -> ActionOutcome:
        label = "hide" if hidden else "unhide"
        try:
            self._require_token(token)
            if not await self.client.set_hidden(comment.remote_id, token, hidden):
                raise PlatformError(f"Platform did not confirm the {label}")
        except PlatformError as e:
            logger.warning("Failed to %s comment %s: %s", label, comment.remote_id, e)
            comment.hide_error = str(e)
            return ActionOutcome(action=label, success=False, error=str(e))

        now = utcnow()
        comment.is_hidden = hidden
        comment.hidden_at = now if hidden else None
        comment.hide_error = None
        return ActionOutcome(
            action=label,
            success=True,
            confirmation={"remote_id": comment.remote_id, "confirmed_at": now.isoformat()},
        )

    @staticmethod
    def _require_token(token: str | None) -> None:
        if not token:
            raise PlatformError("Account has no access token")
