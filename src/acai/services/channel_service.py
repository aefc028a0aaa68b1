from __future__ import annotations

from acai.domain.errors import NotFoundError, ValidationError
from acai.domain.models import ChannelIcon, SalesChannel
from acai.domain.money import to_decimal


def _icon(value) -> ChannelIcon:
    if isinstance(value, ChannelIcon):
        return value
    try:
        return ChannelIcon(str(value))
    except ValueError as exc:
        allowed = ", ".join(i.value for i in ChannelIcon)
        raise ValidationError(f"Icon must be one of: {allowed}.") from exc


class ChannelService:
    def __init__(self, repo):
        self.repo = repo

    def list_channels(self, session) -> list[SalesChannel]:
        return self.repo.list_channels(session.user_id)

    def get_channel(self, session, channel_id: int) -> SalesChannel:
        c = self.repo.get_channel(session.user_id, int(channel_id))
        if not c:
            raise NotFoundError("Sales channel not found.")
        return c

    def _validate(self, name: str, fee_percent, icon):
        cleaned = (name or "").strip()
        if len(cleaned) < 2:
            raise ValidationError("Channel name is required.")
        fee = to_decimal(fee_percent, "Fee")
        if fee < 0:
            raise ValidationError("Fee must be >= 0.")
        return cleaned, fee, _icon(icon)

    def add_channel(self, session, name: str, fee_percent=0, icon=ChannelIcon.STORE) -> int:
        name, fee, icon = self._validate(name, fee_percent, icon)
        return self.repo.add_channel(session.user_id, name, fee, icon)

    def update_channel(self, session, channel_id: int, name: str, fee_percent, icon=ChannelIcon.STORE) -> None:
        name, fee, icon = self._validate(name, fee_percent, icon)
        if not self.repo.update_channel(session.user_id, int(channel_id), name, fee, icon):
            raise NotFoundError("Sales channel not found.")

    def delete_channel(self, session, channel_id: int) -> None:
        if not self.repo.delete_channel(session.user_id, int(channel_id)):
            raise NotFoundError("Sales channel not found.")
