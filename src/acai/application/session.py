from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from acai.domain.errors import AuthorizationError, NotFoundError
from acai.domain.models import StoreConfig, User


@dataclass
class Session:
    """Logged-in merchant: the user id every query is scoped by, plus the store config.

    Created by AuthService.login and passed explicitly to every service call.
    """

    user: User
    config: Optional[StoreConfig] = None
    _open: bool = field(default=True, repr=False)

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def user_id(self) -> int:
        if not self._open:
            raise AuthorizationError("Session is closed. Log in again.")
        return self.user.id

    def require_config(self) -> StoreConfig:
        if self.config is None:
            raise NotFoundError("Store configuration not loaded.")
        return self.config

    def refresh_config(self, repo) -> StoreConfig:
        config = repo.get_store_config(self.user_id)
        if config is None:
            raise NotFoundError("Store configuration not found.")
        self.config = config
        return config

    def close(self) -> None:
        self._open = False
        self.config = None
