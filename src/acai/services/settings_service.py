from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from acai.domain.errors import ValidationError
from acai.domain.models import StoreConfig
from acai.domain.money import round_money, to_decimal

log = logging.getLogger(__name__)


class SettingsService:
    def __init__(self, repo, storage=None):
        self.repo = repo
        self.storage = storage

    def get_config(self, session) -> StoreConfig:
        return session.refresh_config(self.repo)

    def update_config(self, session, store_name: str, mei_ceiling) -> StoreConfig:
        name = (store_name or "").strip()
        if len(name) < 2:
            raise ValidationError("Store name is required.")
        ceiling = to_decimal(mei_ceiling, "MEI ceiling")
        if ceiling <= 0:
            raise ValidationError("MEI ceiling must be > 0.")

        self.repo.update_store_config(session.user_id, name, round_money(ceiling))
        log.info("store_config_updated user_id=%s ceiling=%s", session.user_id, ceiling)
        return session.refresh_config(self.repo)

    def set_logo_url(self, session, logo_url: Optional[str]) -> StoreConfig:
        url = (logo_url or "").strip() or None
        if url and not url.lower().startswith(("http://", "https://")):
            raise ValidationError("Logo URL must start with http:// or https://.")
        self.repo.set_logo_url(session.user_id, url)
        return session.refresh_config(self.repo)

    def upload_logo(self, session, file_path: Path | str) -> StoreConfig:
        """Upload the image to storage and keep its public URL as the store logo."""
        if self.storage is None:
            raise ValidationError("Storage is not configured.")
        p = Path(file_path)
        object_path = f"{session.user_id}/logo{p.suffix.lower()}"
        url = self.storage.upload_file(object_path, p)
        return self.set_logo_url(session, url)
