"""
Remote key/value store interface used behind the caches.

The hosted database is an external collaborator. ``RemoteStore`` describes
the narrow surface the cache layer needs from it; ``InMemoryRemoteStore`` is a
dict-backed implementation for local development and tests.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from lock_utils import coordinated_lock, create_component_lock, unregister_lock

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """Raised when the remote store cannot complete a read or a write."""

    pass


class RemoteStore:
    """Abstract base class for the remote store behind ``CachedDataStore``."""

    def fetch_user_data(self, user_id: str, data_key: str) -> Optional[Any]:
        """Return the stored value, or None when no record exists."""
        raise NotImplementedError

    def upsert_user_data(self, user_id: str, data_key: str, value: Any) -> None:
        """Insert or replace the value stored for ``(user_id, data_key)``."""
        raise NotImplementedError

    def list_images(
        self, user_id: str, category: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Image metadata for a user, newest upload first, optionally filtered by category."""
        raise NotImplementedError

    def list_property_analyses(
        self, user_id: str, analysis_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Property analyses for a user, or the single analysis ``analysis_id``."""
        raise NotImplementedError

    def close(self) -> None:
        """Release any resources held by the store."""
        pass


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryRemoteStore(RemoteStore):
    """Thread-safe dict-backed remote store."""

    def __init__(self):
        self._user_data: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._images: List[Dict[str, Any]] = []
        self._analyses: List[Dict[str, Any]] = []
        self._lock = create_component_lock(f"remote_store_{id(self)}")

    def close(self) -> None:
        unregister_lock(self._lock)

    def fetch_user_data(self, user_id: str, data_key: str) -> Optional[Any]:
        with coordinated_lock(self._lock):
            record = self._user_data.get((user_id, data_key))
            if record is None:
                return None
            return copy.deepcopy(record["data_value"])

    def upsert_user_data(self, user_id: str, data_key: str, value: Any) -> None:
        with coordinated_lock(self._lock):
            self._user_data[(user_id, data_key)] = {
                "user_id": user_id,
                "data_key": data_key,
                "data_value": copy.deepcopy(value),
                "updated_at": _utcnow_iso(),
            }
        logger.debug(f"Upserted user data {user_id}/{data_key}")

    def add_image(self, user_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        """
        Record image metadata for a user.

        Args:
            user_id: Owner of the image
            metadata: Arbitrary metadata; ``uploaded_at`` defaults to now

        Returns:
            The stored record
        """
        record = {"uploaded_at": _utcnow_iso(), **metadata, "user_id": user_id}
        with coordinated_lock(self._lock):
            self._images.append(record)
        return copy.deepcopy(record)

    def list_images(
        self, user_id: str, category: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        with coordinated_lock(self._lock):
            images = [
                copy.deepcopy(image)
                for image in self._images
                if image["user_id"] == user_id
                and (category is None or image.get("category") == category)
            ]
        images.sort(key=lambda image: image.get("uploaded_at", ""), reverse=True)
        return images

    def save_property_analysis(
        self, user_id: str, analysis_id: str, analysis: Dict[str, Any]
    ) -> None:
        record = {**analysis, "id": analysis_id, "user_id": user_id}
        with coordinated_lock(self._lock):
            self._analyses = [
                existing
                for existing in self._analyses
                if not (existing["user_id"] == user_id and existing["id"] == analysis_id)
            ]
            self._analyses.append(record)

    def list_property_analyses(
        self, user_id: str, analysis_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        with coordinated_lock(self._lock):
            return [
                copy.deepcopy(analysis)
                for analysis in self._analyses
                if analysis["user_id"] == user_id
                and (analysis_id is None or analysis["id"] == analysis_id)
            ]
