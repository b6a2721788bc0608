"""Per-user engine state on top of a namespaced BaseStore.

Namespaces (root defaults to "rmm"):
- [root, user, "weights"]            key "reranker"        RerankerState
- [root, user, "gradients"]          key "gradient"        GradientAccumulatorState
- [root, user, "buffer"]             key "message-buffer"  live MessageBuffer
- [root, user, "buffer", "staging"]  key "message-buffer"  staged MessageBuffer
- [root, user, "metadata"]           key "session"         SessionMetadata

Every method is a failure boundary: store or decode errors are logged and
turned into None / False so a broken store never blocks a turn.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from rmm.learning.types import GradientAccumulatorState, RerankerState
from rmm.memory.types import MessageBuffer, SessionMetadata, now_ms

if TYPE_CHECKING:
    from rmm.db.store import BaseStore, Namespace, StoreItem

logger = logging.getLogger(__name__)


class RMMStateStore:
    """Typed load/save of reranker, gradient, buffer and metadata state."""

    # Namespace segments and keys
    WEIGHTS_NAMESPACE = "weights"
    WEIGHTS_KEY = "reranker"
    GRADIENTS_NAMESPACE = "gradients"
    GRADIENTS_KEY = "gradient"
    BUFFER_NAMESPACE = "buffer"
    BUFFER_KEY = "message-buffer"
    STAGING_NAMESPACE = "staging"
    METADATA_NAMESPACE = "metadata"
    METADATA_KEY = "session"

    def __init__(self, store: BaseStore, root: str = "rmm"):
        self.store = store
        self.root = root

    # Namespaces

    def weights_namespace(self, user_id: str) -> Namespace:
        return (self.root, user_id, self.WEIGHTS_NAMESPACE)

    def gradients_namespace(self, user_id: str) -> Namespace:
        return (self.root, user_id, self.GRADIENTS_NAMESPACE)

    def buffer_namespace(self, user_id: str) -> Namespace:
        return (self.root, user_id, self.BUFFER_NAMESPACE)

    def staging_namespace(self, user_id: str) -> Namespace:
        return (self.root, user_id, self.BUFFER_NAMESPACE, self.STAGING_NAMESPACE)

    def metadata_namespace(self, user_id: str) -> Namespace:
        return (self.root, user_id, self.METADATA_NAMESPACE)

    # Raw access

    async def _get(self, namespace: Namespace, key: str) -> StoreItem | None:
        try:
            return await self.store.get(namespace, key)
        except Exception as e:
            logger.warning(f"Store get failed for {'/'.join(namespace)}:{key}: {e}")
            return None

    async def _put(self, namespace: Namespace, key: str, value: dict[str, Any]) -> bool:
        try:
            await self.store.put(namespace, key, value)
            return True
        except Exception as e:
            logger.warning(f"Store put failed for {'/'.join(namespace)}:{key}: {e}")
            return False

    # Reranker weights

    async def load_weights(
        self, user_id: str, expected_dimension: int | None = None
    ) -> RerankerState | None:
        """Load a user's reranker state.

        Args:
            user_id: User whose weights to load
            expected_dimension: If given, stored weights of another size are ignored

        Returns:
            RerankerState, or None if absent, corrupt or mis-sized
        """
        item = await self._get(self.weights_namespace(user_id), self.WEIGHTS_KEY)
        if item is None:
            return None

        try:
            state = RerankerState.from_dict(item.value)
        except Exception as e:
            logger.warning(f"Stored reranker weights for {user_id} are invalid: {e}")
            return None

        if expected_dimension is not None and state.dimension != expected_dimension:
            logger.warning(
                f"Stored weights for {user_id} have dimension {state.dimension}, "
                f"expected {expected_dimension}; ignoring"
            )
            return None
        return state

    async def save_weights(self, user_id: str, state: RerankerState) -> bool:
        """Persist a user's reranker state."""
        try:
            payload = state.to_dict()
        except Exception as e:
            logger.warning(f"Failed to serialize reranker weights for {user_id}: {e}")
            return False
        return await self._put(self.weights_namespace(user_id), self.WEIGHTS_KEY, payload)

    # Gradient accumulator

    async def load_gradient_state(self, user_id: str) -> GradientAccumulatorState | None:
        """Load a user's gradient accumulator, or None if absent or invalid."""
        item = await self._get(self.gradients_namespace(user_id), self.GRADIENTS_KEY)
        if item is None:
            return None
        try:
            return GradientAccumulatorState.from_dict(item.value)
        except Exception as e:
            logger.warning(f"Stored gradient state for {user_id} is invalid: {e}")
            return None

    async def save_gradient_state(self, user_id: str, state: GradientAccumulatorState) -> bool:
        """Persist a user's gradient accumulator."""
        state.last_updated = now_ms()
        return await self._put(
            self.gradients_namespace(user_id), self.GRADIENTS_KEY, state.to_dict()
        )

    async def clear_gradient_state(self, user_id: str) -> bool:
        """Remove a user's gradient accumulator."""
        try:
            await self.store.delete(self.gradients_namespace(user_id), self.GRADIENTS_KEY)
            return True
        except Exception as e:
            logger.warning(f"Failed to clear gradient state for {user_id}: {e}")
            return False

    # Message buffer

    async def load_buffer_item(self, user_id: str) -> StoreItem | None:
        """Raw live-buffer item, including the store's updated_at."""
        return await self._get(self.buffer_namespace(user_id), self.BUFFER_KEY)

    async def load_buffer(self, user_id: str) -> MessageBuffer:
        """Load the live buffer, falling back to an empty one."""
        item = await self.load_buffer_item(user_id)
        if item is None:
            return MessageBuffer.empty()
        try:
            return MessageBuffer.from_dict(item.value)
        except ValueError as e:
            logger.warning(f"Stored message buffer for {user_id} is invalid, resetting: {e}")
            return MessageBuffer.empty()

    async def save_buffer(self, user_id: str, buffer: MessageBuffer) -> bool:
        """Persist the live buffer."""
        return await self._put(self.buffer_namespace(user_id), self.BUFFER_KEY, buffer.to_dict())

    async def clear_buffer(self, user_id: str) -> bool:
        """Reset the live buffer to empty."""
        return await self.save_buffer(user_id, MessageBuffer.empty())

    # Staging

    async def load_staging_item(self, user_id: str) -> StoreItem | None:
        """Raw staging item."""
        return await self._get(self.staging_namespace(user_id), self.BUFFER_KEY)

    async def load_staging_buffer(self, user_id: str) -> MessageBuffer | None:
        """Load the staged buffer, or None if absent, invalid or already cleared."""
        item = await self.load_staging_item(user_id)
        if item is None:
            return None
        try:
            buffer = MessageBuffer.from_dict(item.value)
        except ValueError as e:
            logger.warning(f"Staging buffer for {user_id} is invalid: {e}")
            return None
        return None if buffer.is_empty else buffer

    async def save_staging_buffer(self, user_id: str, buffer: MessageBuffer) -> bool:
        """Write the staging slot."""
        return await self._put(self.staging_namespace(user_id), self.BUFFER_KEY, buffer.to_dict())

    async def stage_buffer(self, user_id: str, buffer: MessageBuffer) -> bool:
        """Snapshot a buffer into staging and clear the live buffer.

        The snapshot is written first so a failed clear can only duplicate
        messages, never lose them.

        Returns:
            True if the snapshot was written
        """
        try:
            snapshot = MessageBuffer.from_dict(buffer.to_dict())
        except ValueError as e:
            logger.warning(f"Refusing to stage invalid buffer for {user_id}: {e}")
            return False
        snapshot.retry_count = 0
        if not await self.save_staging_buffer(user_id, snapshot):
            return False
        if not await self.clear_buffer(user_id):
            logger.warning(f"Buffer staged for {user_id} but live buffer was not cleared")
        return True

    async def clear_staging(self, user_id: str) -> bool:
        """Empty the staging slot."""
        return await self.save_staging_buffer(user_id, MessageBuffer(messages=[]))

    async def increment_staging_retry(self, user_id: str) -> int | None:
        """Increment and persist the staged buffer's retry count.

        Returns:
            The new retry count, or None if staging is missing or the write failed
        """
        buffer = await self.load_staging_buffer(user_id)
        if buffer is None:
            return None
        buffer.retry_count += 1
        if not await self.save_staging_buffer(user_id, buffer):
            return None
        return buffer.retry_count

    async def increment_staging_retry_raw(self, user_id: str) -> int | None:
        """Read-modify-write the raw staging record's retry_count.

        Used when the typed path fails; it skips buffer validation so a
        partially corrupt record still keeps its retry count.
        """
        try:
            namespace = self.staging_namespace(user_id)
            item = await self.store.get(namespace, self.BUFFER_KEY)
            if item is None:
                return None
            value = dict(item.value)
            value["retry_count"] = int(value.get("retry_count", 0)) + 1
            await self.store.put(namespace, self.BUFFER_KEY, value)
            return value["retry_count"]
        except Exception as e:
            logger.warning(f"Raw staging retry update failed for {user_id}: {e}")
            return None

    # Session metadata

    async def load_metadata(self, user_id: str) -> SessionMetadata | None:
        """Load session metadata, or None if absent or invalid."""
        item = await self._get(self.metadata_namespace(user_id), self.METADATA_KEY)
        if item is None:
            return None
        try:
            return SessionMetadata.from_dict(item.value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Stored session metadata for {user_id} is invalid: {e}")
            return None

    async def save_metadata(self, user_id: str, metadata: SessionMetadata) -> bool:
        """Persist session metadata."""
        metadata.last_updated = now_ms()
        return await self._put(
            self.metadata_namespace(user_id), self.METADATA_KEY, metadata.to_dict()
        )

    async def increment_session_count(self, user_id: str, config_hash: str = "") -> SessionMetadata:
        """Bump the session counter, creating metadata on first use.

        The returned metadata reflects the increment even if the save failed.
        """
        metadata = await self.load_metadata(user_id) or SessionMetadata(config_hash=config_hash)
        metadata.session_count += 1
        if config_hash:
            if metadata.config_hash and metadata.config_hash != config_hash:
                logger.info(f"Reranker config changed for {user_id} since last session")
            metadata.config_hash = config_hash
        await self.save_metadata(user_id, metadata)
        return metadata
