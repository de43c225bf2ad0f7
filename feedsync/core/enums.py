"""
Shared enums and constants used across the application.
"""

from enum import Enum


class ItemStatus(str, Enum):
    """Lifecycle of a catalog item as seen by the synchronizer"""
    AVAILABLE = "AVAILABLE"
    SOLD = "SOLD"
    PUBLISHED = "PUBLISHED"
    PUBLISH_FAILED = "PUBLISH_FAILED"
    UPDATED = "UPDATED"
    UPDATE_FAILED = "UPDATE_FAILED"

    @property
    def has_remote_id(self) -> bool:
        return self in (ItemStatus.PUBLISHED, ItemStatus.UPDATED, ItemStatus.UPDATE_FAILED)


class DiscrepancyKind(str, Enum):
    EXTRA_IN_REMOTE = "EXTRA_IN_REMOTE"
    EXTRA_IN_STORE = "EXTRA_IN_STORE"
    IDENTIFIER_MISMATCH = "IDENTIFIER_MISMATCH"
    DERIVED_ATTRIBUTE_MISMATCH = "DERIVED_ATTRIBUTE_MISMATCH"


class StepOutcome(str, Enum):
    """Result of one step of a create/update pipeline"""
    SUCCESS = "SUCCESS"
    SKIPPED = "SKIPPED"
    RETRYABLE_FAILURE = "RETRYABLE_FAILURE"
    FATAL_FAILURE = "FATAL_FAILURE"

    @property
    def failed(self) -> bool:
        return self in (StepOutcome.RETRYABLE_FAILURE, StepOutcome.FATAL_FAILURE)


class PipelineStep(str, Enum):
    # Create path
    CREATE_PRODUCT = "create_product"
    ADD_OPTIONS = "add_options"
    ADD_IMAGES = "add_images"
    PUSH_INVENTORY = "push_inventory"
    ASSIGN_COLLECTIONS = "assign_collections"
    PUBLISH_CHANNELS = "publish_channels"
    # Update path
    REQUIRE_REMOTE_ID = "require_remote_id"
    FETCH_REMOTE = "fetch_remote"
    SUBMIT_UPDATE = "submit_update"
    REPLACE_IMAGES = "replace_images"
    REFRESH_INVENTORY = "refresh_inventory"
    REPLACE_COLLECTIONS = "replace_collections"
    # Both
    BUILD_PROPOSAL = "build_proposal"
    DOWNLOAD_IMAGES = "download_images"
