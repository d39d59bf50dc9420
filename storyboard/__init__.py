"""Storyboard generator: from a text idea to scenes, images and video clips."""

from storyboard.busy import BusySnapshot, BusyTracker, EntityKind, GlobalFlag
from storyboard.config import ApiConfig, CredentialStore, GenerationSettings
from storyboard.errors import ErrorKind, IndexOutOfBoundsError, InvalidInputError, ProviderError, StoryboardError
from storyboard.models import (
    Annotation,
    BatchProgress,
    Blueprint,
    Character,
    Location,
    Scene,
    UploadedImage,
    VideoStatus,
    VideoStyle,
)
from storyboard.orchestrator import Storyboard
from storyboard.progress import BatchReporter
from storyboard.store import EntityStore

__all__ = [
    "Annotation",
    "ApiConfig",
    "BatchProgress",
    "BatchReporter",
    "Blueprint",
    "BusySnapshot",
    "BusyTracker",
    "Character",
    "CredentialStore",
    "EntityKind",
    "EntityStore",
    "ErrorKind",
    "GenerationSettings",
    "GlobalFlag",
    "IndexOutOfBoundsError",
    "InvalidInputError",
    "Location",
    "ProviderError",
    "Scene",
    "Storyboard",
    "StoryboardError",
    "UploadedImage",
    "VideoStatus",
    "VideoStyle",
]
