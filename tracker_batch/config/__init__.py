"""Configuration system for tracker-batch.

This package provides type-safe configuration management using Pydantic.

Key Components:
    - TrackerSettings: Main configuration container with YAML loading support
    - OAuthConfig: OAuth application and redirect listener settings
    - TrackerApiConfig: Tracker REST API endpoint settings
    - BatchConfig: Batch file location and request pacing

Example:
    >>> from tracker_batch.config import TrackerSettings
    >>> settings = TrackerSettings.from_yaml("config.yaml")
    >>> org_id = settings.organization_id
"""

from tracker_batch.config.settings import BatchConfig, OAuthConfig, TrackerApiConfig, TrackerSettings

__all__ = ["BatchConfig", "OAuthConfig", "TrackerApiConfig", "TrackerSettings"]
