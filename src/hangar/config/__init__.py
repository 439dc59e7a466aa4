"""Configuration for the Hangar server and deployment pipeline.

Main components:
- Settings: environment-driven settings object passed to every component
- load_settings: build Settings, converting validation failures to ConfigError
- defaults: fixed deployment contract values (health check, sizing, policies)
"""

from hangar.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
