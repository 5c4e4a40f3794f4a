"""Configuration module for the LMS admin service."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
