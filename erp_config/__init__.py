"""
Deployment configuration.

``load_settings()`` is the single entry point: defaults, then an optional
YAML file, then ``ERP_<FIELD>`` environment overrides.
"""

from erp_config.loader import load_settings, settings_checksum
from erp_config.schema import ErpSettings

__all__ = ["ErpSettings", "load_settings", "settings_checksum"]
