"""Formation bundles: portable ``.formation`` tarballs of a formation and its environment."""

from .builder import bundle_file_name, bundle_formation, load_formation_bundle
from .models import FormationBundle
from .uploader import create_and_upload_formation, upload_environment_variables, verify_base_templates

__all__ = [
    "FormationBundle",
    "bundle_file_name",
    "bundle_formation",
    "load_formation_bundle",
    "verify_base_templates",
    "create_and_upload_formation",
    "upload_environment_variables",
]
