"""YAML manifest loader with embedded defaults."""
import copy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from homestead.config.validator import ManifestValidator
from homestead.core.logger import get_logger
from homestead.models.errors import ValidationError
from homestead.models.manifest import Manifest

logger = get_logger(__name__)

DEFAULT_MANIFEST_PATH = Path(__file__).resolve().parent.parent / "manifests" / "default.yml"

# Keys an override may set; anything else is a typo worth failing on.
MANIFEST_KEYS = ("ssh_identity", "ssh_hosts", "packages", "services")


class ManifestLoader:
    """Loads the embedded default manifest and applies an optional override file.

    Top-level keys present in the override replace the defaults' keys
    wholesale, except ``ssh_identity`` which merges field by field. Setting
    ``inherit_defaults: false`` in the override ignores the defaults entirely.
    """

    def __init__(self, manifest_path: Optional[str] = None,
                 defaults_path: Path = DEFAULT_MANIFEST_PATH):
        self.manifest_path = Path(manifest_path).expanduser() if manifest_path else None
        self.defaults_path = Path(defaults_path)
        self.raw_manifest: Optional[Dict[str, Any]] = None
        self.validator = ManifestValidator()

    def load(self) -> Manifest:
        """Return the validated manifest.

        Raises:
            ValidationError: If a file is missing, unparsable, or violates an invariant
        """
        defaults = self._read_yaml(self.defaults_path)
        override = self._read_yaml(self.manifest_path) if self.manifest_path else None

        self.raw_manifest = self.merge(defaults, override)
        source = str(self.manifest_path or self.defaults_path)

        try:
            manifest = Manifest.model_validate(self.raw_manifest)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid manifest {source}", _format_pydantic_errors(e)) from e

        self.validator.validate(manifest)
        logger.debug(
            f"Loaded manifest {source}: {len(manifest.ssh_hosts)} hosts, "
            f"{len(manifest.packages)} packages, {len(manifest.services)} services"
        )
        return manifest

    @staticmethod
    def merge(defaults: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Merge an override document onto the defaults."""
        if override is None:
            return copy.deepcopy(defaults)

        override = dict(override)
        inherit = override.pop("inherit_defaults", True)
        unknown = sorted(set(override) - set(MANIFEST_KEYS))
        if unknown:
            raise ValidationError(
                "Manifest validation failed",
                [f"Unknown top-level key '{key}' (valid: {', '.join(MANIFEST_KEYS)})" for key in unknown],
            )

        merged = copy.deepcopy(defaults) if inherit else {}
        for key, value in override.items():
            if key == "ssh_identity" and isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    @staticmethod
    def _read_yaml(path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise ValidationError(f"Manifest file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValidationError(f"Manifest {path} is not valid YAML", [str(e)]) from e
        except OSError as e:
            raise ValidationError(f"Cannot read manifest {path}", [str(e)]) from e

        if not data:
            raise ValidationError(f"Manifest file is empty: {path}")
        if not isinstance(data, dict):
            raise ValidationError(f"Manifest {path} must be a mapping at the top level")
        return data


def load_manifest(manifest_path: Optional[str] = None) -> Manifest:
    """Load the default manifest, optionally overridden by ``manifest_path``."""
    return ManifestLoader(manifest_path).load()


def _format_pydantic_errors(error: PydanticValidationError) -> List[str]:
    messages = []
    for err in error.errors():
        location = ".".join(str(part) for part in err.get("loc", ()))
        messages.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return messages
