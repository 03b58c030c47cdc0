"""Manifest validation logic beyond per-field shape checks."""
import logging
from typing import List

from homestead.models.errors import ValidationError
from homestead.models.manifest import Manifest

logger = logging.getLogger(__name__)


class ManifestValidator:
    """Validates cross-entry invariants of a parsed manifest."""

    def validate(self, manifest: Manifest) -> None:
        """Validate a manifest.

        Raises:
            ValidationError: If any invariant is violated (all problems listed)
        """
        errors: List[str] = []
        warnings: List[str] = []

        errors.extend(self._check_alias_uniqueness(manifest))
        errors.extend(self._check_entry_names(manifest))
        errors.extend(self._check_install_checks(manifest))
        errors.extend(self._check_requires(manifest))
        warnings.extend(self._check_identity_files(manifest))

        if errors:
            raise ValidationError("Manifest validation failed", errors)

        for warning in warnings:
            logger.warning(warning)

    def _check_alias_uniqueness(self, manifest: Manifest) -> List[str]:
        errors = []
        seen = set()
        for host in manifest.ssh_hosts:
            # ssh matches Host patterns case-insensitively
            key = host.alias.lower()
            if key in seen:
                errors.append(f"Duplicate SSH host alias '{host.alias}'")
            seen.add(key)
        return errors

    def _check_entry_names(self, manifest: Manifest) -> List[str]:
        errors = []
        seen = set()
        for name in manifest.entry_names():
            if not name.strip():
                errors.append("Package/service entry with empty name")
            elif name in seen:
                errors.append(f"Duplicate package/service name '{name}'")
            seen.add(name)
        return errors

    def _check_install_checks(self, manifest: Manifest) -> List[str]:
        errors = []
        for entry in manifest.packages:
            if entry.check is None or not entry.check.value:
                errors.append(f"Package '{entry.name}' has no install check")
        return errors

    def _check_requires(self, manifest: Manifest) -> List[str]:
        """``requires`` may only point backwards, so entries run after their prerequisites."""
        errors = []
        declared: List[str] = []
        for entry in list(manifest.packages) + list(manifest.services):
            for dependency in entry.when.requires:
                if dependency == entry.name:
                    errors.append(f"'{entry.name}' requires itself")
                elif dependency not in declared:
                    errors.append(
                        f"'{entry.name}' requires '{dependency}', which is not declared before it"
                    )
            declared.append(entry.name)
        return errors

    def _check_identity_files(self, manifest: Manifest) -> List[str]:
        warnings = []
        key_path = manifest.ssh_identity.path
        for host in manifest.ssh_hosts:
            if host.identity_file != key_path:
                warnings.append(
                    f"Host '{host.alias}' uses IdentityFile {host.identity_file}, "
                    f"but the provisioned key is {key_path}"
                )
        return warnings
