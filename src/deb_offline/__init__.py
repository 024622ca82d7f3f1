"""deb-offline: Build offline installation bundles for Debian/Ubuntu packages."""

from deb_offline.offline_bundle import (
    BundleResult,
    build_offline_bundle,
    extract_dependency_names,
    filter_base_packages,
    render_install_script,
)

__version__ = "0.1.0"
__all__ = [
    "BundleResult",
    "build_offline_bundle",
    "extract_dependency_names",
    "filter_base_packages",
    "render_install_script",
]
