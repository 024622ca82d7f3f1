"""Build an Offline Installation Bundle for a Debian/Ubuntu Package.

Downloads a target ``.deb`` for a given architecture, reads its direct
dependencies, drops the ones already shipped in the base distro image (as
listed in the distro's ``Packages`` index), downloads the rest and packs
everything with a generated installer script into a ``.tar.gz`` archive.
"""

from __future__ import annotations

import glob
import gzip
import shutil
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_ARCHITECTURE = "amd64"
DEFAULT_DISTRO = "22.04"
DEFAULT_MIRROR = "http://archive.ubuntu.com/ubuntu"
PORTS_MIRROR = "http://ports.ubuntu.com/ubuntu-ports"

# Architectures published on DEFAULT_MIRROR; everything else lives on PORTS_MIRROR
PRIMARY_ARCHITECTURES = ("amd64", "i386")

# Codename used when a numeric release is not in DISTRO_CODENAMES
DEFAULT_CODENAME = "jammy"

# Numeric Ubuntu release -> archive codename
DISTRO_CODENAMES = {
    "18.04": "bionic",
    "20.04": "focal",
    "22.04": "jammy",
    "23.10": "mantic",
    "24.04": "noble",
    "24.10": "oracular",
    "25.04": "plucky",
}

# Tool that must be installed on the build host
REQUIRED_TOOL = "apt-rdepends"

BASE_PACKAGE_DIR = "base_package"
DEPENDENCIES_DIR = "dependencies"


@dataclass(frozen=True)
class BundleResult:
    package: str
    architecture: str
    output_dir: Path
    archive: Path
    install_script: Path
    base_artifact: Path
    dependencies: list[str] = field(default_factory=list)
    in_base: list[str] = field(default_factory=list)
    downloaded: list[Path] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def resolve_codename(
    distro: str,
    codename: str | None = None,
    codenames: dict[str, str] | None = None,
    verbose: bool = True,
) -> str:
    """Return the archive codename to use for a numeric distro version.

    An explicit ``codename`` always wins. Versions missing from the mapping
    fall back to ``DEFAULT_CODENAME``.
    """
    if codename:
        return codename
    mapping = DISTRO_CODENAMES if codenames is None else codenames
    if distro in mapping:
        return mapping[distro]
    if verbose:
        print(
            f"Warning: No codename known for distro {distro}, "
            f"using '{DEFAULT_CODENAME}' package index (pass --codename to override)"
        )
    return DEFAULT_CODENAME


def default_mirror(architecture: str) -> str:
    """Archive mirror that carries ``architecture``."""
    if architecture in PRIMARY_ARCHITECTURES:
        return DEFAULT_MIRROR
    return PORTS_MIRROR


def manifest_url(architecture: str, codename: str, mirror: str | None = None) -> str:
    """URL of the compressed ``Packages`` index for ``main`` on one architecture."""
    mirror = mirror or default_mirror(architecture)
    return f"{mirror.rstrip('/')}/dists/{codename}/main/binary-{architecture}/Packages.gz"


def manifest_cache_path(output_dir: str | Path, distro: str, architecture: str) -> Path:
    return Path(output_dir) / f"ubuntu-{distro}-{architecture}-manifest.txt"


def check_prerequisites(tool: str = REQUIRED_TOOL) -> bool:
    """Return True if ``tool`` is an installed dpkg package on this host."""
    try:
        result = subprocess.run(["dpkg", "-s", tool], capture_output=True, text=True)
    except FileNotFoundError:
        return False
    return result.returncode == 0


def ensure_manifest(
    cache_path: str | Path,
    architecture: str = DEFAULT_ARCHITECTURE,
    codename: str = DEFAULT_CODENAME,
    mirror: str | None = None,
    verbose: bool = True,
) -> Path:
    """Make sure the decompressed package index is cached at ``cache_path``.

    An existing cache file is reused as-is, without any freshness check.
    Otherwise ``Packages.gz`` is downloaded and decompressed into place.

    Parameters
    ----------
    cache_path
        Where the decompressed index is stored.
    architecture
        Debian architecture name, e.g. "amd64" or "arm64".
    codename
        Archive codename, e.g. "jammy".
    mirror
        Base URL of the Ubuntu archive. Defaults to ``default_mirror(architecture)``.
    verbose
        Whether to print progress messages.

    Returns
    -------
    Path
        The cache path.

    Raises
    ------
    RuntimeError
        If the index could not be downloaded or is not valid gzip data.
    """
    import urllib.request

    cache_path = Path(cache_path)
    if cache_path.exists():
        if verbose:
            print(f"Manifest file already exists: {cache_path}")
        return cache_path

    url = manifest_url(architecture, codename, mirror)
    if verbose:
        print(f"Downloading package manifest ({codename}, {architecture}) from {url}...")

    try:
        with urllib.request.urlopen(url, timeout=60) as resp:
            payload = resp.read()
    except OSError as exc:
        raise RuntimeError(f"Failed to download the manifest file from {url}: {exc}") from exc

    try:
        text = gzip.decompress(payload)
    except (OSError, EOFError) as exc:
        raise RuntimeError(f"Downloaded manifest from {url} is not a valid gzip file: {exc}") from exc

    cache_path.parent.mkdir(parents=True, exist_ok=True)
    cache_path.write_bytes(text)

    if verbose:
        print(f"Wrote {cache_path}")

    return cache_path


def parse_manifest(text: str) -> set[str]:
    """Return the set of ``Package:`` field values in a Packages index."""
    packages = set()
    for line in text.splitlines():
        if line.startswith("Package: "):
            parts = line.split()
            if len(parts) > 1:
                packages.add(parts[1])
    return packages


def load_manifest(path: str | Path) -> set[str]:
    return parse_manifest(Path(path).read_text(encoding="utf-8", errors="replace"))


def find_artifact(package: str, directory: str | Path = ".") -> Path | None:
    """Return the first ``<package>_*.deb`` file in ``directory``, if any."""
    matches = sorted(Path(directory).glob(f"{glob.escape(package)}_*.deb"))
    return matches[0] if matches else None


def fetch_artifact(
    package: str,
    architecture: str = DEFAULT_ARCHITECTURE,
    workdir: str | Path = ".",
    verbose: bool = True,
) -> Path | None:
    """Download one package with ``apt-get download`` into ``workdir``.

    apt-get's exit status alone is not trusted: the download only counts as
    successful if a matching ``.deb`` shows up in ``workdir``.

    Returns the artifact path, or None if nothing was found.
    """
    cmd = ["apt-get", "download", f"{package}:{architecture}"]
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, errors="replace", cwd=str(workdir)
        )
    except FileNotFoundError as exc:
        raise RuntimeError(f"apt-get is not available: {exc}") from exc

    if result.returncode != 0 and verbose:
        print(f"apt-get download {package}:{architecture} failed ({result.returncode})")
        if result.stderr:
            print(f"  {result.stderr.strip()}")

    return find_artifact(package, workdir)


def move_artifact(artifact: str | Path, dest_dir: str | Path) -> Path:
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / Path(artifact).name
    shutil.move(str(artifact), str(target))
    return target


def read_control(artifact: str | Path, work_dir: str | Path) -> str:
    """Dump the control information of a ``.deb`` with ``dpkg-deb -I``.

    The output is also kept as ``control.txt`` in ``work_dir``.
    """
    try:
        result = subprocess.run(
            ["dpkg-deb", "-I", str(artifact)], capture_output=True, text=True, errors="replace"
        )
    except FileNotFoundError as exc:
        raise RuntimeError(f"dpkg-deb is not available: {exc}") from exc
    if result.returncode != 0:
        raise RuntimeError(
            f"dpkg-deb -I failed ({result.returncode}) for {artifact}\n{result.stderr}"
        )
    (Path(work_dir) / "control.txt").write_text(result.stdout, encoding="utf-8")
    return result.stdout


def dependency_name(clause: str) -> str:
    """Bare package name of one dependency clause.

    ``"libc6 (>= 2.34)"`` -> ``"libc6"``, ``"awk | mawk"`` -> ``"awk"``.
    Only the first alternative is considered.
    """
    tokens = clause.split()
    if not tokens:
        return ""
    return tokens[0].split("|", 1)[0]


def extract_dependency_names(control_text: str) -> list[str]:
    """Return the direct dependency names declared in ``dpkg-deb -I`` output.

    Both ``Depends`` and ``Pre-Depends`` lines are read, in the order they
    appear. Order and duplicates are kept.
    """
    deps: list[str] = []
    for line in control_text.splitlines():
        field_name, sep, value = line.strip().partition(": ")
        if not sep or field_name not in ("Depends", "Pre-Depends"):
            continue
        for clause in value.split(", "):
            name = dependency_name(clause)
            if name:
                deps.append(name)
    return deps


def filter_base_packages(dependencies: list[str], manifest: set[str]) -> list[str]:
    """Dependencies that are not part of the base image, in their original order."""
    return [dep for dep in dependencies if dep not in manifest]


def render_install_script(package: str) -> str:
    """Return the installer script placed in the bundle root."""
    return f"""#!/bin/bash
# Offline installation script for {package} generated by deb-offline
#
# Usage (as root, from anywhere):
#   bash install_{package}_offline.sh

if [ "$(id -u)" -ne 0 ]; then
  echo "This script must be run as root"
  exit 1
fi

SCRIPT_DIR="$(cd "$(dirname "$0")" && pwd)"
BASE_PACKAGE_DIR="$SCRIPT_DIR/{BASE_PACKAGE_DIR}"
DEPENDENCIES_DIR="$SCRIPT_DIR/{DEPENDENCIES_DIR}"

echo "Installing {package}..."
dpkg -R -i "$BASE_PACKAGE_DIR"

echo "Installing dependency packages..."
dpkg -R -i "$DEPENDENCIES_DIR"

echo "Fixing any missing dependencies..."
apt-get install -f -y

echo "Installation of {package} and its dependencies is complete."
"""


def write_install_script(output_dir: str | Path, package: str, verbose: bool = True) -> Path:
    script_path = Path(output_dir) / f"install_{package}_offline.sh"
    script_path.write_text(render_install_script(package))
    script_path.chmod(0o755)

    if verbose:
        print(f"Created installation script: {script_path}")

    return script_path


def create_archive(
    output_dir: str | Path,
    out_file: str | Path | None = None,
    verbose: bool = True,
) -> Path:
    """Pack the contents of ``output_dir`` into a gzip tarball.

    Members are stored relative to ``output_dir`` (``./base_package/...``),
    so extracting the archive yields the bundle layout directly.
    """
    output_dir = Path(output_dir)
    out_file = Path(out_file) if out_file is not None else output_dir.with_name(output_dir.name + ".tar.gz")

    if verbose:
        print(f"Creating tarball: {out_file}")

    with tarfile.open(out_file, "w:gz") as tar:
        tar.add(str(output_dir), arcname=".")

    return out_file


def build_offline_bundle(
    package: str,
    architecture: str = DEFAULT_ARCHITECTURE,
    distro: str = DEFAULT_DISTRO,
    codename: str | None = None,
    mirror: str | None = None,
    output_dir: str | Path | None = None,
    workdir: str | Path = ".",
    verbose: bool = True,
) -> BundleResult:
    """Download a package plus its missing direct dependencies and bundle them.

    Parameters
    ----------
    package
        Name of the package to bundle.
    architecture
        Debian architecture name (default "amd64").
    distro
        Numeric Ubuntu release of the target machine (default "22.04").
    codename
        Archive codename of the base image index. Derived from ``distro``
        when not given.
    mirror
        Base URL of the Ubuntu archive. Defaults to ``default_mirror(architecture)``.
    output_dir
        Bundle directory (default ``<package>-offline``).
    workdir
        Directory ``apt-get download`` drops artifacts into.
    verbose
        Whether to print progress messages.

    Returns
    -------
    BundleResult
        Paths of the bundle and archive, and which dependencies were skipped,
        downloaded or failed.
    """
    if not package:
        raise ValueError("No package specified for bundling.")

    output_dir = Path(output_dir) if output_dir is not None else Path(f"{package}-offline")
    base_dir = output_dir / BASE_PACKAGE_DIR
    deps_dir = output_dir / DEPENDENCIES_DIR
    cache_path = manifest_cache_path(output_dir, distro, architecture)
    codename = resolve_codename(distro, codename, verbose=verbose)

    with tempfile.TemporaryDirectory(prefix="deb-offline-") as temp_dir:
        if verbose:
            print("Debug Info:")
            print(f"  PACKAGE_NAME: {package}")
            print(f"  ARCHITECTURE: {architecture}")
            print(f"  DISTRO: {distro} ({codename})")
            print(f"  OUTPUT_DIR: {output_dir}")
            print(f"  TEMP_DIR: {temp_dir}")
            print(f"  MANIFEST_FILE: {cache_path}")

        ensure_manifest(cache_path, architecture, codename, mirror, verbose=verbose)
        manifest = load_manifest(cache_path)

        if verbose:
            print(f"Downloading target package: {package}")
        target = fetch_artifact(package, architecture, workdir, verbose=verbose)
        if target is None:
            raise RuntimeError(f"Target package {package} not found after download.")

        base_dir.mkdir(parents=True, exist_ok=True)
        deps_dir.mkdir(parents=True, exist_ok=True)
        base_artifact = move_artifact(target, base_dir)
        if verbose:
            print(f"Target package found and moved: {base_artifact.name}")

        if verbose:
            print(f"Extracting dependencies for: {package}")
        dependencies = extract_dependency_names(read_control(base_artifact, temp_dir))

        missing = filter_base_packages(dependencies, manifest)
        in_base = [dep for dep in dependencies if dep in manifest]
        if verbose:
            print(
                f"Found {len(dependencies)} direct dependencies "
                f"({len(in_base)} in base image, {len(missing)} to download)"
            )

        downloaded: list[Path] = []
        failed: list[str] = []
        for dep in missing:
            artifact = fetch_artifact(dep, architecture, workdir, verbose=verbose)
            if artifact is None:
                if verbose:
                    print(f"Failed to find downloaded package for: {dep}")
                failed.append(dep)
                continue
            downloaded.append(move_artifact(artifact, deps_dir))
            if verbose:
                print(f"Downloaded and moved: {dep}")

    if failed and verbose:
        print(f"\nWarning: {len(failed)} dependency package(s) could not be downloaded:")
        for dep in failed:
            print(f"  - {dep}")
        print("They are not in the bundle and must already be present on the target machine.\n")

    install_script = write_install_script(output_dir, package, verbose=verbose)
    archive = create_archive(output_dir, verbose=verbose)

    if verbose:
        print(f"Package {package} offline installation archive is ready: {archive}")

    return BundleResult(
        package=package,
        architecture=architecture,
        output_dir=output_dir,
        archive=archive,
        install_script=install_script,
        base_artifact=base_artifact,
        dependencies=dependencies,
        in_base=in_base,
        downloaded=downloaded,
        failed=failed,
    )
