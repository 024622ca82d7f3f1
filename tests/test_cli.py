"""Tests for deb_offline.cli module."""

from unittest.mock import patch

import pytest

from deb_offline.cli import create_parser, main


class TestParser:
    def test_defaults(self):
        args = create_parser().parse_args(["git"])
        assert args.package == "git"
        assert args.architecture == "amd64"
        assert args.distro == "22.04"
        assert args.codename is None
        assert not args.quiet

    def test_positional_overrides(self):
        args = create_parser().parse_args(["git", "arm64", "20.04"])
        assert args.architecture == "arm64"
        assert args.distro == "20.04"

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            create_parser().parse_args(["--version"])
        assert exc.value.code == 0
        assert "deb-offline" in capsys.readouterr().out


class TestMain:
    def test_missing_package_prints_usage(self, capsys):
        assert main([]) == 1
        err = capsys.readouterr().err
        assert "Usage: deb-offline <package_name>" in err

    def test_missing_prerequisite(self, capsys):
        with patch("deb_offline.cli.check_prerequisites", return_value=False), \
                patch("deb_offline.cli.build_offline_bundle") as mock_build:
            assert main(["git"]) == 1
        mock_build.assert_not_called()
        assert "sudo apt install apt-rdepends" in capsys.readouterr().err

    def test_skip_prereq_check(self):
        with patch("deb_offline.cli.check_prerequisites") as mock_check, \
                patch("deb_offline.cli.build_offline_bundle"):
            assert main(["git", "--skip-prereq-check"]) == 0
        mock_check.assert_not_called()

    def test_success_passes_arguments(self):
        with patch("deb_offline.cli.check_prerequisites", return_value=True), \
                patch("deb_offline.cli.build_offline_bundle") as mock_build:
            code = main(["htop", "arm64", "20.04", "--codename", "focal", "-o", "out", "-q"])

        assert code == 0
        kwargs = mock_build.call_args.kwargs
        assert kwargs["package"] == "htop"
        assert kwargs["architecture"] == "arm64"
        assert kwargs["distro"] == "20.04"
        assert kwargs["codename"] == "focal"
        assert kwargs["output_dir"] == "out"
        assert kwargs["verbose"] is False

    def test_pipeline_error_exits_nonzero(self, capsys):
        with patch("deb_offline.cli.check_prerequisites", return_value=True), \
                patch("deb_offline.cli.build_offline_bundle", side_effect=RuntimeError("Target package git not found")):
            assert main(["git"]) == 1
        assert "Error: Target package git not found" in capsys.readouterr().err

    def test_missing_apt_get_exits_nonzero(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        cache = tmp_path / "git-offline" / "ubuntu-22.04-amd64-manifest.txt"
        cache.parent.mkdir()
        cache.write_text("Package: libc6\n")

        with patch("deb_offline.offline_bundle.subprocess.run", side_effect=FileNotFoundError("apt-get")):
            assert main(["git", "--skip-prereq-check", "-q"]) == 1
        assert "Error: apt-get is not available" in capsys.readouterr().err

    def test_mirror_defaults_to_none(self):
        with patch("deb_offline.cli.check_prerequisites", return_value=True), \
                patch("deb_offline.cli.build_offline_bundle") as mock_build:
            main(["git", "arm64"])
        assert mock_build.call_args.kwargs["mirror"] is None
