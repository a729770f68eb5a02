"""Shared fixtures: a sample catalog and stand-ins for the external tools."""

import re
import textwrap
from pathlib import Path

import pytest

from repobuilder.config_manager import RepositoryConfig

CATALOG_YAML = textwrap.dedent("""\
    mirrors:
      org: https://repo.example.com
      enterprise: https://repo.example.com
    templates:
      index_page: |
        <html><head><title>{{ Title }}</title></head><body>
        <h1>{{ RepoName }}</h1>
        <ul>{% for f in Files %}<li><a href="{{ f }}">{{ f }}</a></li>{% endfor %}</ul>
        </body></html>
      deb:
        org: |
          Origin: mongodb
          Label: mongodb
          Suite: {{ CodeName }}
          Codename: {{ CodeName }}/mongodb-org
          Architectures: {{ Architectures }}
          Components: {{ Component }}
          Description: MongoDB packages
        enterprise: |
          Origin: mongodb
          Label: mongodb
          Suite: {{ CodeName }}
          Codename: {{ CodeName }}
          Architectures: {{ Architectures }}
          Components: {{ Component }}
          Description: MongoDB Enterprise packages
    repos:
      - name: debian10
        type: deb
        edition: enterprise
        code_name: buster
        bucket: repo.example.com
        component: multiverse
        architectures:
          - amd64
        repos:
          - "10"
      - name: ubuntu2004
        type: deb
        edition: org
        code_name: focal
        bucket: repo.example.com
        component: multiverse
        architectures:
          - amd64
          - arm64
        repos:
          - testing
          - stable
      - name: rhel8
        type: rpm
        edition: org
        bucket: repo.example.com
        repos:
          - "8"
      - name: rhel7
        type: rpm
        edition: org
        bucket: repo.example.com
        region: us-west-2
        repos:
          - testing
          - stable
    services:
      notary_url: https://notary.example.com/api/sign
""")

_PACKAGE_NAME_RE = re.compile(r"^(?P<name>.+?)[-_](?P<version>\d+\.\d+\.\d+)")


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "repos.yaml"
    path.write_text(CATALOG_YAML)
    return path


@pytest.fixture
def catalog(catalog_file, tmp_path):
    conf = RepositoryConfig.from_yaml(catalog_file)
    conf.workspace = str(tmp_path / "workspace")
    conf.temp_space = str(tmp_path / "tmp")
    return conf


@pytest.fixture
def package_dir(tmp_path):
    directory = tmp_path / "build"
    directory.mkdir()
    (directory / "mongodb-org-4.4.0.amd64.deb").write_bytes(b"deb package payload")
    (directory / "mongodb-org-4.4.0.x86_64.rpm").write_bytes(b"rpm package payload")
    return directory


class FakeSigner:
    """Signer stand-in that writes a fixed signature and records calls."""

    def __init__(self, fail_with: Exception | None = None):
        self.calls = []
        self.fail_with = fail_with
        self.closed = False

    def sign(self, path, extension, overwrite=False):
        path = Path(path)
        self.calls.append((path, extension, overwrite))
        if self.fail_with is not None:
            raise self.fail_with
        signature = path.with_name(f"{path.name}.{extension}")
        if signature.exists() and not overwrite:
            return signature
        signature.write_bytes(b"-----BEGIN PGP SIGNATURE-----\n")
        return signature

    def close(self):
        self.closed = True


class FakeTools:
    """Replacement for run_command that imitates the repository tools."""

    def __init__(self):
        self.calls = []
        self.fail = {}

    def __call__(self, args, cwd=None):
        self.calls.append((list(args), Path(cwd) if cwd is not None else None))
        tool = args[0]
        if tool in self.fail:
            raise self.fail[tool]

        if tool == "dpkg-scanpackages":
            return self._scanpackages(Path(cwd) / args[-1])
        if tool == "apt-ftparchive":
            return "MD5Sum:\n d41d8cd98f00b204e9800998ecf8427e 0 binary-amd64/Packages\n"
        if tool == "createrepo":
            repodata = Path(args[-1]) / "repodata"
            repodata.mkdir(parents=True, exist_ok=True)
            (repodata / "repomd.xml").write_text("<repomd/>\n")
            return "Spawning worker 0 with 1 pkgs\n"
        raise AssertionError(f"unexpected tool {tool}")

    @staticmethod
    def _scanpackages(arch_dir):
        stanzas = []
        for deb in sorted(arch_dir.glob("*.deb")):
            match = _PACKAGE_NAME_RE.match(deb.name)
            stanzas.append(
                f"Package: {match.group('name')}\n"
                f"Version: {match.group('version')}\n"
                f"Filename: {arch_dir.name}/{deb.name}\n"
            )
        return "\n".join(stanzas)

    def invoked(self, tool):
        return [call for call in self.calls if call[0][0] == tool]


@pytest.fixture
def fake_signer():
    return FakeSigner()


@pytest.fixture
def fake_tools(monkeypatch):
    tools = FakeTools()
    monkeypatch.setattr("repobuilder.utils.run_command", tools)
    return tools
