"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from converge.core.context import Context, ExecMode, Session, TargetFacts


@pytest.fixture
def session() -> Session:
    """A Session for an ubuntu/apt target with default context."""
    return Session(Context())


@pytest.fixture
def centos_session() -> Session:
    """A Session for a centos/yum target."""
    return Session(Context(target=TargetFacts(os_family="centos")))


@pytest.fixture
def user_session() -> Session:
    """An unprivileged Session acting as 'deploy'."""
    return Session(Context(exec_mode=ExecMode.UNPRIVILEGED, acting_user="deploy"))


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """A minimal converge.yml with two targets, a component and a plan."""
    content = textwrap.dedent("""\
        context:
          acting-user: deploy
          scratch-dir: /var/lib/converge
        targets:
          - name: web1
            host: 10.0.0.5
            user: deploy
            os-family: ubuntu
          - name: db1
            host: 10.0.0.6
            os-family: centos
        components:
          nginx:
            install-strategy: packages
            packages: [nginx]
        plan:
          - kind: directory
            target: /srv/www
            options: {owner: www-data, mode: "0755"}
          - install: nginx
    """)
    path = tmp_path / "converge.yml"
    path.write_text(content)
    return path
