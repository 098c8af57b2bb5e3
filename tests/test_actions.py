"""
Tests for the action compilers other than directory.

Each test compiles a single action and checks the emitted statements,
label and execution fields.
"""

import pytest

from converge.adapters.mock import StaticProvider
from converge.adapters.base import Node
from converge.core.actions import builders
from converge.core.actions.catalog import COMPILERS, compile_action
from converge.core.context import Context, ExecMode, Session, TargetFacts
from converge.core.errors import ConfigurationError
from converge.core.models import Action, ActionKind


def _one(action, session):
    fragments = compile_action(action, session)
    assert len(fragments) == 1
    return fragments[0]


class TestCatalog:
    def test_every_kind_has_a_compiler(self):
        assert set(COMPILERS) == set(ActionKind)


# ── Filesystem ───────────────────────────────────────────────────────


class TestFile:
    def test_touch_with_ownership(self, session):
        f = _one(builders.file("/etc/motd", owner="root", mode="0644"), session)
        assert f.label == "File /etc/motd"
        assert f.statements == ("touch /etc/motd", "chown root /etc/motd", "chmod 0644 /etc/motd")

    def test_delete(self, session):
        f = _one(builders.file("/tmp/x", action="delete"), session)
        assert f.label == "Delete file /tmp/x"
        assert f.statements == ("rm -f /tmp/x",)


class TestSymlink:
    def test_link(self, session):
        f = _one(builders.symlink("/opt/app-1.2", "/opt/app", owner="app"), session)
        assert f.label == "Link /opt/app to /opt/app-1.2"
        assert f.statements == (
            "ln -s -f -n /opt/app-1.2 /opt/app",
            "chown --no-dereference app /opt/app",
        )

    def test_needs_source(self):
        with pytest.raises(ConfigurationError):
            Action(kind="symlink", target="/opt/app")


class TestFifo:
    def test_create_is_idempotent(self, session):
        f = _one(builders.fifo("/run/app.pipe", mode="0600"), session)
        assert f.statements == (
            "[ -p /run/app.pipe ] || mkfifo /run/app.pipe",
            "chmod 0600 /run/app.pipe",
        )


class TestSed:
    def test_substitution_with_md5_refresh(self, session):
        f = _one(builders.sed("/etc/app.conf", {"port=80": "port=8080"}), session)
        assert f.label == "Sed file /etc/app.conf"
        assert f.statements[0] == "sed -i -e s/port=80/port=8080/ /etc/app.conf"
        assert "/var/lib/converge/etc/app.conf.md5" in f.statements[1]

    def test_separator_avoids_expression_chars(self, session):
        f = _one(builders.sed("/f", {"a/b": "c"}, no_md5=True), session)
        assert f.statements == ("sed -i -e s_a/b_c_ /f",)

    def test_restriction_and_sorted_exprs(self, session):
        f = _one(builders.sed("/f", {"z": "1", "a": "2"}, restriction="/^x/", no_md5=True), session)
        assert f.statements == ("sed -i -e '/^x/s/a/2/' -e '/^x/s/z/1/' /f",)

    def test_no_usable_separator(self, session):
        action = builders.sed("/f", {"/_|:%!@": "x"})
        with pytest.raises(ConfigurationError):
            compile_action(action, session)


class TestWaitForFile:
    def test_loop(self, session):
        f = _one(builders.wait_for_file("/run/app.pid", max_retries=3, standoff=1), session)
        assert f.label == "Wait for /run/app.pid"
        assert "while ! [ -e /run/app.pid ]; do" in f.text
        assert 'if [ "${x}" -eq 3 ]; then' in f.text
        assert "sleep 1" in f.text


class TestExec:
    def test_statements_pass_through(self, session):
        f = _one(builders.exec_checked("Migrate", "cd /srv", "./migrate"), session)
        assert f.label == "Migrate"
        assert f.statements == ("cd /srv", "./migrate")


# ── Accounts ─────────────────────────────────────────────────────────


class TestUser:
    def test_manage(self, session):
        f = _one(builders.user("app", shell="/bin/bash", home="/srv/app"), session)
        assert f.label == "User app"
        assert f.statements == (
            "if getent passwd app >/dev/null; then usermod --shell /bin/bash --home /srv/app app; "
            "else useradd --shell /bin/bash --home /srv/app app; fi",
        )

    def test_create_system_user(self, session):
        f = _one(builders.user("svc", action="create", system=True, create_home=False), session)
        assert f.statements == (
            "getent passwd svc >/dev/null || useradd --system --no-create-home svc",
        )

    def test_remove(self, session):
        f = _one(builders.user("old", action="remove", force=True), session)
        assert f.label == "Remove user old"
        assert f.statements == ("if getent passwd old >/dev/null; then userdel --force old; fi",)

    def test_lock(self, session):
        f = _one(builders.user("app", action="lock"), session)
        assert f.label == "Lock user app"
        assert "usermod --lock app" in f.statements[0]

    def test_append_groups_only_on_modify(self, session):
        f = _one(builders.user("app", groups=["adm", "www-data"], append=True), session)
        assert "usermod --groups adm,www-data --append app" in f.statements[0]
        assert "useradd --groups adm,www-data app" in f.statements[0]


class TestGroup:
    def test_create(self, session):
        f = _one(builders.group("app", action="create", system=True), session)
        assert f.statements == ("getent group app >/dev/null || groupadd -r app",)

    def test_manage_gid(self, session):
        f = _one(builders.group("app", gid=900), session)
        assert f.statements == (
            "if getent group app >/dev/null; then groupmod -g 900 app; else groupadd -g 900 app; fi",
        )


# ── Services ─────────────────────────────────────────────────────────


class TestService:
    def test_initd_restart(self, session):
        f = _one(builders.service("nginx", action="restart"), session)
        assert f.label == "Restart service nginx"
        assert f.statements == ("/etc/init.d/nginx restart",)

    def test_initd_script_path_is_quoted(self, session):
        f = _one(builders.service("my app;reboot", action="start", if_stopped=True), session)
        assert f.statements == (
            "'/etc/init.d/my app;reboot' status >/dev/null 2>&1 || '/etc/init.d/my app;reboot' start",
        )

    def test_systemd_start_if_stopped(self, session):
        f = _one(builders.service("nginx", service_impl="systemd", if_stopped=True), session)
        assert f.statements == ("systemctl is-active --quiet nginx || systemctl start nginx",)

    def test_if_flag(self, session):
        f = _one(builders.service("nginx", action="reload", if_flag="nginx-conf"), session)
        assert f.label == "Reload service nginx if nginx-conf"
        assert f.statements == (
            "if [ -e /var/lib/converge/flags/nginx-conf ]; then /etc/init.d/nginx reload; fi",
        )

    def test_enable_per_packager(self, session, centos_session):
        assert _one(builders.service("ntp", action="enable"), session).statements == (
            "update-rc.d ntp defaults",
        )
        assert _one(builders.service("ntpd", action="disable"), centos_session).statements == (
            "chkconfig ntpd off",
        )

    def test_enable_unsupported_packager(self):
        arch = Session(Context(target=TargetFacts(os_family="arch")))
        with pytest.raises(ConfigurationError):
            compile_action(builders.service("x", action="enable"), arch)


# ── Packages ─────────────────────────────────────────────────────────


class TestPackage:
    def test_apt_install(self, session):
        f = _one(builders.package("git"), session)
        assert f.label == "Package git"
        assert f.statements == ("DEBIAN_FRONTEND=noninteractive apt-get install -q -y git",)

    def test_yum_install(self, centos_session):
        f = _one(builders.package("git"), centos_session)
        assert f.statements == ("yum install -q -y git",)

    def test_upgrade(self, session, centos_session):
        assert _one(builders.package("git", action="upgrade"), session).statements == (
            "DEBIAN_FRONTEND=noninteractive apt-get install --only-upgrade -q -y git",
        )
        assert _one(builders.package("git", action="upgrade"), centos_session).statements == (
            "yum update -q -y git",
        )

    def test_remove_and_purge(self, session):
        assert _one(builders.package("git", action="remove"), session).statements == (
            "DEBIAN_FRONTEND=noninteractive apt-get remove -q -y git",
        )
        assert _one(builders.package("git", action="remove", purge=True), session).label == (
            "Remove package git"
        )

    def test_repo_flags(self, centos_session):
        f = _one(builders.package("nginx", enable=["epel"], allow_unsigned=True), centos_session)
        assert f.statements == ("yum install --enablerepo=epel --nogpgcheck -q -y nginx",)

    def test_disable_service_start(self, session):
        f = _one(builders.package("mysql-server", disable_service_start=True), session)
        assert len(f.statements) == 2
        assert "policy-rc.d" in f.statements[0]
        assert "rm -f /usr/sbin/policy-rc.d" in f.statements[1]

    def test_unknown_packager(self):
        odd = Session(Context(target=TargetFacts(os_family="plan9", packager="p9pkg")))
        with pytest.raises(ConfigurationError):
            compile_action(builders.package("x"), odd)


class TestPackageManager:
    def test_update(self, session, centos_session):
        f = _one(builders.package_manager("update"), session)
        assert f.label == "Package manager update"
        assert f.statements == ("apt-get -qq update",)
        assert _one(builders.package_manager("update"), centos_session).statements == (
            "yum makecache -q",
        )

    def test_add_scope(self, session):
        f = _one(builders.package_manager("add-scope", scope="universe"), session)
        assert "grep -Eq" in f.statements[0]
        assert "1 universe/" in f.statements[0]

    def test_add_scope_apt_only(self, centos_session):
        with pytest.raises(ConfigurationError):
            compile_action(builders.package_manager("add-scope", scope="x"), centos_session)

    def test_unknown_operation(self, session):
        with pytest.raises(ConfigurationError):
            compile_action(builders.package_manager("defrag"), session)


class TestPackageSource:
    def test_apt(self, session):
        action = builders.package_source(
            "nginx", apt={"url": "http://nginx.org/packages/ubuntu", "release": "jammy", "scopes": ["nginx"]},
        )
        f = _one(action, session)
        assert f.label == "Package source nginx"
        assert "deb http://nginx.org/packages/ubuntu jammy nginx" in f.statements[0]
        assert "/etc/apt/sources.list.d/nginx.list.new" in f.statements[0]
        assert "apt-get -qq update" in f.statements[1]

    def test_yum(self, centos_session):
        action = builders.package_source("nginx", yum={"url": "http://nginx.org/packages/centos/7/"})
        f = _one(action, centos_session)
        assert "/etc/yum.repos.d/nginx.repo.new" in f.statements[0]
        assert "baseurl=http://nginx.org/packages/centos/7/" in f.statements[0]

    def test_no_entry_for_family(self, centos_session):
        action = builders.package_source("nginx", apt={"url": "http://x"})
        assert compile_action(action, centos_session) == []


class TestDebconfRpmDeb:
    def test_debconf(self, session):
        f = _one(builders.debconf("mysql", line="mysql-server mysql-server/root_password password x"), session)
        assert f.statements == (
            "echo 'mysql-server mysql-server/root_password password x' | debconf-set-selections",
        )

    def test_debconf_needs_apt(self, centos_session):
        with pytest.raises(ConfigurationError):
            compile_action(builders.debconf("x", line="a b c d"), centos_session)

    def test_rpm(self, centos_session):
        f = _one(builders.rpm("epel", path="/tmp/epel.rpm"), centos_session)
        assert f.label == "Install rpm epel"
        assert f.statements == (
            'rpm -q "$(rpm -qp /tmp/epel.rpm)" >/dev/null 2>&1 || rpm -U --quiet /tmp/epel.rpm',
        )

    def test_rpm_repo_refreshes(self, centos_session):
        f = _one(builders.rpm("epel", path="/tmp/epel.rpm", repo=True), centos_session)
        assert f.label == "Install rpm repo epel"
        assert f.statements[-1] == "yum makecache -q"

    def test_deb(self, session):
        f = _one(builders.deb("app", path="/var/debs/app.deb"), session)
        assert f.statements == (
            'dpkg -s "$(dpkg-deb -f /var/debs/app.deb Package)" >/dev/null 2>&1 '
            "|| DEBIAN_FRONTEND=noninteractive dpkg -i /var/debs/app.deb",
        )


# ── Remote content ───────────────────────────────────────────────────


class TestRemoteFile:
    def test_content_is_privileged(self, user_session):
        f = _one(builders.remote_file("/etc/app.conf", content="port=80"), user_session)
        assert f.label == "Remote file /etc/app.conf"
        assert f.privileged
        assert not user_session.context.privileged

    def test_statement_order(self, session):
        f = _one(builders.remote_file("/etc/app.conf", literal="a=1", owner="app"), session)
        s = f.statements
        assert s[0] == "mkdir -p /var/lib/converge/etc"
        assert s[1].startswith("cat > /var/lib/converge/etc/app.conf.new <<'CONVERGE_EOF'")
        assert "refusing to overwrite" in s[2]
        assert s[3].startswith("_changed=1;")
        assert "app.conf.converge.~" in s[4]
        assert "head -n -5" in s[5]
        assert s[6] == (
            "if [ $_changed -eq 1 ]; then mv -f /var/lib/converge/etc/app.conf.new /etc/app.conf; "
            "else rm -f /var/lib/converge/etc/app.conf.new; fi"
        )
        assert s[7] == "md5sum < /etc/app.conf | cut -d' ' -f1 > /var/lib/converge/etc/app.conf.md5"
        assert s[8] == "chown app /etc/app.conf"

    def test_url_with_md5(self, session):
        f = _one(builders.remote_file("/opt/a.tgz", url="https://x/a.tgz", md5="abc", insecure=True), session)
        assert any(s.startswith("curl --fail --silent --show-error --location --insecure") for s in f.statements)
        assert any("md5sum -c --quiet -" in s for s in f.statements)

    def test_local_file_upload(self, session):
        f = _one(builders.remote_file("/etc/app.conf", local_file="files/app.conf"), session)
        assert f.uploads[0].local_path == "files/app.conf"
        assert f.uploads[0].remote_path == "/var/lib/converge/etc/app.conf.new"

    def test_overwrite_changes_skips_conflict_check(self, session):
        f = _one(builders.remote_file("/etc/x", content="a", overwrite_changes=True), session)
        assert not any("refusing to overwrite" in s for s in f.statements)

    def test_force_overwrite_session(self):
        forced = Session(Context(), force_overwrite=True)
        f = _one(builders.remote_file("/etc/x", content="a"), forced)
        assert not any("refusing to overwrite" in s for s in f.statements)

    def test_no_versioning(self, session):
        f = _one(builders.remote_file("/etc/x", content="a", no_versioning=True), session)
        assert not any(".converge.~" in s for s in f.statements)

    def test_install_new_files_off_only_stages(self, session):
        f = _one(builders.remote_file("/etc/x", content="a", install_new_files=False), session)
        assert len(f.statements) == 2

    def test_flag_on_changed_declares_flag(self, session):
        f = _one(builders.remote_file("/etc/x", content="a", flag_on_changed="restart"), session)
        assert "touch /var/lib/converge/flags/restart" in f.statements[-1]
        assert session.flags == {"restart": False}

    def test_delete(self, session):
        f = _one(builders.remote_file("/etc/x", action="delete"), session)
        assert f.label == "Delete remote-file /etc/x"
        assert f.statements == ("rm -f /etc/x", "rm -f /var/lib/converge/etc/x.md5")

    def test_link(self, session):
        f = _one(builders.remote_file("/etc/x", link="/etc/y"), session)
        assert f.label == "Link remote-file /etc/x to /etc/y"

    def test_scope_restored(self, user_session):
        compile_action(builders.remote_file("/etc/x", content="a"), user_session)
        assert user_session.depth == 1
        assert user_session.context.exec_mode == ExecMode.UNPRIVILEGED


class TestRemoteDirectory:
    def test_fragments(self, session):
        action = builders.remote_directory("/opt/app", url="http://x/app.tgz", owner="app")
        fragments = compile_action(action, session)
        assert [f.label for f in fragments] == [
            "Directory /opt/app",
            "Remote file /var/lib/converge/opt/app.tar",
            "Unpack /var/lib/converge/opt/app.tar into /opt/app",
            "Directory /opt/app",
        ]
        assert "tar xz --strip-components=1 -f /var/lib/converge/opt/app.tar -C /opt/app" in (
            fragments[2].statements[0]
        )
        assert fragments[0].statements[1] == "chown app /opt/app"
        assert fragments[3].statements[1] == "chown --recursive app /opt/app"

    def test_unzip_without_owner(self, session):
        action = builders.remote_directory("/opt/app", url="http://x/app.zip", unpack="unzip")
        fragments = compile_action(action, session)
        assert len(fragments) == 3
        assert "unzip -o /var/lib/converge/opt/app.zip -d /opt/app" in fragments[2].statements[0]


class TestRsync:
    def test_explicit_address(self, session):
        f = _one(builders.rsync("build/", "/srv/app", ip="10.0.0.5", username="deploy"), session)
        assert f.local
        assert f.label == "Rsync build/ to /srv/app"
        assert f.statements == (
            "rsync -e 'ssh -p 22' -rP --delete --copy-links -F -F build/ deploy@10.0.0.5:/srv/app",
        )

    def test_address_from_provider(self):
        node = Node(name="web1", host="192.168.1.20", port=2222)
        session = Session(Context(acting_user="deploy"), node=node, provider=StaticProvider([node]))
        f = _one(builders.rsync("build/", "/srv/app"), session)
        assert "'ssh -p 2222'" in f.statements[0]
        assert "deploy@192.168.1.20:/srv/app" in f.statements[0]

    def test_no_address(self, session):
        with pytest.raises(ConfigurationError):
            compile_action(builders.rsync("build/", "/srv/app"), session)
