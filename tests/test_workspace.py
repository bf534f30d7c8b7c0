"""
Tests for the workspace handlers -- env vars, services, directories, notes.
"""

from __future__ import annotations

import pytest


@pytest.fixture
def project(vault):
    """A tracked project named ``my-app`` under the vault's home."""
    from ctxsync.projects import track_project

    project_dir = vault.context.home / "code" / "my-app"
    project_dir.mkdir(parents=True)
    return track_project(vault, str(project_dir)).project


class TestEnvVars:
    def test_add_then_list_masked(self, vault):
        from ctxsync.workspace import MASKED_VALUE, add_env_var, list_env_vars

        add_env_var(vault, "my-app", "API_KEY", "sk-123")

        listed = list_env_vars(vault, "my-app")
        assert [(v.key, v.value) for v in listed] == [("API_KEY", MASKED_VALUE)]
        assert list_env_vars(vault, "my-app", show_values=True)[0].value == "sk-123"

    def test_values_never_hit_disk_in_plaintext(self, vault):
        from ctxsync.workspace import add_env_var

        add_env_var(vault, "my-app", "API_KEY", "sk-live-secret")

        raw = (vault.context.sync_dir / "env-vars.enc").read_text()
        assert "sk-live-secret" not in raw
        assert "API_KEY" not in raw

    def test_import_replaces_existing(self, vault):
        from ctxsync.workspace import import_env_vars, list_env_vars

        import_env_vars(vault, "my-app", {"A": "1", "B": "2"})
        count = import_env_vars(vault, "my-app", {"A": "3"})

        assert count == 1
        values = {v.key: v.value for v in list_env_vars(vault, "my-app", show_values=True)}
        assert values == {"A": "3", "B": "2"}

    def test_key_value_argument_rejected(self, vault):
        from ctxsync.errors import InvalidInputError
        from ctxsync.workspace import add_env_var

        with pytest.raises(InvalidInputError, match="CLI arguments") as info:
            add_env_var(vault, "my-app", "API_KEY=sk-123", "")
        assert "--stdin" in info.value.suggestion

    @pytest.mark.parametrize("key", ["", "1ABC", "BAD KEY", "A$B"])
    def test_bad_names_rejected(self, key):
        from ctxsync.errors import InvalidInputError
        from ctxsync.workspace import validate_env_key

        with pytest.raises(InvalidInputError):
            validate_env_key(key)

    def test_remove(self, vault):
        from ctxsync.workspace import add_env_var, list_env_vars, remove_env_var

        add_env_var(vault, "my-app", "A", "1")

        assert remove_env_var(vault, "my-app", "A")
        assert not remove_env_var(vault, "my-app", "A")
        assert list_env_vars(vault, "my-app") == []


class TestServices:
    def _service(self, **overrides):
        from ctxsync.models import Service

        fields = {"project": "my-app", "name": "dev", "port": 3000, "command": "npm run dev"}
        fields.update(overrides)
        return Service(**fields)

    def test_valid_service(self):
        from ctxsync.workspace import validate_service

        assert validate_service(self._service()) == []

    @pytest.mark.parametrize("port", [None, 0, 65536, -1])
    def test_port_out_of_range(self, port):
        from ctxsync.workspace import validate_service

        errors = validate_service(self._service(port=port))
        assert len(errors) == 1
        assert "between 1 and 65535" in errors[0]

    def test_empty_name_and_command(self):
        from ctxsync.workspace import validate_service

        errors = validate_service(self._service(name=" ", command=""))
        assert len(errors) == 2

    def test_add_replaces_same_name(self, vault):
        from ctxsync.workspace import add_service, list_services

        add_service(vault, self._service())
        add_service(vault, self._service(port=4000, auto_start=True))
        add_service(vault, self._service(project="other", name="api"))

        services = list_services(vault, "my-app")
        assert [(s.name, s.port, s.auto_start) for s in services] == [("dev", 4000, True)]
        assert len(list_services(vault)) == 2

    def test_add_invalid_rejected(self, vault):
        from ctxsync.errors import InvalidInputError
        from ctxsync.workspace import add_service, list_services

        with pytest.raises(InvalidInputError, match="Port"):
            add_service(vault, self._service(port=70000))
        assert list_services(vault) == []

    def test_remove(self, vault):
        from ctxsync.workspace import add_service, list_services, remove_service

        add_service(vault, self._service())

        assert remove_service(vault, "my-app", "dev")
        assert not remove_service(vault, "my-app", "dev")
        assert list_services(vault) == []


class TestDirectories:
    def test_visits_count_and_sort(self, vault):
        from ctxsync.workspace import top_directories, visit_directory

        home = vault.context.home
        visit_directory(vault, str(home / "a"))
        visit_directory(vault, str(home / "b"))
        entry = visit_directory(vault, str(home / "b"))

        assert entry.frequency == 2
        assert [d.path for d in top_directories(vault)] == [str(home / "b"), str(home / "a")]
        assert len(top_directories(vault, limit=1)) == 1

    def test_recent_list_is_capped(self, vault, monkeypatch):
        from ctxsync import workspace

        monkeypatch.setattr(workspace, "MAX_RECENT_DIRS", 3)
        home = vault.context.home
        for name in "abcde":
            workspace.visit_directory(vault, str(home / name))

        assert len(workspace.top_directories(vault, limit=10)) == 3

    def test_pin_and_unpin(self, vault):
        from ctxsync.workspace import pin_directory, pinned_directories, unpin_directory

        path = str(vault.context.home / "code")

        assert pin_directory(vault, path)
        assert not pin_directory(vault, path)
        assert pinned_directories(vault) == [path]
        assert unpin_directory(vault, path)
        assert not unpin_directory(vault, path)
        assert pinned_directories(vault) == []

    def test_tilde_paths(self, vault):
        from ctxsync.workspace import pin_directory, pinned_directories

        pin_directory(vault, "~/code")
        assert pinned_directories(vault) == [str(vault.context.home / "code")]

    def test_outside_home_rejected(self, vault):
        from ctxsync.errors import InvalidInputError
        from ctxsync.workspace import pin_directory, visit_directory

        with pytest.raises(InvalidInputError):
            visit_directory(vault, "/etc")
        with pytest.raises(InvalidInputError):
            pin_directory(vault, "/etc")

    def test_remove_recent(self, vault):
        from ctxsync.workspace import remove_recent_directory, top_directories, visit_directory

        path = str(vault.context.home / "a")
        visit_directory(vault, path)

        assert remove_recent_directory(vault, path)
        assert not remove_recent_directory(vault, path)
        assert top_directories(vault) == []


class TestNoteParsing:
    @pytest.mark.parametrize(
        "ref, expected",
        [
            ("src/auth.ts", ("src/auth.ts", 0, None)),
            ("src/auth.ts:42", ("src/auth.ts", 42, None)),
            ("src/auth.ts:42:7", ("src/auth.ts", 42, 7)),
        ],
    )
    def test_file_reference(self, ref, expected):
        from ctxsync.workspace import parse_file_reference

        location = parse_file_reference(ref, "token refresh")
        assert (location.file, location.line, location.column) == expected
        assert location.description == "token refresh"

    def test_empty_file_reference(self):
        from ctxsync.workspace import parse_file_reference

        assert parse_file_reference("  ") is None

    @pytest.mark.parametrize(
        "text, title, url",
        [
            ("Issue: https://github.com/me/app/issues/1", "Issue", "https://github.com/me/app/issues/1"),
            ("Docs - https://docs.example.com", "Docs", "https://docs.example.com"),
            ("https://example.com/x", "https://example.com/x", "https://example.com/x"),
        ],
    )
    def test_link(self, text, title, url):
        from ctxsync.workspace import parse_link

        link = parse_link(text)
        assert (link.title, link.url) == (title, url)


class TestNotes:
    def test_update_merges(self, vault, project):
        from ctxsync.workspace import NoteInput, get_note, parse_link, update_note

        update_note(vault, "my-app", NoteInput(
            current_task="Fix login",
            blockers=["Waiting on API"],
            next_steps=["write tests"],
            related_links=[parse_link("Issue: https://example.com/1")],
            breadcrumb="started on redirect",
        ))
        update_note(vault, "MY-APP", NoteInput(
            current_task="Fix logout",
            blockers=["waiting on api", "Flaky CI"],
            next_steps=["Write tests", "deploy"],
            related_links=[parse_link("Same issue - https://example.com/1")],
            breadcrumb="moved on",
        ))

        note = get_note(vault, "my-app")
        assert note.current_task == "Fix logout"
        assert [b.description for b in note.blockers] == ["Waiting on API", "Flaky CI"]
        assert note.next_steps == ["write tests", "deploy"]
        assert [link.title for link in note.related_links] == ["Issue"]
        assert [b.note for b in note.breadcrumbs] == ["started on redirect", "moved on"]

    def test_location_replaced(self, vault, project):
        from ctxsync.workspace import NoteInput, parse_file_reference, update_note

        update_note(vault, "my-app", NoteInput(last_working_on=parse_file_reference("a.py:1")))
        note = update_note(vault, "my-app", NoteInput(last_working_on=parse_file_reference("b.py:9")))

        assert (note.last_working_on.file, note.last_working_on.line) == ("b.py", 9)

    def test_keyed_by_project_id_lookup(self, vault, project):
        from ctxsync.workspace import NoteInput, get_note, update_note

        update_note(vault, project.id, NoteInput(current_task="by id"))
        assert get_note(vault, "my-app").current_task == "by id"

    def test_empty_note_rejected(self, vault, project):
        from ctxsync.errors import InvalidInputError
        from ctxsync.workspace import NoteInput, update_note

        with pytest.raises(InvalidInputError, match="Nothing to note"):
            update_note(vault, "my-app", NoteInput(current_task="  "))

    def test_untracked_project(self, vault, project):
        from ctxsync.errors import NotFoundError
        from ctxsync.workspace import NoteInput, update_note

        with pytest.raises(NotFoundError):
            update_note(vault, "web", NoteInput(current_task="x"))

    def test_note_is_encrypted(self, vault, project):
        from ctxsync.workspace import NoteInput, update_note

        update_note(vault, "my-app", NoteInput(current_task="Rotate the prod password"))

        raw = (vault.context.sync_dir / "mental-context.enc").read_text()
        assert "prod password" not in raw
