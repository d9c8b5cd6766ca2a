import pytest
import yaml

from bookmark_organizer.errors import CatastrophicPlanningError, OrganizerError, PlanningError, Unavailable
from bookmark_organizer.models.bookmark import HealthVerdict
from bookmark_organizer.services import organizer as organizer_module
from bookmark_organizer.services.organizer import BookmarkOrganizer

from conftest import FakeClassifier, by_title_prefix

ALL_BOOKMARKS = {'101', '102', '103', '105', '106'}


def organizer_for(tmp_path, store, respond=by_title_prefix, **settings):
    settings.setdefault('show_progress', False)
    settings.setdefault('root_folder_id', '1')
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({'settings': settings}), encoding='utf-8')
    client = FakeClassifier(respond)
    return BookmarkOrganizer(str(path), store=store, client=client), client


def titles(store, parent_id='1'):
    return [node.title for node in store.get_children(parent_id)]


class TestLoadConfig:
    def test_defaults_without_file(self):
        config = BookmarkOrganizer.load_config(None)
        assert config['settings']['overflow_category'] == 'Other'
        assert config['ai']['provider'] == 'gemini'
        assert config['health']['concurrency'] == 10

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        config = BookmarkOrganizer.load_config(str(tmp_path / 'nope.yaml'))
        assert config['settings']['batch_size'] == 50

    def test_sections_merge_over_defaults(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text(
            "settings:\n  batch_size: 10\nai:\n  provider: openai\nhealth:\n  strict: true\n",
            encoding='utf-8',
        )

        config = BookmarkOrganizer.load_config(str(path))

        assert config['settings']['batch_size'] == 10
        assert config['settings']['max_depth'] == 3
        assert config['ai'] == {**BookmarkOrganizer.load_config(None)['ai'], 'provider': 'openai'}
        assert config['health']['strict'] is True
        assert config['health']['timeout'] == 8

    @pytest.mark.parametrize('content', ['', 'settings: [unclosed'])
    def test_empty_or_broken_file_uses_defaults(self, tmp_path, content):
        path = tmp_path / 'config.yaml'
        path.write_text(content, encoding='utf-8')
        assert BookmarkOrganizer.load_config(str(path)) == BookmarkOrganizer.load_config(None)

    def test_non_mapping_is_rejected(self, tmp_path):
        path = tmp_path / 'config.yaml'
        path.write_text("- just\n- a list\n", encoding='utf-8')
        with pytest.raises(OrganizerError):
            BookmarkOrganizer.load_config(str(path))


class TestOrganize:
    @pytest.mark.asyncio
    async def test_moves_bookmarks_into_categories(self, tmp_path, store):
        organizer, _ = organizer_for(tmp_path, store)

        report = await organizer.organize()

        assert report.moved == 5
        assert report.categories == ['News', 'Shop', 'Tech']
        assert report.failed == 0
        assert titles(store) == ['Old A', 'Old B', 'Tech', 'News', 'Shop']

    @pytest.mark.asyncio
    async def test_destructive_reset_rebuilds_folders(self, tmp_path, store):
        organizer, _ = organizer_for(tmp_path, store)
        prompts = []

        report = await organizer.organize(destructive_reset=True, confirm=lambda p: prompts.append(p) or True)

        assert len(prompts) == 1 and '5 bookmarks' in prompts[0]
        assert report.backup_id is None
        assert titles(store) == ['Tech', 'News', 'Shop']
        assert {node.id for node in store.iter_bookmarks('1')} == ALL_BOOKMARKS

    @pytest.mark.asyncio
    async def test_declined_reset_changes_nothing(self, tmp_path, store):
        organizer, client = organizer_for(tmp_path, store)

        report = await organizer.organize(destructive_reset=True, confirm=lambda p: False)

        assert report.moved == 0
        assert client.prompts == []
        assert titles(store) == ['Old A', 'Old B']

    @pytest.mark.asyncio
    async def test_planning_failure_after_reset_keeps_backup(self, tmp_path, store):
        organizer, _ = organizer_for(tmp_path, store, respond=lambda prompt, listed: Unavailable("down"))

        with pytest.raises(CatastrophicPlanningError) as exc_info:
            await organizer.organize(destructive_reset=True, confirm=lambda p: True)

        backup_id = exc_info.value.backup_id
        assert titles(store) == [store.get_node(backup_id).title]
        assert {node.id for node in store.iter_bookmarks(backup_id)} == ALL_BOOKMARKS

    @pytest.mark.asyncio
    async def test_nothing_classified_after_reset_keeps_backup(self, tmp_path, store):
        organizer, _ = organizer_for(tmp_path, store, respond=lambda prompt, listed: "no idea")

        with pytest.raises(CatastrophicPlanningError) as exc_info:
            await organizer.organize(destructive_reset=True, confirm=lambda p: True)

        assert {node.id for node in store.iter_bookmarks(exc_info.value.backup_id)} == ALL_BOOKMARKS

    @pytest.mark.asyncio
    async def test_planning_failure_without_reset_leaves_tree(self, tmp_path, store):
        organizer, _ = organizer_for(tmp_path, store, respond=lambda prompt, listed: Unavailable("down"))

        with pytest.raises(PlanningError):
            await organizer.organize()

        assert titles(store) == ['Old A', 'Old B']

    @pytest.mark.asyncio
    async def test_ranked_categories_are_reordered(self, tmp_path, store):
        def respond(prompt, listed):
            if 'most to least important' in prompt:
                return ['Shop', 'Tech']
            return by_title_prefix(prompt, listed)

        organizer, _ = organizer_for(tmp_path, store, respond=respond, rank_categories=True)

        await organizer.organize()

        assert titles(store) == ['Old A', 'Old B', 'Shop', 'Tech', 'News']

    @pytest.mark.asyncio
    async def test_empty_tree_is_a_no_op(self, tmp_path):
        from conftest import make_store

        organizer, client = organizer_for(tmp_path, make_store())

        report = await organizer.organize()

        assert report.moved == 0
        assert client.prompts == []


class TestDeadLinks:
    @pytest.mark.asyncio
    async def test_check_links_uses_health_config(self, tmp_path, store, monkeypatch):
        created = {}

        class RecordingChecker:
            def __init__(self, **kwargs):
                created.update(kwargs)

            async def check_all(self, entries):
                return [HealthVerdict(entry.id, entry.url, alive=True) for entry in entries]

        monkeypatch.setattr(organizer_module, 'LinkHealthChecker', RecordingChecker)
        organizer, _ = organizer_for(tmp_path, store)

        verdicts = await organizer.check_links(strict=True)

        assert {verdict.entry_id for verdict in verdicts} == ALL_BOOKMARKS
        assert created['strict'] is True
        assert created['concurrency'] == 10
        assert created['timeout'] == 8

    def test_delete_dead_removes_confirmed_bookmarks(self, tmp_path, store):
        organizer, _ = organizer_for(tmp_path, store)
        verdicts = [
            HealthVerdict('101', 'https://example.com/101', alive=False, status=404),
            HealthVerdict('102', 'https://example.com/102', alive=True, status=200),
            HealthVerdict('999', 'https://gone.example/', alive=False, error='timeout'),
        ]

        report = organizer.delete_dead(verdicts, confirm=lambda p: True)

        assert (report.deleted, report.failed) == (1, 1)
        assert {node.id for node in store.iter_bookmarks()} == ALL_BOOKMARKS - {'101'}

    def test_delete_dead_requires_confirmation(self, tmp_path, store):
        organizer, _ = organizer_for(tmp_path, store)
        verdicts = [HealthVerdict('101', 'https://example.com/101', alive=False, status=404)]

        report = organizer.delete_dead(verdicts, confirm=lambda p: False)

        assert report.deleted == 0
        assert {node.id for node in store.iter_bookmarks()} == ALL_BOOKMARKS
