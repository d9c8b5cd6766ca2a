from bookmark_organizer.models.bookmark import HealthVerdict
from bookmark_organizer.writers.markdown_writer import MarkdownWriter

from conftest import make_store


def render(tmp_path, store, verdicts=None, root_id='1'):
    output = tmp_path / 'report.md'
    MarkdownWriter().write_report(store, root_id, verdicts, str(output))
    return output.read_text(encoding='utf-8')


def test_report_lists_folders_and_links(tmp_path, store):
    text = render(tmp_path, store)

    assert text.startswith("# Organized Bookmarks\n")
    assert "*Total Links: 5 in 2 categories*" in text
    assert "- [**Old A**](#old-a) (3 links)" in text
    assert "## Old B" in text
    section = text.split("## Old A\n\n")[1].split("\n\n")[0]
    assert section.splitlines() == [
        "- News: daily paper: https://example.com/102",
        "- Tech: python docs: https://example.com/101",
        "- Tech: rust book: https://example.com/103",
    ]
    assert "Links Not Working" not in text


def test_nested_folders_become_sub_headings(tmp_path, store):
    sub = store.create('104', 'Deep Dive')
    store.create(sub.id, 'Async', url='https://docs.python.org/3/library/asyncio.html')

    text = render(tmp_path, store)

    assert "### Deep Dive\n\n- Async: https://docs.python.org/3/library/asyncio.html" in text
    assert "(4 links)" in text


def test_loose_links_and_dead_links(tmp_path):
    store = make_store({'Tech': ['Docs']}, loose=1)
    verdicts = [
        HealthVerdict('101', 'https://example.com/101', alive=False, status=404, error='HTTP 404'),
        HealthVerdict('103', 'https://loose.example/103', alive=True, status=200),
    ]

    text = render(tmp_path, store, verdicts)

    assert "## Unsorted\n\n- Loose 103: https://loose.example/103" in text
    assert "- [Links Not Working](#links-not-working) (1 links)" in text
    assert "## Links Not Working\n\n- Docs: https://example.com/101 (HTTP 404)" in text


def test_format_link_omits_duplicate_title():
    assert MarkdownWriter.format_link('https://a.test/', 'https://a.test/') == "- https://a.test/\n"
    assert MarkdownWriter.format_link(None, 'https://a.test/') == "- https://a.test/\n"
    assert MarkdownWriter.make_anchor("Tools & Utilities") == "tools--utilities"
