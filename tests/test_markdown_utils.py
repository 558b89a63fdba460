from mdimgsync.markdown_utils import apply_replacements, find_image_links, format_image_link


def test_find_image_links_keeps_raw_text() -> None:
    text = "intro ![Alt text](img/a.png) and ![](<img/with space.png>) and [link](x.md)"

    links = find_image_links(text)

    assert [(link.alt, link.target) for link in links] == [
        ("Alt text", "img/a.png"),
        ("", "img/with space.png"),
    ]
    assert links[1].raw == "![](<img/with space.png>)"


def test_apply_replacements_substitutes_each_occurrence_once() -> None:
    text = "![a](x.png)\n![a](x.png)\n![b](y.png)\n"
    new = format_image_link("a", "https://cdn.test/x.png")

    result, changed = apply_replacements(
        text,
        [("![a](x.png)", new), ("![a](x.png)", new)],
    )

    assert result == f"{new}\n{new}\n![b](y.png)\n"
    assert changed == 2


def test_apply_replacements_ignores_noops_and_absent_links() -> None:
    text = "![a](https://cdn.test/x.png)\n"

    result, changed = apply_replacements(
        text,
        [("![a](https://cdn.test/x.png)", "![a](https://cdn.test/x.png)"), ("![z](gone.png)", "![z](u)")],
    )

    assert result == text
    assert changed == 0
