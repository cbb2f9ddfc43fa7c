import pytest

from sanitize import sanitize_text


@pytest.mark.parametrize("raw, expected", [
    ("<b>Hello</b> world", "Hello world"),
    ("Fix <script>alert(1)</script>bug", "Fix bug"),
    ("<style>body { display: none }</style>Styled", "Styled"),
    ("before<!-- hidden -->after", "beforeafter"),
    ("  <p>  padded </p> ", "padded"),
    ("<img src=x onerror=alert(1)>see notes", "see notes"),
    ("a &lt;b&gt; c", "a &lt;b&gt; c"),
])
def test_markup_is_removed(raw, expected):
    assert sanitize_text(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("x < y and y > z", "x &lt; y and y &gt; z"),
    ("Ensure count<limit for all pages", "Ensure count&lt;limit for all pages"),
    ("count<limit", "count&lt;limit"),
    ("Tom & Jerry", "Tom &amp; Jerry"),
])
def test_text_that_only_looks_like_markup_is_kept(raw, expected):
    assert sanitize_text(raw) == expected


def test_nested_tags_cannot_reassemble():
    assert "<" not in sanitize_text("<scr<b>ipt>alert(1)</script>")


def test_unterminated_script_drops_the_rest():
    assert sanitize_text("ok<script>alert(1)") == "ok"


def test_non_strings_pass_through():
    assert sanitize_text(None) is None
    assert sanitize_text(5) == 5
