"""
Markup stripping for user-supplied free text (task titles and descriptions).

No tags survive: ``<script>``/``<style>`` elements go with their bodies, every
other tag and comment is removed and its text kept. What is left is HTML-safe
text, so a stray ``<`` that opens no tag is stored as ``&lt;`` and entity text
such as ``&lt;`` stays as written.
"""
import re

import bleach

# bleach keeps the text inside disallowed tags; these bodies must go too.
_DANGEROUS_BLOCK = re.compile(r"<(script|style)\b[^>]*>.*?(</\1\s*>|$)", re.IGNORECASE | re.DOTALL)


def sanitize_text(value):
    if not isinstance(value, str):
        return value

    value = _DANGEROUS_BLOCK.sub("", value)
    value = bleach.clean(value, tags=set(), attributes={}, strip=True, strip_comments=True)
    return value.strip()
