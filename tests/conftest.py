import json

import pytest


ADVISORIES = [
    {
        "ident": "CVE-1",
        "title": "SQL Injection in Widget",
        "aliases": "",
        "keywords": "sql,injection",
        "package": "widget"
    },
    {
        "ident": "CVE-2",
        "title": "XSS in Gadget",
        "aliases": "",
        "keywords": "xss",
        "package": "gadget"
    },
]

SEARCH_PAGE = """<html>
<head><script src="/js/lunr-index.js"></script></head>
<body>
<h1>Search</h1>
<ul id="search-result"><li>stale</li></ul>
</body>
</html>
"""


@pytest.fixture
def advisories():
    return json.loads(json.dumps(ADVISORIES))


@pytest.fixture
def index_json(tmp_path, advisories):
    path = tmp_path / "index.json"
    path.write_text(json.dumps(advisories), encoding="utf-8")
    return path


@pytest.fixture
def search_page():
    return SEARCH_PAGE
