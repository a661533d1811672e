#!/usr/bin/env python3
"""
search_page.py — Answer a search query against the prebuilt advisory index.

Usage:
  python search_page.py --index _site/js/lunr-index.js --url "/search.html?q=widget"
  python search_page.py --index _site/js/lunr-index.js --query widget \
      --page _site/search.html --out _site/search-widget.html

Output:
  An HTML list fragment, one item per matching advisory, best match first:
  <li><a href=/advisories/CVE-1.html>CVE-1</a></li>

  With --page, the fragment replaces the content of the element with
  id="search-result" and the whole page is written to --out (or stdout).
"""

import json
import argparse
import re
from html import escape
from urllib.parse import parse_qs, quote, urlparse

try:
    from rank_bm25 import BM25Okapi
except ImportError:
    print("ERROR: rank_bm25 not installed. Run: pip install rank-bm25")
    exit(1)

try:
    from bs4 import BeautifulSoup
except ImportError:
    print("ERROR: beautifulsoup4 not installed. Run: pip install beautifulsoup4")
    exit(1)

from build_index import DEFAULT_VAR_NAME, tokenize
from search_errors import IndexNotLoaded, RenderTargetMissing, SearchError

LINK_PREFIX = "/advisories/"
TARGET_ID = "search-result"

ASSIGNMENT = re.compile(r"^\s*var\s+([A-Za-z_$][\w$]*)\s*=\s*(.*?)\s*;?\s*$", re.DOTALL)


def _token_list(tokens) -> list:
    if not isinstance(tokens, list) or not all(isinstance(t, str) for t in tokens):
        raise ValueError(f"field tokens must be a list of strings, got {tokens!r}")
    return tokens


class SearchIndex:
    """
    A loaded index, ready to query.

    Matching is exact token equality against the registered fields; BM25
    scores from each field only decide the order of the matches.
    """

    def __init__(self, payload: dict):
        try:
            self.ref = payload["ref"]
            self.fields = list(payload["fields"])
            self.documents = list(payload["documents"])
            token_lists = {
                field: [_token_list(doc["fields"].get(field, [])) for doc in self.documents]
                for field in self.fields
            }
            self.refs = [doc["ref"] for doc in self.documents]
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise IndexNotLoaded(f"index payload has an unexpected shape: {e!r}") from e

        self._token_sets = {
            field: [set(tokens) for tokens in corpus]
            for field, corpus in token_lists.items()
        }
        # BM25Okapi cannot be built over a field with no tokens at all
        self._rankers = {
            field: BM25Okapi(corpus)
            for field, corpus in token_lists.items()
            if any(corpus)
        }

    def __len__(self):
        return len(self.documents)

    def query(self, term) -> list:
        """
        Match the lowercased term against the searchable fields.
        Returns [{"ref": ..., "score": ...}], best first, ties in collection order.
        """
        query_tokens = list(dict.fromkeys(tokenize(term or "")))
        if not query_tokens:
            return []

        scores = [0.0] * len(self.documents)
        matched = set()

        for field, ranker in self._rankers.items():
            token_sets = self._token_sets[field]
            present = [
                token for token in query_tokens
                if any(token in tokens for tokens in token_sets)
            ]
            if not present:
                continue

            for position, tokens in enumerate(token_sets):
                if tokens.intersection(present):
                    matched.add(position)

            field_scores = ranker.get_scores(present)
            for position in range(len(scores)):
                scores[position] += float(field_scores[position])

        ranked = sorted(matched, key=lambda position: (-scores[position], position))
        return [
            {"ref": self.refs[position], "score": scores[position]}
            for position in ranked
        ]


def parse_index(text: str, var_name: str = DEFAULT_VAR_NAME) -> SearchIndex:
    """Parse the `var <name> = {...};` statement written by build_index.py."""
    match = ASSIGNMENT.match(text or "")
    if not match or match.group(1) != var_name:
        raise IndexNotLoaded(f"index script does not assign '{var_name}'")

    try:
        payload = json.loads(match.group(2))
    except json.JSONDecodeError as e:
        raise IndexNotLoaded(f"index payload is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise IndexNotLoaded("index payload is not an object")
    return SearchIndex(payload)


def load_index(index_file: str, var_name: str = DEFAULT_VAR_NAME) -> SearchIndex:
    """
    Load the index script once; pass the returned handle to search().
    """
    try:
        with open(index_file, "r", encoding="utf-8") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise IndexNotLoaded(f"cannot read index {index_file}: {e}") from e

    return parse_index(text, var_name)


def search(index, term) -> list:
    if index is None:
        raise IndexNotLoaded("no search index has been loaded")
    return index.query(term)


def query_term(url: str) -> str:
    """First `q` parameter of the page URL, or "" when there is none."""
    params = parse_qs(urlparse(url or "").query, keep_blank_values=True)
    return params.get("q", [""])[0]


def render_results(results, link_prefix: str = LINK_PREFIX) -> str:
    return "".join(
        f"<li><a href={link_prefix}{quote(item['ref'], safe='')}.html>{escape(item['ref'])}</a></li>"
        for item in results
    )


def render_into(page_html: str, fragment: str, target_id: str = TARGET_ID) -> str:
    """
    Replace the content of the element with id=target_id by the fragment.
    """
    soup = BeautifulSoup(page_html, "html.parser")
    target = soup.find(id=target_id)
    if target is None:
        raise RenderTargetMissing(f"page has no element with id '{target_id}'")

    target.clear()
    for node in list(BeautifulSoup(fragment, "html.parser").contents):
        target.append(node)
    return str(soup)


def run_search(index, url: str, page_html: str, target_id: str = TARGET_ID,
               link_prefix: str = LINK_PREFIX) -> str:
    """
    Read q from the URL, query the index and render the hits into the page.
    """
    results = search(index, query_term(url))
    return render_into(page_html, render_results(results, link_prefix), target_id)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Search the advisory index and render the result list."
    )
    parser.add_argument(
        "--index",
        default="_site/js/lunr-index.js",
        help="Index script (from build_index.py)"
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--url",
        help="Page URL carrying the query, e.g. /search.html?q=widget"
    )
    source.add_argument(
        "--query",
        help="Search term, used instead of --url"
    )
    parser.add_argument(
        "--page",
        help="HTML page to render the results into"
    )
    parser.add_argument(
        "--out",
        help="Where to write the rendered page (default: stdout)"
    )
    parser.add_argument(
        "--var",
        dest="var_name",
        default=DEFAULT_VAR_NAME,
        help=f"Global variable assigned by the index script (default: {DEFAULT_VAR_NAME})"
    )
    parser.add_argument(
        "--target",
        default=TARGET_ID,
        help=f"Id of the element receiving the results (default: {TARGET_ID})"
    )
    parser.add_argument(
        "--link-prefix",
        default=LINK_PREFIX,
        help=f"Path prefix of advisory links (default: {LINK_PREFIX})"
    )

    args = parser.parse_args(argv)

    try:
        index = load_index(args.index, var_name=args.var_name)
    except IndexNotLoaded as e:
        print(f"ERROR: search unavailable: {e}")
        exit(1)

    term = args.query if args.query is not None else query_term(args.url)
    print(f"Query: {term}")

    results = search(index, term)
    fragment = render_results(results, args.link_prefix)

    if results:
        print(f"✓ Found {len(results)} of {len(index)} advisories")
        for i, r in enumerate(results[:5], 1):
            print(f"  {i}. {r['ref']} (score: {r['score']:.2f})")
    else:
        print("No results")

    if not args.page:
        print(fragment)
        return

    try:
        with open(args.page, "r", encoding="utf-8") as f:
            page_html = f.read()
        rendered = render_into(page_html, fragment, args.target)
        if args.out:
            with open(args.out, "w", encoding="utf-8") as f:
                f.write(rendered)
    except (OSError, SearchError) as e:
        print(f"ERROR: {e}")
        exit(1)

    if args.out:
        print(f"✓ Saved to: {args.out}")
    else:
        print(rendered)


if __name__ == "__main__":
    main()
