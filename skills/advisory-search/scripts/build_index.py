#!/usr/bin/env python3
"""
build_index.py — Build the advisory search index loaded by search pages.

Usage:
  python build_index.py --in _site/js/index.json --out _site/js/lunr-index.js

Input:
  _site/js/index.json, written by the site generator:
  [
    {
      "ident": "CVE-1",
      "title": "SQL Injection in Widget",
      "aliases": "",
      "keywords": "sql,injection",
      "package": "widget"
    },
    ...
  ]

Output:
  _site/js/lunr-index.js, a single statement for a <script> tag:
  var searchIndex = {
    "ref": "ident",
    "fields": ["title", "aliases", "keywords", "package"],
    "documents": [
      {
        "id": 0,
        "ref": "CVE-1",
        "fields": {"title": ["sql", "injection", "in", "widget"], ...}
      },
      ...
    ],
    "total_documents": 1
  };
"""

import json
import argparse
import os
import re
import tempfile

from search_errors import InputNotFound, MalformedInput, SearchError, WriteFailure

SEARCH_FIELDS = ("title", "aliases", "keywords", "package")
REF_FIELD = "ident"
DEFAULT_VAR_NAME = "searchIndex"

# Hyphens stay inside tokens: "cross-site-scripting" is one term
TOKEN_SEPARATOR = re.compile(r"[\s,]+")
EDGE_PUNCTUATION = re.compile(r"^\W+|\W+$")


def field_text(value) -> str:
    """
    Flatten a document field into plain text.
    Absent values are empty, lists are joined with spaces.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return " ".join(filter(None, (field_text(v) for v in value)))
    if isinstance(value, dict):
        raise MalformedInput(f"nested object where text was expected: {value!r}")
    return str(value)


def tokenize(value) -> list:
    """Lowercase and split on whitespace and commas, never on hyphens."""
    tokens = []
    for part in TOKEN_SEPARATOR.split(field_text(value).lower()):
        token = EDGE_PUNCTUATION.sub("", part)
        if token:
            tokens.append(token)
    return tokens


def validate_documents(documents, fields=SEARCH_FIELDS, ref=REF_FIELD) -> None:
    """
    Reject collections the index cannot represent: non-object entries,
    missing or duplicate refs, nested objects in searchable fields.
    """
    if not isinstance(documents, list):
        raise MalformedInput(
            f"expected a JSON array of documents, got {type(documents).__name__}"
        )

    seen = {}
    for position, doc in enumerate(documents):
        if not isinstance(doc, dict):
            raise MalformedInput(f"document #{position} is not an object")

        ident = doc.get(ref)
        if not isinstance(ident, str) or not ident:
            raise MalformedInput(f"document #{position} has no '{ref}'")
        if ident in seen:
            raise MalformedInput(
                f"duplicate {ref} {ident!r} in documents #{seen[ident]} and #{position}"
            )
        seen[ident] = position

        for field in fields:
            try:
                field_text(doc.get(field))
            except MalformedInput as e:
                raise MalformedInput(
                    f"document {ident!r}, field '{field}': {e}"
                ) from e


def load_documents(input_file: str) -> list:
    """
    Load the document collection written by the site generator.
    """
    try:
        with open(input_file, "r", encoding="utf-8") as f:
            documents = json.load(f)
    except (FileNotFoundError, IsADirectoryError) as e:
        raise InputNotFound(f"input file not found: {input_file}") from e
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedInput(f"{input_file} is not valid JSON: {e}") from e
    except OSError as e:
        raise InputNotFound(f"cannot read input file {input_file}: {e}") from e

    validate_documents(documents)
    return documents


def build_index(documents, fields=SEARCH_FIELDS, ref=REF_FIELD) -> dict:
    """
    Tokenize the searchable fields of every document.

    Each document gets a zero-based positional id in collection order; the
    ref (its ident) is what searches return.
    """
    validate_documents(documents, fields=fields, ref=ref)

    entries = []
    for idx, doc in enumerate(documents):
        entries.append({
            "id": idx,
            "ref": doc[ref],
            "fields": {field: tokenize(doc.get(field)) for field in fields}
        })

    return {
        "ref": ref,
        "fields": list(fields),
        "documents": entries,
        "total_documents": len(entries)
    }


def serialize_index(index: dict, var_name: str = DEFAULT_VAR_NAME) -> str:
    return f"var {var_name} = {json.dumps(index, ensure_ascii=False)};\n"


def current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def write_index(index: dict, out_file: str, var_name: str = DEFAULT_VAR_NAME) -> None:
    """
    Write the index as a script assignment.
    The output is replaced atomically, so a failed write leaves nothing behind.
    """
    content = serialize_index(index, var_name)
    out_dir = os.path.dirname(os.path.abspath(out_file))

    tmp_path = None
    try:
        os.makedirs(out_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=out_dir, prefix=".lunr-index-", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        # mkstemp files are 0600; the web server must be able to read this one
        os.chmod(tmp_path, 0o666 & ~current_umask())
        os.replace(tmp_path, out_file)
    except OSError as e:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise WriteFailure(f"cannot write {out_file}: {e}") from e


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Build the advisory search index from the site's document list."
    )
    parser.add_argument(
        "--in",
        dest="input_file",
        default="_site/js/index.json",
        help="Input document list (default: _site/js/index.json)"
    )
    parser.add_argument(
        "--out",
        default="_site/js/lunr-index.js",
        help="Output index script (default: _site/js/lunr-index.js)"
    )
    parser.add_argument(
        "--var",
        dest="var_name",
        default=DEFAULT_VAR_NAME,
        help=f"Global variable the script assigns (default: {DEFAULT_VAR_NAME})"
    )

    args = parser.parse_args(argv)

    print(f"Reading: {args.input_file}")
    try:
        documents = load_documents(args.input_file)
        index = build_index(documents)
        write_index(index, args.out, var_name=args.var_name)
    except SearchError as e:
        print(f"ERROR: {e}")
        exit(1)

    print(f"✓ Indexed {index['total_documents']} documents")
    print(f"✓ Saved to: {args.out}")


if __name__ == "__main__":
    main()
