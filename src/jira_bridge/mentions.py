"""
Mention Encoder

Converts plain text with inline account tokens into Atlassian Document
Format (ADF) content nodes, so comments written from Slack can @-mention
the Jira account of the person who acted.

Token syntax (Jira wiki style):
    [~accountid:5b10ac8d82e05b22cc7d4ef5]

Usage:
    nodes = encode("Moved to Done via Slack by", account_id="5b10ac...")
    body = build_document(nodes)
    jira.issue_add_comment("PROJ-1", body)

decode() is the inverse: it renders nodes back to token text, and
encode(decode(nodes)) reproduces the same nodes.
"""

import re
from typing import Any, Dict, List, Optional

TOKEN_OPEN = "[~accountid:"
TOKEN_CLOSE = "]"

# Cloud account ids look like "5b10ac8d82e05b22cc7d4ef5" or "557058:f581-..."
ACCOUNT_ID_RE = re.compile(r"^[A-Za-z0-9:_\-]+$")

# ADF forbids a paragraph with empty content
EMPTY_TEXT = " "

Node = Dict[str, Any]


def mention_token(account_id: str) -> str:
    """Inline token for an account id."""
    return f"{TOKEN_OPEN}{account_id}{TOKEN_CLOSE}"


def text_node(text: str) -> Node:
    return {"type": "text", "text": text}


def mention_node(account_id: str) -> Node:
    return {"type": "mention", "attrs": {"id": account_id}}


def segment(text: str) -> List[Node]:
    """
    Split text into alternating text and mention nodes.

    Scans once with a cursor. A candidate token whose id is not a valid
    account id stays part of the surrounding text. Empty text runs are
    dropped.
    """
    nodes: List[Node] = []
    cursor = 0
    run_start = 0

    while True:
        start = text.find(TOKEN_OPEN, cursor)
        if start == -1:
            break
        id_start = start + len(TOKEN_OPEN)
        end = text.find(TOKEN_CLOSE, id_start)
        if end == -1:
            break

        account_id = text[id_start:end]
        if not ACCOUNT_ID_RE.match(account_id):
            cursor = start + 1
            continue

        if start > run_start:
            nodes.append(text_node(text[run_start:start]))
        nodes.append(mention_node(account_id))
        cursor = run_start = end + len(TOKEN_CLOSE)

    if run_start < len(text):
        nodes.append(text_node(text[run_start:]))

    return nodes


def encode(text: str, account_id: Optional[str] = None) -> List[Node]:
    """
    Encode text, optionally appending a mention of account_id.

    Args:
        text: Free text, may already contain inline tokens
        account_id: Jira account to mention at the end

    Returns:
        Non-empty list of ADF inline nodes
    """
    combined = text or ""
    if account_id:
        token = mention_token(account_id)
        combined = f"{combined} {token}" if combined else token

    nodes = segment(combined)
    if not nodes:
        return [text_node(EMPTY_TEXT)]
    return nodes


def decode(nodes: List[Node]) -> str:
    """Render nodes back to text with inline tokens."""
    parts = []
    for node in nodes:
        if node.get("type") == "mention":
            parts.append(mention_token(node.get("attrs", {}).get("id", "")))
        else:
            parts.append(node.get("text", ""))
    return "".join(parts)


def build_document(nodes: List[Node]) -> Dict[str, Any]:
    """Wrap inline nodes in a single-paragraph ADF document."""
    return {
        "type": "doc",
        "version": 1,
        "content": [{"type": "paragraph", "content": nodes}],
    }
