from __future__ import annotations

from typing import Protocol


class Oracle(Protocol):
    """Generative-text collaborator: one content slice plus instructions in, free text out.

    Implementations raise ``OracleError`` on transport or service failure. The
    returned text is untrusted and may be malformed, truncated or prose-only.
    """

    def generate(self, content: str | bytes, instructions: str) -> str:
        ...
