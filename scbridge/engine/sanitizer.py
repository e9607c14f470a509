from __future__ import annotations

import codecs
import re
import time
from typing import List, Optional

PROMPT = "sc3>"
INTERRUPT_DIRECTIVE = "CmdPeriod.run;"


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


class LineAssembler:
    """
    Turn raw pipe chunks into decoded text made of whole lines.

    Bytes go through an incremental decoder, so a multi-byte character split
    across reads is held back until complete. feed() returns only complete
    lines; the trailing partial line stays pending until the next newline or
    an explicit flush(). A ``\\r\\n`` pair split across chunks still yields one
    newline. ``pending_since`` is the monotonic time the pending text started
    to accumulate, so a caller can bound how long a partial line is held.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""
        self._skip_lf = False
        self.pending_since: Optional[float] = None

    def decode(self, data: bytes) -> str:
        return self._decoder.decode(data)

    def feed(self, text: str) -> str:
        if self._skip_lf and text:
            if text.startswith("\n"):
                text = text[1:]
            self._skip_lf = False
        text = self._pending + text
        hold_cr = text.endswith("\r")
        if hold_cr:
            text = text[:-1]
        text = normalize_newlines(text)
        cut = text.rfind("\n") + 1
        self._pending = text[cut:] + ("\r" if hold_cr else "")
        if not self._pending:
            self.pending_since = None
        elif cut or self.pending_since is None:
            # a new partial line starts here
            self.pending_since = time.monotonic()
        return text[:cut]

    @property
    def pending(self) -> str:
        return self._pending

    def age(self, now: Optional[float] = None) -> float:
        """Seconds the pending text has been held; 0 when nothing is pending."""
        if self.pending_since is None:
            return 0.0
        return (time.monotonic() if now is None else now) - self.pending_since

    def flush(self) -> str:
        text = self._pending
        self._pending = ""
        self.pending_since = None
        if text.endswith("\r"):
            # the matching \n may still arrive in the next chunk
            self._skip_lf = True
        return normalize_newlines(text)

    def close(self) -> str:
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self.feed(tail)
        return self.flush()


class OutputSanitizer:
    """
    Strip what the bridge itself injected into sclang's REPL transcript.

    Works on decoded, newline-normalized text: prompts are cut from the start
    of a line, and whole lines echoing a staging load(), the startup load()
    or the interrupt directive are dropped. Everything else passes through in
    order. Applying it twice gives the same result as applying it once.
    """

    def __init__(self, startup_script: str | None = None):
        patterns: List[str] = [
            # staging artifacts: load("/any/dir/sc_eval_<id>.scd");
            r'^load\("/[^"\n]*/sc_eval_[^"\n]*"\);[ \t]*(?:\n|$)',
            r'^load\("/[^"\n]*startup\.scd"\);[ \t]*(?:\n|$)',
            r"^" + re.escape(INTERRUPT_DIRECTIVE) + r"[ \t]*(?:\n|$)",
        ]
        if startup_script:
            escaped = re.escape(startup_script.replace("\\", "\\\\").replace('"', '\\"'))
            patterns.append(r'^load\("' + escaped + r'"\);[ \t]*(?:\n|$)')
        self._prompt = re.compile(r"^(?:" + re.escape(PROMPT) + r"[ \t]*)+", re.MULTILINE)
        self._internal = re.compile("|".join(f"(?:{p})" for p in patterns), re.MULTILINE)

    def clean(self, text: str) -> str:
        text = normalize_newlines(text)
        text = self._prompt.sub("", text)
        return self._internal.sub("", text)

    __call__ = clean
