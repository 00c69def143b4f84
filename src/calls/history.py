from __future__ import annotations

from itertools import zip_longest

from calls.store import CallSession


def build_llm_history(system_prompt: str, session: CallSession) -> list[dict[str, str]]:
    """Chat messages for a call: the persona, then each caller turn and its reply."""

    history: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for heard, said in zip_longest(session.transcriptions, session.responses):
        if heard:
            history.append({"role": "user", "content": heard})
        if said:
            history.append({"role": "assistant", "content": said})
    return history
