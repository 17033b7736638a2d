"""
AI suggestions for draft content.

Suggestions run on a background thread against an in-memory ``Draft``,
never inside a repository transaction. The draft only changes when the
caller accepts a finished suggestion, and only if nobody edited the draft
in the meantime; a cancelled task leaves the draft exactly as it was.
Persisting the draft is a separate, explicit ``Repository.update``.
"""

import logging
import threading
from typing import Callable, Optional

from .errors import SuggestionError
from .providers.base import SuggestionAction, SuggestionProvider, build_user_message

logger = logging.getLogger(__name__)


def suggest(
    provider: SuggestionProvider,
    content: str,
    instruction: Optional[str] = None,
    *,
    action: SuggestionAction = SuggestionAction.CUSTOM,
    max_tokens: int = 4096,
) -> str:
    """
    Ask ``provider`` for a replacement of ``content``.

    Raises:
        SuggestionError: The provider failed or returned nothing
    """
    action = SuggestionAction(action)
    if action is SuggestionAction.CUSTOM and not (instruction and instruction.strip()):
        raise SuggestionError("a custom request needs an instruction")
    try:
        text = provider.generate(
            action.system_prompt,
            build_user_message(content, instruction),
            max_tokens=max_tokens,
        )
    except Exception as e:
        raise SuggestionError(e) from e
    if not text or not text.strip():
        raise SuggestionError("the model returned no text")
    return text.strip()


class Draft:
    """
    Editable content held by an editor, with a revision counter.

    Every edit bumps the revision, which is how a finished suggestion
    detects that the text it was based on has moved on.
    """

    def __init__(self, content: str = ""):
        self._content = content
        self._revision = 0
        self._lock = threading.Lock()

    @property
    def content(self) -> str:
        with self._lock:
            return self._content

    @property
    def revision(self) -> int:
        with self._lock:
            return self._revision

    def snapshot(self) -> tuple[str, int]:
        with self._lock:
            return self._content, self._revision

    def edit(self, content: str) -> None:
        with self._lock:
            self._content = content
            self._revision += 1

    def replace_if_unchanged(self, content: str, revision: int) -> bool:
        """Set ``content`` only if the draft is still at ``revision``."""
        with self._lock:
            if self._revision != revision:
                return False
            self._content = content
            self._revision += 1
            return True


class SuggestionTask:
    """
    One cancellable suggestion request for a draft.

    Example:
        task = SuggestionTask(provider, draft, SuggestionAction.CONCISE).start()
        if task.wait(timeout=60) and task.accept():
            repo.update(item.id, item.version, {"content": draft.content})
    """

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def __init__(
        self,
        provider: SuggestionProvider,
        draft: Draft,
        action: SuggestionAction = SuggestionAction.IMPROVE,
        instruction: Optional[str] = None,
        *,
        max_tokens: int = 4096,
        on_done: Optional[Callable[["SuggestionTask"], None]] = None,
    ):
        self._provider = provider
        self._draft = draft
        self.action = SuggestionAction(action)
        self.instruction = instruction
        self._max_tokens = max_tokens
        self._on_done = on_done

        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._status = self.PENDING
        self._base_revision: Optional[int] = None
        self.result: Optional[str] = None
        self.error: Optional[SuggestionError] = None

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    def start(self) -> "SuggestionTask":
        content, revision = self._draft.snapshot()
        with self._lock:
            if self._status != self.PENDING:
                raise RuntimeError(f"Task already {self._status}")
            self._status = self.RUNNING
            self._base_revision = revision
        self._thread = threading.Thread(target=self._run, args=(content,), daemon=True)
        self._thread.start()
        return self

    def _run(self, content: str) -> None:
        result: Optional[str] = None
        error: Optional[SuggestionError] = None
        try:
            result = suggest(
                self._provider, content, self.instruction,
                action=self.action, max_tokens=self._max_tokens,
            )
        except SuggestionError as e:
            error = e
        with self._lock:
            if self._status == self.CANCELLED:
                logger.debug("Discarding suggestion for cancelled task")
            elif error is not None:
                self.error = error
                self._status = self.FAILED
                logger.warning("Suggestion failed: %s", error)
            else:
                self.result = result
                self._status = self.DONE
        self._finished.set()
        if self._on_done is not None and self.status != self.CANCELLED:
            self._on_done(self)

    def cancel(self) -> bool:
        """
        Stop caring about the request. The provider call may still finish
        in the background, but its result is dropped.

        Returns:
            True if the task was pending or running
        """
        with self._lock:
            if self._status not in (self.PENDING, self.RUNNING):
                return False
            self._status = self.CANCELLED
            self.result = None
        self._finished.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the task finishes or is cancelled. True if DONE."""
        self._finished.wait(timeout)
        return self.status == self.DONE

    def accept(self) -> bool:
        """
        Write the suggestion into the draft.

        Returns:
            False (draft untouched) unless the task is DONE and the draft
            has not been edited since the request started
        """
        with self._lock:
            if self._status != self.DONE or self.result is None:
                return False
            result, revision = self.result, self._base_revision
        applied = self._draft.replace_if_unchanged(result, revision)
        if not applied:
            logger.info("Suggestion discarded: draft was edited while it ran")
        return applied
