"""User-facing notices raised by background components."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Literal, Protocol, Set

logger = logging.getLogger(__name__)

NoticeVariant = Literal["default", "destructive"]


@dataclass(frozen=True, slots=True)
class Notice:
	title: str
	description: str
	variant: NoticeVariant = "default"

	def to_payload(self) -> dict:
		return {"title": self.title, "description": self.description, "variant": self.variant}


class Notifier(Protocol):
	def notify(self, title: str, description: str, *, variant: NoticeVariant = "default") -> None:
		...


class LogNotifier:
	"""Fallback notifier for sessions without a connected client."""

	def notify(self, title: str, description: str, *, variant: NoticeVariant = "default") -> None:
		logger.info("notice title=%s variant=%s", title, variant)


class FanoutNotifier:
	"""Forwards notices to every attached sink, or logs them when none is attached."""

	def __init__(self) -> None:
		self._sinks: List[Notifier] = []
		self._fallback = LogNotifier()

	def attach(self, sink: Notifier) -> None:
		if sink not in self._sinks:
			self._sinks.append(sink)

	def detach(self, sink: Notifier) -> None:
		if sink in self._sinks:
			self._sinks.remove(sink)

	@property
	def sinks(self) -> List[Notifier]:
		return list(self._sinks)

	def notify(self, title: str, description: str, *, variant: NoticeVariant = "default") -> None:
		if not self._sinks:
			self._fallback.notify(title, description, variant=variant)
			return
		for sink in list(self._sinks):
			try:
				sink.notify(title, description, variant=variant)
			except Exception:
				logger.warning("notice sink failed title=%s", title, exc_info=True)


class EmitNotifier:
	"""Sends notices to one socket as `sys.notice` events."""

	def __init__(self, emit: Callable[..., Awaitable[Any]], sid: str) -> None:
		self._emit = emit
		self.sid = sid
		self._tasks: Set[asyncio.Task] = set()

	def notify(self, title: str, description: str, *, variant: NoticeVariant = "default") -> None:
		notice = Notice(title=title, description=description, variant=variant)
		self.spawn(self._emit("sys.notice", notice.to_payload(), room=self.sid))

	def spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
		task = asyncio.ensure_future(coro)
		self._tasks.add(task)
		task.add_done_callback(self._done)
		return task

	def _done(self, task: asyncio.Task) -> None:
		self._tasks.discard(task)
		if not task.cancelled() and task.exception() is not None:
			logger.warning("socket emit failed sid=%s", self.sid, exc_info=task.exception())
