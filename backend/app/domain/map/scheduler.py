"""Frame schedulers driving per-frame map animations."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable, Dict, Optional, Protocol

from app.settings import settings

logger = logging.getLogger(__name__)

FrameCallback = Callable[[], None]


class FrameScheduler(Protocol):
	@property
	def frame_ms(self) -> float:
		...

	@property
	def pending(self) -> int:
		...

	def request(self, callback: FrameCallback) -> int:
		...

	def cancel(self, handle: int) -> None:
		...


class AsyncioFrameScheduler:
	"""Runs each requested callback once, one frame interval from now, on the running loop."""

	def __init__(self, interval: Optional[float] = None, *, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
		self.interval = float(settings.map_frame_interval_seconds if interval is None else interval)
		self._loop = loop
		self._handles: Dict[int, asyncio.TimerHandle] = {}
		self._ids = itertools.count(1)

	@property
	def frame_ms(self) -> float:
		return self.interval * 1000.0

	@property
	def pending(self) -> int:
		return len(self._handles)

	def request(self, callback: FrameCallback) -> int:
		loop = self._loop or asyncio.get_running_loop()
		handle_id = next(self._ids)

		def _fire() -> None:
			self._handles.pop(handle_id, None)
			try:
				callback()
			except Exception:
				logger.exception("frame callback failed")

		self._handles[handle_id] = loop.call_later(self.interval, _fire)
		return handle_id

	def cancel(self, handle: int) -> None:
		timer = self._handles.pop(handle, None)
		if timer is not None:
			timer.cancel()

	def cancel_all(self) -> None:
		for timer in self._handles.values():
			timer.cancel()
		self._handles.clear()
