"""Triangle-wave oscillator used for the privacy circle pulse."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class PulseOscillator:
	minimum: float
	maximum: float
	step_size: float
	value: float = 0.0
	direction: int = 1

	def __post_init__(self) -> None:
		if self.maximum < self.minimum:
			raise ValueError("maximum must not be below minimum")
		if self.step_size < 0:
			raise ValueError("step_size must not be negative")
		self.value = min(self.maximum, max(self.minimum, self.value or self.minimum))

	@classmethod
	def for_duration(cls, minimum: float, maximum: float, duration_ms: float, frame_ms: float) -> "PulseOscillator":
		"""Step so that one sweep between the bounds takes `duration_ms`."""
		if duration_ms <= 0:
			raise ValueError("duration_ms must be positive")
		return cls(minimum=minimum, maximum=maximum, step_size=(maximum - minimum) / duration_ms * frame_ms)

	def step(self) -> float:
		self.value += self.direction * self.step_size
		if self.value >= self.maximum:
			self.value = self.maximum
			self.direction = -1
		elif self.value <= self.minimum:
			self.value = self.minimum
			self.direction = 1
		return self.value

	def reset(self) -> None:
		self.value = self.minimum
		self.direction = 1
