"""Step results and the resumable sequence wrapper.

A generator is the resumable sequence the driver advances. Each resume
either stops at a ``yield`` (``Suspended``) or runs off the end of the body
(``Completed``). ``ResumableSequence`` turns the generator protocol
(``send``/``throw`` plus ``StopIteration``) into those two values and keeps
the sequence inert once it is finished.
"""

import inspect
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Suspended:
    """The sequence yielded an operation and is waiting on it.

    Attributes:
        operation: Whatever the body yielded, before boundary coercion
    """

    operation: Any


@dataclass(frozen=True, slots=True)
class Completed:
    """The sequence returned.

    Attributes:
        value: The body's return value
    """

    value: Any = None


type Step = Suspended | Completed


class ResumableSequence:
    """Single-use wrapper around a generator object.

    Exceptions raised by the body propagate out of the resume methods and
    leave the sequence finished. Resuming a finished sequence does not touch
    the generator again and returns the recorded final value.

    Attributes:
        steps: Number of resumes that reached the generator
    """

    def __init__(self, generator: Generator[Any, Any, Any]):
        """Wrap a generator.

        Args:
            generator: A generator object, usually fresh from its function

        Raises:
            TypeError: If ``generator`` is not a generator object
        """
        if not inspect.isgenerator(generator):
            msg = f"Expected a generator object, got {type(generator).__name__}"
            raise TypeError(msg)

        self._generator = generator
        self._finished = False
        self._final_value: Any = None
        self.steps = 0

    @property
    def finished(self) -> bool:
        """Whether the sequence completed, raised or was closed."""
        return self._finished

    @property
    def name(self) -> str:
        return self._generator.__qualname__

    def resume_with_value(self, value: Any = None) -> Step:
        """Send ``value`` into the body at its current yield point."""
        if self._finished:
            return Completed(self._final_value)
        return self._advance(self._generator.send, value)

    def resume_with_error(self, error: BaseException) -> Step:
        """Raise ``error`` inside the body at its current yield point."""
        if self._finished:
            return Completed(self._final_value)
        return self._advance(self._generator.throw, error)

    def close(self) -> None:
        """Finalize the body early, running its ``finally`` blocks.

        Raises:
            RuntimeError: If the body yields again while being closed
        """
        if self._finished:
            return
        self._finished = True
        self._generator.close()

    def _advance(self, resume, argument: Any) -> Step:
        self.steps += 1
        try:
            operation = resume(argument)
        except StopIteration as stop:
            self._finished = True
            self._final_value = stop.value
            return Completed(stop.value)
        except BaseException:
            self._finished = True
            raise
        return Suspended(operation)
